from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple
import logging

from sqlalchemy import select, update, func, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from exam_proctor.core.exceptions import (
    AlreadyTerminalError, ConflictError, InvalidStateError, NotFoundError
)
from exam_proctor.models import (
    Activity, Answer, Assessment, AssessmentSettings, Attempt, AttemptStatus, IN_PROGRESS_INDEX,
    SuspiciousEvent, TERMINAL_STATUSES
)
from exam_proctor.utils.pagination import Paging
from exam_proctor.utils.timeutils import ensure_utc

logger = logging.getLogger(__name__)


def is_in_progress_conflict(error: IntegrityError) -> bool:
    """True when the violated constraint is the one-in-progress-attempt index"""
    diag = getattr(error.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return constraint == IN_PROGRESS_INDEX
    # SQLite names the indexed column instead of the index
    message = str(error.orig)
    return IN_PROGRESS_INDEX in message or "UNIQUE constraint failed: attempts.user_id" in message


class InProgressRow(NamedTuple):
    attempt_id: int
    user_id: int
    assessment_id: int
    ends_at: datetime
    time_limit_enforced: bool


class AttemptStore:
    """
    Persistence for attempts, answers and proctoring rows.

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self, model):
        if self.db.get_bind().dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    # Attempts

    async def create_attempt(
        self,
        user_id: int,
        assessment_id: int,
        started_at: datetime,
        ends_at: datetime,
        question_order: Sequence[int],
        shuffle_seed: Optional[int] = None,
    ) -> Attempt:
        """Insert an in-progress attempt; ConflictError if the user already has one"""
        attempt = Attempt(
            user_id=user_id,
            assessment_id=assessment_id,
            status=AttemptStatus.IN_PROGRESS.value,
            started_at=ensure_utc(started_at),
            ends_at=ensure_utc(ends_at),
            question_order=list(question_order),
            shuffle_seed=shuffle_seed,
        )
        self.db.add(attempt)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            if not is_in_progress_conflict(e):
                raise
            raise ConflictError(f"User {user_id} already has an attempt in progress") from e
        return attempt

    async def get_attempt(self, attempt_id: int, for_update: bool = False) -> Optional[Attempt]:
        stmt = select(Attempt).where(
            Attempt.id == attempt_id,
            Attempt.deleted_at.is_(None)
        ).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def load_attempt_with_answers(self, attempt_id: int) -> Optional[Attempt]:
        result = await self.db.execute(
            select(Attempt)
            .options(selectinload(Attempt.answers))
            .where(
                Attempt.id == attempt_id,
                Attempt.deleted_at.is_(None)
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_in_progress(self, user_id: int) -> Optional[Attempt]:
        result = await self.db.execute(
            select(Attempt).where(
                Attempt.user_id == user_id,
                Attempt.status == AttemptStatus.IN_PROGRESS.value,
                Attempt.deleted_at.is_(None)
            )
        )
        return result.scalars().first()

    async def count_attempts(self, user_id: int, assessment_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Attempt.id)).where(
                Attempt.user_id == user_id,
                Attempt.assessment_id == assessment_id,
                Attempt.deleted_at.is_(None)
            )
        )
        return result.scalar() or 0

    async def has_completed(self, user_id: int, assessment_id: int) -> bool:
        result = await self.db.execute(
            select(Attempt.id).where(
                Attempt.user_id == user_id,
                Attempt.assessment_id == assessment_id,
                Attempt.status == AttemptStatus.COMPLETED.value,
                Attempt.deleted_at.is_(None)
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_in_progress(self) -> List[InProgressRow]:
        """Every live in-progress attempt with its deadline and whether it is enforced"""
        result = await self.db.execute(
            select(
                Attempt.id,
                Attempt.user_id,
                Attempt.assessment_id,
                Attempt.ends_at,
                func.coalesce(AssessmentSettings.time_limit_enforced, True),
            )
            .join(Assessment, Assessment.id == Attempt.assessment_id)
            .outerjoin(AssessmentSettings, AssessmentSettings.assessment_id == Assessment.id)
            .where(
                Attempt.status == AttemptStatus.IN_PROGRESS.value,
                Attempt.deleted_at.is_(None)
            )
            .order_by(Attempt.ends_at)
        )
        return [
            InProgressRow(
                attempt_id=row[0],
                user_id=row[1],
                assessment_id=row[2],
                ends_at=ensure_utc(row[3]),
                time_limit_enforced=bool(row[4]),
            )
            for row in result.all()
        ]

    async def transition_to_terminal(
        self,
        attempt_id: int,
        *,
        status: str,
        submitted_at: datetime,
        ended_at: datetime,
        score: float,
        passed: bool,
        duration: int,
    ) -> None:
        """Compare-and-set the attempt out of in_progress"""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")

        result = await self.db.execute(
            update(Attempt)
            .where(
                Attempt.id == attempt_id,
                Attempt.status == AttemptStatus.IN_PROGRESS.value
            )
            .values(
                status=status,
                submitted_at=ensure_utc(submitted_at),
                ended_at=ensure_utc(ended_at),
                score=score,
                passed=passed,
                duration=duration,
                updated_at=ensure_utc(ended_at),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AlreadyTerminalError(f"Attempt {attempt_id} is no longer in progress")

    async def update_grade(self, attempt_id: int, score: float, feedback: Optional[str]) -> None:
        await self.db.execute(
            update(Attempt)
            .where(Attempt.id == attempt_id)
            .values(score=score, feedback=feedback)
            .execution_options(synchronize_session=False)
        )

    async def soft_delete_attempt(self, attempt_id: int, now: datetime) -> bool:
        result = await self.db.execute(
            update(Attempt)
            .where(
                Attempt.id == attempt_id,
                Attempt.deleted_at.is_(None)
            )
            .values(deleted_at=ensure_utc(now))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def list_terminal_attempts(self, user_id: int, assessment_id: int) -> List[Attempt]:
        result = await self.db.execute(
            select(Attempt)
            .where(
                Attempt.user_id == user_id,
                Attempt.assessment_id == assessment_id,
                Attempt.status.in_(TERMINAL_STATUSES),
                Attempt.deleted_at.is_(None)
            )
            .order_by(Attempt.submitted_at.desc(), Attempt.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_attempts(self, user_id: int, assessment_id: int, paging: Paging) -> Tuple[List[Attempt], int]:
        conditions = and_(
            Attempt.user_id == user_id,
            Attempt.assessment_id == assessment_id,
            Attempt.deleted_at.is_(None)
        )
        total = (await self.db.execute(
            select(func.count(Attempt.id)).where(conditions)
        )).scalar() or 0

        result = await self.db.execute(
            select(Attempt)
            .options(selectinload(Attempt.answers))
            .where(conditions)
            .order_by(Attempt.started_at.desc(), Attempt.id.desc())
            .offset(paging.offset)
            .limit(paging.page_size)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total

    # Answers

    async def upsert_answer(self, attempt: Attempt, question_id: int, value: str, now: datetime) -> None:
        """
        Create or replace the single answer for (attempt, question).

        Replacing an answer clears any earlier grading of it.
        """
        if attempt is None:
            raise NotFoundError("Attempt not found")
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            raise InvalidStateError("Attempt is not in progress")

        now = ensure_utc(now)
        stmt = self._insert(Answer).values(
            attempt_id=attempt.id,
            question_id=question_id,
            value=value,
            is_correct=None,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["attempt_id", "question_id"],
            set_={
                "value": stmt.excluded.value,
                "is_correct": None,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.db.execute(stmt)

    async def list_answers(self, attempt_id: int) -> List[Answer]:
        result = await self.db.execute(
            select(Answer)
            .where(Answer.attempt_id == attempt_id)
            .order_by(Answer.question_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def set_answer_grades(self, attempt_id: int, grades: Dict[int, Optional[bool]]) -> None:
        """Write auto-grading results keyed by question id"""
        for question_id, is_correct in grades.items():
            await self.db.execute(
                update(Answer)
                .where(
                    Answer.attempt_id == attempt_id,
                    Answer.question_id == question_id
                )
                .values(is_correct=is_correct)
                .execution_options(synchronize_session=False)
            )

    async def set_answer_flags(self, attempt_id: int, flags: Dict[int, bool]) -> None:
        """Write instructor grading results keyed by answer id"""
        for answer_id, is_correct in flags.items():
            await self.db.execute(
                update(Answer)
                .where(
                    Answer.id == answer_id,
                    Answer.attempt_id == attempt_id
                )
                .values(is_correct=is_correct)
                .execution_options(synchronize_session=False)
            )

    # Proctoring

    async def save_suspicious_event(
        self,
        *,
        attempt_id: int,
        user_id: int,
        assessment_id: int,
        event_type: str,
        details: Optional[str],
        timestamp: datetime,
        severity: str,
        image_data: Optional[bytes],
        created_at: datetime,
    ) -> bool:
        """Insert a suspicious event; False when the same event was already stored"""
        stmt = self._insert(SuspiciousEvent).values(
            attempt_id=attempt_id,
            user_id=user_id,
            assessment_id=assessment_id,
            event_type=event_type,
            details=details,
            timestamp=ensure_utc(timestamp),
            severity=severity,
            image_data=image_data,
            has_image=image_data is not None,
            reviewed=False,
            created_at=ensure_utc(created_at),
        ).on_conflict_do_nothing(
            index_elements=["attempt_id", "timestamp", "event_type"]
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    async def list_suspicious_by_attempt(self, attempt_id: int) -> List[SuspiciousEvent]:
        result = await self.db.execute(
            select(SuspiciousEvent)
            .where(SuspiciousEvent.attempt_id == attempt_id)
            .order_by(SuspiciousEvent.timestamp, SuspiciousEvent.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_suspicious_event(self, event_id: int) -> Optional[SuspiciousEvent]:
        result = await self.db.execute(
            select(SuspiciousEvent)
            .where(SuspiciousEvent.id == event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_suspicious_reviewed(self, event_id: int, reviewed: bool = True) -> bool:
        result = await self.db.execute(
            update(SuspiciousEvent)
            .where(SuspiciousEvent.id == event_id)
            .values(reviewed=reviewed)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def record_activity(
        self,
        *,
        user_id: int,
        action: str,
        timestamp: datetime,
        assessment_id: Optional[int] = None,
        attempt_id: Optional[int] = None,
        details: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Activity:
        activity = Activity(
            user_id=user_id,
            assessment_id=assessment_id,
            attempt_id=attempt_id,
            action=action,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=ensure_utc(timestamp),
        )
        self.db.add(activity)
        await self.db.flush()
        return activity

    async def list_activities(self, attempt_id: int) -> List[Activity]:
        result = await self.db.execute(
            select(Activity)
            .where(Activity.attempt_id == attempt_id)
            .order_by(Activity.timestamp, Activity.id)
        )
        return list(result.scalars().all())
