from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_proctor.models import (
    Assessment, AssessmentSettings, AssessmentStatus, Attempt, AttemptStatus, Question, User
)
from exam_proctor.schemas.assessment import AvailableAssessment
from exam_proctor.schemas.common import Page
from exam_proctor.services.catalog import effective_settings
from exam_proctor.utils.pagination import Paging
from exam_proctor.utils.timeutils import ensure_utc

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "title": Assessment.title,
    "subject": Assessment.subject,
    "duration": Assessment.duration,
    "dueDate": Assessment.due_date,
    "createdAt": Assessment.created_at,
}


def can_attempt(max_attempts: int, attempt_count: int, allow_retake: bool, has_completed: bool) -> bool:
    within_cap = max_attempts == 0 or attempt_count < max_attempts
    return within_cap and (allow_retake or not has_completed)


class AvailabilityProjector:
    """Which assessments a student can see and take right now. Read only."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_available(
        self,
        user_id: int,
        paging: Paging,
        now: datetime,
        search: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> Page[AvailableAssessment]:
        now = ensure_utc(now)

        attempt_count = (
            select(func.count(Attempt.id))
            .where(
                Attempt.assessment_id == Assessment.id,
                Attempt.user_id == user_id,
                Attempt.deleted_at.is_(None)
            )
            .correlate(Assessment)
            .scalar_subquery()
        )
        has_completed = (
            exists()
            .where(
                Attempt.assessment_id == Assessment.id,
                Attempt.user_id == user_id,
                Attempt.status == AttemptStatus.COMPLETED.value,
                Attempt.deleted_at.is_(None)
            )
            .correlate(Assessment)
        )
        question_count = (
            select(func.count(Question.id))
            .where(
                Question.assessment_id == Assessment.id,
                Question.deleted_at.is_(None)
            )
            .correlate(Assessment)
            .scalar_subquery()
        )

        conditions = [
            Assessment.status == AssessmentStatus.ACTIVE.value,
            Assessment.deleted_at.is_(None),
            or_(Assessment.due_date.is_(None), Assessment.due_date >= now),
            question_count > 0,
        ]
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                Assessment.title.ilike(pattern),
                Assessment.description.ilike(pattern)
            ))
        if subject:
            conditions.append(func.lower(Assessment.subject) == subject.strip().lower())

        where_clause = and_(*conditions)

        total = (await self.db.execute(
            select(func.count(Assessment.id)).where(where_clause)
        )).scalar() or 0

        if paging.sort_field:
            column = SORTABLE_FIELDS[paging.sort_field]
            order_by = [column.desc() if paging.sort_desc else column.asc(), Assessment.id.asc()]
        else:
            order_by = [Assessment.created_at.desc(), Assessment.id.desc()]

        result = await self.db.execute(
            select(
                Assessment,
                AssessmentSettings,
                User.name,
                attempt_count.label("attempt_count"),
                has_completed.label("has_completed"),
                question_count.label("question_count"),
            )
            .outerjoin(AssessmentSettings, AssessmentSettings.assessment_id == Assessment.id)
            .outerjoin(User, User.id == Assessment.created_by_id)
            .where(where_clause)
            .order_by(*order_by)
            .offset(paging.offset)
            .limit(paging.page_size)
        )

        items = []
        for assessment, settings_row, creator_name, count, completed, n_questions in result.all():
            settings = effective_settings(settings_row)
            completed = bool(completed)
            count = count or 0
            items.append(AvailableAssessment(
                id=assessment.id,
                title=assessment.title,
                subject=assessment.subject,
                description=assessment.description,
                duration=assessment.duration,
                passing_score=assessment.passing_score,
                due_date=assessment.due_date,
                created_at=assessment.created_at,
                creator_name=creator_name,
                question_count=n_questions or 0,
                attempt_count=count,
                has_completed=completed,
                can_attempt=can_attempt(settings.max_attempts, count, settings.allow_retake, completed),
                max_attempts=settings.max_attempts,
                allow_retake=settings.allow_retake,
                time_limit_enforced=settings.time_limit_enforced,
                require_webcam=settings.require_webcam,
                prevent_tab_switching=settings.prevent_tab_switching,
                require_identity_verification=settings.require_identity_verification,
            ))

        logger.debug(f"User {user_id}: {total} assessments available, page {paging.page}")

        return Page[AvailableAssessment](
            items=items,
            total=total,
            page=paging.page,
            page_size=paging.page_size,
            total_pages=paging.total_pages(total),
        )
