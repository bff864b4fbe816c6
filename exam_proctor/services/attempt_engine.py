"""
Attempt lifecycle: start, answer, submit, expire and instructor grading.

Every mutation runs in a single database transaction. Start eligibility is
backed by the partial unique index on in-progress attempts, and submit and
expiry share one compare-and-set on the attempt status, so concurrent
callers converge on the same stored result.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple, Union
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from exam_proctor.core.database import transaction
from exam_proctor.core.exceptions import (
    AlreadyInAttemptError, AlreadyTerminalError, AttemptsExhaustedError, BadRequestError,
    ConflictError, ForbiddenError, InvalidStateError, NotFoundError, RetakeNotAllowedError,
    TimeExpiredError
)
from exam_proctor.models import Assessment, Attempt, AttemptStatus, QuestionType
from exam_proctor.schemas.assessment import SettingsOut
from exam_proctor.schemas.attempt import (
    AdminAnswer, AdminAttempt, AnswerOut, AttemptDetail, Progress, QuestionResult,
    ResultHistoryItem, StartAttemptResponse, SubmitAcknowledgement, SubmitResult
)
from exam_proctor.schemas.common import Page
from exam_proctor.services.attempt_store import AttemptStore
from exam_proctor.services.catalog import CatalogReader, effective_settings
from exam_proctor.services.grading import (
    GradeOutcome, QuestionGrade, coerce_answer_value, compute_score,
    grade_attempt, submit_feedback, validate_answer
)
from exam_proctor.services.proctoring import ProctoringRecorder
from exam_proctor.utils.pagination import Paging
from exam_proctor.utils.shuffle import new_seed, seeded_shuffle
from exam_proctor.utils.timeutils import ensure_utc, minutes_between

logger = logging.getLogger(__name__)

SubmitResponse = Union[SubmitResult, SubmitAcknowledgement]


class AttemptEngine:
    def __init__(self, db: AsyncSession, recorder: Optional[ProctoringRecorder] = None):
        self.db = db
        self.store = AttemptStore(db)
        self.catalog = CatalogReader(db)
        self.recorder = recorder or ProctoringRecorder(db)

    # Start

    async def start(self, user_id: int, assessment_id: int, now: datetime) -> StartAttemptResponse:
        """Open a new attempt for the user and deal its questions"""
        now = ensure_utc(now)

        async with transaction(self.db):
            target = await self.catalog.get_assessment_for_start(assessment_id, now)
            assessment = target.assessment
            settings = target.settings

            if await self.store.find_in_progress(user_id) is not None:
                logger.warning(f"User {user_id} tried to start assessment {assessment_id} with another attempt in progress")
                raise AlreadyInAttemptError()

            if not settings.allow_retake and await self.store.has_completed(user_id, assessment_id):
                logger.warning(f"User {user_id} refused retake of assessment {assessment_id}")
                raise RetakeNotAllowedError()

            if settings.max_attempts > 0:
                attempt_count = await self.store.count_attempts(user_id, assessment_id)
                if attempt_count >= settings.max_attempts:
                    logger.warning(f"User {user_id} exhausted {settings.max_attempts} attempts on assessment {assessment_id}")
                    raise AttemptsExhaustedError()

            questions = target.questions
            seed = None
            if settings.randomize_questions:
                seed = new_seed()
                questions = seeded_shuffle(questions, seed)

            ends_at = now + timedelta(minutes=assessment.duration)
            try:
                attempt = await self.store.create_attempt(
                    user_id=user_id,
                    assessment_id=assessment_id,
                    started_at=now,
                    ends_at=ends_at,
                    question_order=[q.id for q in questions],
                    shuffle_seed=seed,
                )
            except ConflictError as e:
                logger.warning(f"Concurrent start for user {user_id} lost the race: {e}")
                raise AlreadyInAttemptError() from e

            await self.recorder.log_activity(
                user_id=user_id,
                action="SESSION_START",
                timestamp=now,
                assessment_id=assessment_id,
                attempt_id=attempt.id,
            )

        logger.info(f"User {user_id} started attempt {attempt.id} on assessment {assessment_id}, ends at {ends_at.isoformat()}")

        return StartAttemptResponse(
            attempt_id=attempt.id,
            assessment_id=assessment_id,
            title=assessment.title,
            duration=assessment.duration,
            time_limit=settings.time_limit_enforced,
            started_at=now,
            ends_at=ends_at,
            questions=questions,
            settings=settings,
        )

    # Answers

    async def save_answer(
        self,
        attempt_id: int,
        question_id: int,
        value_raw: Union[str, bool],
        user_id: int,
        now: datetime,
    ) -> None:
        now = ensure_utc(now)
        value = coerce_answer_value(value_raw)

        async with transaction(self.db):
            attempt = await self.store.get_attempt(attempt_id, for_update=True)
            if attempt is None:
                raise NotFoundError("Attempt not found")
            if attempt.user_id != user_id:
                raise ForbiddenError("Attempt belongs to another user")
            if attempt.status != AttemptStatus.IN_PROGRESS.value:
                raise InvalidStateError("Attempt is no longer in progress")

            settings = await self.catalog.get_settings(attempt.assessment_id)
            if settings.time_limit_enforced and now >= ensure_utc(attempt.ends_at):
                raise TimeExpiredError()

            if question_id not in (attempt.question_order or []):
                raise BadRequestError("Question does not belong to this attempt")

            answer_key = await self.catalog.get_answer_key([question_id])
            entry = answer_key.get(question_id)
            if entry is None:
                raise BadRequestError("Question does not belong to this attempt")

            stored_value = validate_answer(entry, value)
            await self.store.upsert_answer(attempt, question_id, stored_value, now)

        logger.info(f"Saved answer for attempt {attempt_id}, question {question_id} ({len(stored_value)} chars)")

    # Submit / expire

    async def submit(self, attempt_id: int, user_id: int, now: datetime) -> SubmitResponse:
        """Student-initiated submit; resubmitting returns the stored result"""
        return await self._finalize(attempt_id, now, AttemptStatus.COMPLETED, user_id=user_id)

    async def expire(self, attempt_id: int, now: datetime) -> SubmitResponse:
        """Scheduler-initiated submit of an attempt past its deadline"""
        return await self._finalize(attempt_id, now, AttemptStatus.EXPIRED, user_id=None)

    async def _finalize(
        self,
        attempt_id: int,
        now: datetime,
        target_status: AttemptStatus,
        user_id: Optional[int],
    ) -> SubmitResponse:
        now = ensure_utc(now)

        try:
            async with transaction(self.db):
                attempt = await self.store.get_attempt(attempt_id, for_update=True)
                if attempt is None:
                    raise NotFoundError("Attempt not found")
                if user_id is not None and attempt.user_id != user_id:
                    raise ForbiddenError("Attempt belongs to another user")

                assessment = await self.catalog.get_assessment(attempt.assessment_id, include_deleted=True)
                settings = effective_settings(assessment.settings)

                if attempt.is_terminal:
                    logger.info(f"Attempt {attempt_id} already {attempt.status}; returning stored result")
                    return await self._stored_result(attempt, assessment, settings)

                answers = await self.store.list_answers(attempt.id)
                answer_key = await self.catalog.get_answer_key(attempt.question_order)
                outcome = grade_attempt(
                    answer_key,
                    attempt.question_order,
                    {a.question_id: a.value for a in answers},
                )

                duration = minutes_between(attempt.started_at, now)
                if settings.time_limit_enforced:
                    duration = max(0, min(duration, assessment.duration))
                passed = outcome.score >= assessment.passing_score

                await self.store.transition_to_terminal(
                    attempt.id,
                    status=target_status.value,
                    submitted_at=now,
                    ended_at=now,
                    score=outcome.score,
                    passed=passed,
                    duration=duration,
                )
                await self.store.set_answer_grades(
                    attempt.id,
                    {q.question_id: q.is_correct for q in outcome.questions if q.answer is not None},
                )
                await self.recorder.log_activity(
                    user_id=attempt.user_id,
                    action="SUBMIT" if target_status == AttemptStatus.COMPLETED else "AUTO_SUBMIT",
                    timestamp=now,
                    assessment_id=attempt.assessment_id,
                    attempt_id=attempt.id,
                    details=f"score={outcome.score}",
                )
        except AlreadyTerminalError:
            logger.warning(f"Attempt {attempt_id} was finalized concurrently; returning stored result")
            return await self._load_stored_result(attempt_id)

        logger.info(
            f"Attempt {attempt_id} {target_status.value}: score {outcome.score} "
            f"({outcome.earned}/{outcome.total} points), duration {duration} min"
        )

        return self._build_result(
            attempt_id=attempt_id,
            status=target_status.value,
            submitted_at=now,
            score=outcome.score,
            passed=passed,
            duration=duration,
            outcome=outcome,
            show_results=settings.show_results,
        )

    def _build_result(
        self,
        *,
        attempt_id: int,
        status: str,
        submitted_at: datetime,
        score: Optional[float],
        passed: Optional[bool],
        duration: Optional[int],
        outcome: GradeOutcome,
        show_results: bool,
    ) -> SubmitResponse:
        if not show_results:
            return SubmitAcknowledgement(
                attempt_id=attempt_id,
                status=status,
                submitted_at=submitted_at,
            )

        return SubmitResult(
            attempt_id=attempt_id,
            status=status,
            submitted_at=submitted_at,
            score=score if score is not None else outcome.score,
            passed=bool(passed),
            duration=duration or 0,
            total_questions=len(outcome.questions),
            correct_answers=outcome.correct_count,
            incorrect_answers=outcome.incorrect_count,
            unanswered=outcome.unanswered_count,
            essay_questions=outcome.essay_count,
            feedback=submit_feedback(outcome),
            per_question=[
                QuestionResult(
                    question_id=q.question_id,
                    type=q.type,
                    answer=q.answer,
                    is_correct=q.is_correct,
                    points=q.points,
                    earned_points=q.earned_points,
                )
                for q in outcome.questions
            ],
        )

    async def _stored_outcome(self, attempt: Attempt) -> GradeOutcome:
        """Rebuild the per-question breakdown from the grades already persisted"""
        answers = {a.question_id: a for a in await self.store.list_answers(attempt.id)}
        answer_key = await self.catalog.get_answer_key(attempt.question_order)

        outcome = GradeOutcome()
        for question_id in attempt.question_order:
            entry = answer_key.get(question_id)
            if entry is None:
                continue
            answer = answers.get(question_id)
            if answer is not None:
                is_correct = answer.is_correct
            elif entry.type == QuestionType.ESSAY.value:
                is_correct = None
            else:
                is_correct = False
            outcome.questions.append(QuestionGrade(
                question_id=question_id,
                type=entry.type,
                answer=answer.value if answer is not None else None,
                is_correct=is_correct,
                points=entry.points,
                earned_points=entry.points if is_correct else 0,
            ))
            outcome.total += entry.points
            outcome.earned += entry.points if is_correct else 0
        outcome.score = compute_score(outcome.earned, outcome.total)
        return outcome

    async def _stored_result(self, attempt: Attempt, assessment: Assessment, settings: SettingsOut) -> SubmitResponse:
        outcome = await self._stored_outcome(attempt)
        return self._build_result(
            attempt_id=attempt.id,
            status=attempt.status,
            submitted_at=ensure_utc(attempt.submitted_at),
            score=attempt.score,
            passed=attempt.passed,
            duration=attempt.duration,
            outcome=outcome,
            show_results=settings.show_results,
        )

    async def _load_stored_result(self, attempt_id: int) -> SubmitResponse:
        attempt = await self.store.get_attempt(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found")
        assessment = await self.catalog.get_assessment(attempt.assessment_id, include_deleted=True)
        return await self._stored_result(attempt, assessment, effective_settings(assessment.settings))

    # Instructor grading

    async def grade(
        self,
        attempt_id: int,
        score: float,
        feedback: Optional[str],
        per_answer: Sequence[Tuple[int, bool]],
    ) -> AdminAttempt:
        """Overwrite score and feedback and set answer flags; auto-grading is not rerun"""
        if score < 0 or score > 100:
            raise BadRequestError("Score must be between 0 and 100")

        async with transaction(self.db):
            attempt = await self.store.get_attempt(attempt_id, for_update=True)
            if attempt is None:
                raise NotFoundError("Attempt not found")
            if not attempt.is_terminal:
                raise InvalidStateError("Only completed or expired attempts can be graded")

            answer_ids = {a.id for a in await self.store.list_answers(attempt_id)}
            flags: Dict[int, bool] = {}
            for answer_id, is_correct in per_answer:
                if answer_id not in answer_ids:
                    raise BadRequestError(f"Answer {answer_id} does not belong to attempt {attempt_id}")
                flags[answer_id] = is_correct

            await self.store.set_answer_flags(attempt_id, flags)
            await self.store.update_grade(attempt_id, score, feedback)

        logger.info(f"Attempt {attempt_id} graded manually: score {score}, {len(flags)} answers updated")
        self.db.expire_all()
        return await self.get_attempt_record(attempt_id)

    # Reads

    async def get_attempt_details(self, attempt_id: int, user_id: int, now: datetime) -> AttemptDetail:
        now = ensure_utc(now)
        attempt = await self.store.load_attempt_with_answers(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found")
        if attempt.user_id != user_id:
            raise ForbiddenError("Attempt belongs to another user")

        assessment = await self.catalog.get_assessment(attempt.assessment_id, include_deleted=True)
        settings = effective_settings(assessment.settings)
        question_order = list(attempt.question_order or [])
        questions = await self.catalog.get_student_questions(question_order)

        reveal = attempt.is_terminal and settings.show_results
        answered = sum(1 for a in attempt.answers if a.question_id in question_order)
        total = len(question_order)

        if attempt.is_terminal:
            time_remaining = 0
        else:
            time_remaining = max(0, int((ensure_utc(attempt.ends_at) - now).total_seconds()))

        return AttemptDetail(
            attempt_id=attempt.id,
            assessment_id=attempt.assessment_id,
            title=assessment.title,
            status=attempt.status,
            started_at=attempt.started_at,
            ends_at=attempt.ends_at,
            submitted_at=attempt.submitted_at,
            duration=attempt.duration,
            score=attempt.score if reveal else None,
            passed=attempt.passed if reveal else None,
            feedback=attempt.feedback if attempt.is_terminal else None,
            time_remaining=time_remaining,
            progress=Progress(
                answered=answered,
                total=total,
                percentage=(answered * 100 // total) if total else 0,
            ),
            questions=questions,
            answers=[
                AnswerOut(
                    question_id=a.question_id,
                    answer=a.value,
                    is_correct=a.is_correct if reveal else None,
                )
                for a in attempt.answers
            ],
        )

    async def results_history(self, user_id: int, assessment_id: int) -> List[ResultHistoryItem]:
        """The caller's finished attempts for an assessment, newest submission first"""
        assessment = await self.catalog.get_assessment(assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment not found")
        settings = effective_settings(assessment.settings)

        attempts = await self.store.list_terminal_attempts(user_id, assessment_id)
        return [
            ResultHistoryItem(
                attempt_id=a.id,
                title=assessment.title,
                status=a.status,
                started_at=a.started_at,
                submitted_at=a.submitted_at,
                duration=a.duration,
                score=a.score if settings.show_results else None,
                passing_score=assessment.passing_score,
                passed=a.passed if settings.show_results else None,
                feedback=a.feedback,
            )
            for a in attempts
        ]

    @staticmethod
    def _admin_view(attempt: Attempt) -> AdminAttempt:
        return AdminAttempt(
            id=attempt.id,
            user_id=attempt.user_id,
            assessment_id=attempt.assessment_id,
            status=attempt.status,
            started_at=attempt.started_at,
            ends_at=attempt.ends_at,
            submitted_at=attempt.submitted_at,
            ended_at=attempt.ended_at,
            duration=attempt.duration,
            score=attempt.score,
            passed=attempt.passed,
            feedback=attempt.feedback,
            question_order=list(attempt.question_order or []),
            answers=[AdminAnswer.model_validate(a) for a in attempt.answers],
        )

    async def get_attempt_record(self, attempt_id: int) -> AdminAttempt:
        attempt = await self.store.load_attempt_with_answers(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found")
        return self._admin_view(attempt)

    async def list_user_attempts(self, assessment_id: int, user_id: int, paging: Paging) -> Page[AdminAttempt]:
        attempts, total = await self.store.list_attempts(user_id, assessment_id, paging)
        return Page[AdminAttempt](
            items=[self._admin_view(a) for a in attempts],
            total=total,
            page=paging.page,
            page_size=paging.page_size,
            total_pages=paging.total_pages(total),
        )

    async def delete_attempt(self, attempt_id: int, now: datetime) -> None:
        """Administrative soft delete; the attempt stops counting toward limits"""
        async with transaction(self.db):
            if not await self.store.soft_delete_attempt(attempt_id, now):
                raise NotFoundError("Attempt not found")
        logger.info(f"Attempt {attempt_id} soft-deleted")
