from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from exam_proctor.core.exceptions import NotFoundError, NotTakeableError
from exam_proctor.models import Assessment, AssessmentSettings, AssessmentStatus, Question
from exam_proctor.schemas.assessment import OptionOut, SettingsOut, StudentQuestion
from exam_proctor.services.grading import AnswerKeyEntry
from exam_proctor.utils.timeutils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass
class AssessmentForStart:
    assessment: Assessment
    settings: SettingsOut
    questions: List[StudentQuestion]


def effective_settings(settings: Optional[AssessmentSettings]) -> SettingsOut:
    """Stored settings, or the defaults when the assessment has none"""
    if settings is None:
        return SettingsOut()
    return SettingsOut.model_validate(settings)


def to_student_question(question: Question) -> StudentQuestion:
    return StudentQuestion(
        id=question.id,
        type=question.type,
        text=question.text,
        points=question.points,
        options=[OptionOut(id=o.option_id, text=o.text) for o in question.options],
    )


class CatalogReader:
    """Read-only view of assessments, settings and questions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_assessment(self, assessment_id: int, include_deleted: bool = False) -> Optional[Assessment]:
        stmt = (
            select(Assessment)
            .options(
                selectinload(Assessment.settings),
                selectinload(Assessment.questions).selectinload(Question.options),
            )
            .where(Assessment.id == assessment_id)
        )
        if not include_deleted:
            stmt = stmt.where(Assessment.deleted_at.is_(None))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_settings(self, assessment_id: int) -> SettingsOut:
        result = await self.db.execute(
            select(AssessmentSettings).where(AssessmentSettings.assessment_id == assessment_id)
        )
        return effective_settings(result.scalar_one_or_none())

    async def get_assessment_for_start(self, assessment_id: int, now: datetime) -> AssessmentForStart:
        assessment = await self.get_assessment(assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment not found")

        if assessment.status != AssessmentStatus.ACTIVE.value:
            raise NotTakeableError("Assessment is not active")

        due_date = ensure_utc(assessment.due_date)
        if due_date is not None and due_date < ensure_utc(now):
            raise NotTakeableError("Assessment due date has passed")

        questions = [q for q in assessment.questions if q.deleted_at is None]
        if not questions:
            raise NotTakeableError("Assessment has no questions")

        return AssessmentForStart(
            assessment=assessment,
            settings=effective_settings(assessment.settings),
            questions=[to_student_question(q) for q in questions],
        )

    async def _load_questions(self, question_ids: Iterable[int]) -> Dict[int, Question]:
        ids = list(question_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Question)
            .options(selectinload(Question.options))
            .where(Question.id.in_(ids))
        )
        return {q.id: q for q in result.scalars().all()}

    async def get_answer_key(self, question_ids: Iterable[int]) -> Dict[int, AnswerKeyEntry]:
        """
        Grading data for the given questions, soft-deleted ones included.

        Never leaves the service layer.
        """
        questions = await self._load_questions(question_ids)
        return {
            qid: AnswerKeyEntry(
                question_id=q.id,
                type=q.type,
                correct_answer=q.correct_answer,
                points=q.points,
                option_ids=tuple(o.option_id for o in q.options),
            )
            for qid, q in questions.items()
        }

    async def get_student_questions(self, question_ids: List[int]) -> List[StudentQuestion]:
        """Questions in the given order, stripped of the answer key"""
        questions = await self._load_questions(question_ids)
        return [to_student_question(questions[qid]) for qid in question_ids if qid in questions]
