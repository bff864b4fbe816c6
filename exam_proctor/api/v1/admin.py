"""
Instructor/admin review endpoints for attempts and proctoring events
"""
import logging
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from exam_proctor.core.database import get_db
from exam_proctor.models import User
from exam_proctor.schemas.attempt import AdminAttempt, GradeRequest
from exam_proctor.schemas.common import Page, StatusResponse
from exam_proctor.schemas.proctoring import SuspiciousEventOut
from exam_proctor.services.attempt_engine import AttemptEngine
from exam_proctor.services.proctoring import ProctoringRecorder
from exam_proctor.utils.deps import paging_params, require_staff
from exam_proctor.utils.pagination import Paging
from exam_proctor.utils.timeutils import utc_now

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/attempt/grade/{attempt_id}", response_model=AdminAttempt)
async def grade_attempt(
    attempt_id: int,
    request: GradeRequest,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    """Set the final score and feedback, and mark individual answers"""
    engine = AttemptEngine(db)
    logger.info(f"User {current_user.id} grading attempt {attempt_id}")
    return await engine.grade(
        attempt_id,
        request.score,
        request.feedback,
        [(a.id, a.is_correct) for a in request.answers],
    )


@router.get("/attempts/{assessment_id}/users/{user_id}", response_model=Page[AdminAttempt])
async def list_user_attempts(
    assessment_id: int,
    user_id: int,
    paging: Paging = Depends(paging_params()),
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    engine = AttemptEngine(db)
    return await engine.list_user_attempts(assessment_id, user_id, paging)


@router.get("/attempt/{attempt_id}", response_model=AdminAttempt)
async def get_attempt(
    attempt_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    engine = AttemptEngine(db)
    return await engine.get_attempt_record(attempt_id)


@router.get("/attempt/{attempt_id}/suspicious", response_model=List[SuspiciousEventOut])
async def list_suspicious_events(
    attempt_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    recorder = ProctoringRecorder(db)
    events = await recorder.list_for_attempt(attempt_id)
    return [SuspiciousEventOut.model_validate(e) for e in events]


@router.post("/suspicious/{event_id}/review", response_model=SuspiciousEventOut)
async def review_suspicious_event(
    event_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    recorder = ProctoringRecorder(db)
    event = await recorder.mark_reviewed(event_id)
    return SuspiciousEventOut.model_validate(event)


@router.delete("/attempt/{attempt_id}", response_model=StatusResponse)
async def delete_attempt(
    attempt_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db)
):
    engine = AttemptEngine(db)
    await engine.delete_attempt(attempt_id, utc_now())
    logger.info(f"User {current_user.id} deleted attempt {attempt_id}")
    return StatusResponse()
