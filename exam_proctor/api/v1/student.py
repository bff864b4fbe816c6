"""
Student assessment-taking API endpoints
"""
import base64
import binascii
import logging
from typing import List, Optional, Union
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from exam_proctor.core.database import get_db
from exam_proctor.core.exceptions import BadRequestError
from exam_proctor.models import User
from exam_proctor.schemas.assessment import AvailableAssessment
from exam_proctor.schemas.attempt import (
    AttemptDetail, ResultHistoryItem, SaveAnswerRequest, StartAttemptResponse,
    SubmitAcknowledgement, SubmitResult
)
from exam_proctor.schemas.common import Page, StatusResponse
from exam_proctor.schemas.proctoring import MonitorEventRequest, MonitorEventResponse, SessionEventRequest
from exam_proctor.services.attempt_engine import AttemptEngine
from exam_proctor.services.availability import AvailabilityProjector, SORTABLE_FIELDS
from exam_proctor.services.proctoring import ProctoringRecorder
from exam_proctor.utils.deps import paging_params, require_student
from exam_proctor.utils.pagination import Paging
from exam_proctor.utils.timeutils import utc_now

logger = logging.getLogger(__name__)
router = APIRouter()


def decode_image(image_data: Optional[str]) -> Optional[bytes]:
    """Decode a base64 capture, with or without a data: URL prefix"""
    if not image_data:
        return None
    if image_data.startswith("data:") and "," in image_data:
        image_data = image_data.split(",", 1)[1]
    try:
        return base64.b64decode(image_data, validate=True)
    except (binascii.Error, ValueError):
        raise BadRequestError("imageData must be valid base64")


@router.get("/assessments/available", response_model=Page[AvailableAssessment])
async def list_available_assessments(
    search: Optional[str] = Query(None, max_length=200),
    subject: Optional[str] = Query(None, max_length=100),
    paging: Paging = Depends(paging_params(tuple(SORTABLE_FIELDS))),
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Active, in-window assessments with the caller's attempt standing"""
    projector = AvailabilityProjector(db)
    return await projector.list_available(
        current_user.id,
        paging,
        utc_now(),
        search=search,
        subject=subject,
    )


@router.post("/assessments/{assessment_id}/start", response_model=StartAttemptResponse)
async def start_assessment(
    assessment_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    engine = AttemptEngine(db)
    return await engine.start(current_user.id, assessment_id, utc_now())


@router.get("/assessments/{assessment_id}/results", response_model=List[ResultHistoryItem])
async def get_results_history(
    assessment_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    engine = AttemptEngine(db)
    return await engine.results_history(current_user.id, assessment_id)


@router.get("/attempts/{attempt_id}", response_model=AttemptDetail)
async def get_attempt_details(
    attempt_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    engine = AttemptEngine(db)
    return await engine.get_attempt_details(attempt_id, current_user.id, utc_now())


@router.post("/attempts/{attempt_id}/answers", response_model=StatusResponse)
async def save_answer(
    attempt_id: int,
    request: SaveAnswerRequest,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    engine = AttemptEngine(db)
    await engine.save_answer(attempt_id, request.question_id, request.answer, current_user.id, utc_now())
    return StatusResponse()


@router.post("/attempts/{attempt_id}/submit", response_model=None)
async def submit_attempt(
    attempt_id: int,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
) -> Union[SubmitResult, SubmitAcknowledgement]:
    """Submit the attempt; the score breakdown is included only when results are shown"""
    engine = AttemptEngine(db)
    return await engine.submit(attempt_id, current_user.id, utc_now())


@router.post("/attempts/{attempt_id}/monitor", response_model=MonitorEventResponse)
async def submit_monitor_event(
    attempt_id: int,
    request: MonitorEventRequest,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Record a proctoring event reported by the client"""
    image = decode_image(request.image_data)
    recorder = ProctoringRecorder(db)
    outcome = await recorder.suspicious(
        attempt_id,
        current_user.id,
        request.event_type,
        request.details,
        request.timestamp,
        image=image,
        now=utc_now(),
    )
    return MonitorEventResponse(
        severity=outcome.severity,
        message=outcome.message,
        duplicate=outcome.duplicate,
    )


@router.post("/attempts/{attempt_id}/session", response_model=StatusResponse)
async def record_session_event(
    attempt_id: int,
    body: SessionEventRequest,
    request: Request,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    detail = f"question_id={body.question_id}" if body.question_id is not None else None
    recorder = ProctoringRecorder(db)
    await recorder.session(
        attempt_id,
        current_user.id,
        body.action,
        user_agent=body.user_agent or request.headers.get("user-agent"),
        detail=detail,
        now=body.timestamp or utc_now(),
        ip_address=request.client.host if request.client else None,
    )
    return StatusResponse()
