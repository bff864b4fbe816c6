from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from exam_proctor.core.database import transaction
from exam_proctor.core.exceptions import ForbiddenError, NotFoundError
from exam_proctor.models import Activity, Attempt, Severity, SuspiciousEvent
from exam_proctor.services.attempt_store import AttemptStore
from exam_proctor.utils.timeutils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

SEVERITY_BY_EVENT = {
    "TAB_SWITCHING": Severity.HIGH,
    "MULTIPLE_FACES": Severity.HIGH,
    "FACE_NOT_DETECTED": Severity.MEDIUM,
    "LOOKING_AWAY": Severity.MEDIUM,
}

STUDENT_MESSAGES = {
    "FACE_NOT_DETECTED": "Please ensure your face is visible in the webcam at all times.",
    "MULTIPLE_FACES": "Multiple faces detected. This is not allowed.",
    "LOOKING_AWAY": "Please focus on your screen.",
    "TAB_SWITCHING": "Switching tabs is not allowed during the assessment.",
    "SUSPICIOUS_OBJECT": "Suspicious object detected. Please remove it.",
    "VOICE_DETECTED": "Please remain quiet during the assessment.",
}
DEFAULT_MESSAGE = "Event recorded."


def normalize_event_type(event_type: str) -> str:
    return event_type.strip().upper()


def classify_severity(event_type: str) -> Severity:
    return SEVERITY_BY_EVENT.get(normalize_event_type(event_type), Severity.LOW)


def student_message(event_type: str) -> str:
    return STUDENT_MESSAGES.get(normalize_event_type(event_type), DEFAULT_MESSAGE)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def render_details(event_type: str, details: Union[str, Dict[str, Any], None]) -> Optional[str]:
    """Turn client-reported details into the text stored with the event"""
    if details is None or isinstance(details, str):
        return details

    event_type = normalize_event_type(event_type)
    duration = _number(details.get("duration"))
    confidence = _number(details.get("confidence"))
    count = _number(details.get("count"))

    if event_type == "FACE_NOT_DETECTED" and duration is not None:
        text = f"Face not detected for {duration:.1f} seconds"
        if confidence is not None:
            text += f" (confidence: {confidence:.2f})"
        return text
    if event_type == "MULTIPLE_FACES" and count is not None:
        return f"Multiple faces detected: {int(count)}"
    if event_type == "LOOKING_AWAY" and duration is not None:
        return f"Looking away for {duration:.1f} seconds"
    if event_type == "TAB_SWITCHING":
        return "User switched tabs"
    if details:
        return f"{event_type} detected: {json.dumps(details, sort_keys=True, default=str)}"
    return f"{event_type} detected"


@dataclass
class SuspiciousOutcome:
    severity: str
    message: str
    duplicate: bool


class ProctoringRecorder:
    """
    Ingests session activity and suspicious integrity events.

    Events never feed into grading; they are kept for instructor review.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = AttemptStore(db)

    async def _owned_attempt(self, attempt_id: int, user_id: int) -> Attempt:
        attempt = await self.store.get_attempt(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found")
        if attempt.user_id != user_id:
            raise ForbiddenError("Attempt belongs to another user")
        return attempt

    async def log_activity(
        self,
        *,
        user_id: int,
        action: str,
        timestamp: datetime,
        assessment_id: Optional[int] = None,
        attempt_id: Optional[int] = None,
        details: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Activity:
        """Append an activity row inside the caller's transaction"""
        return await self.store.record_activity(
            user_id=user_id,
            action=action,
            timestamp=timestamp,
            assessment_id=assessment_id,
            attempt_id=attempt_id,
            details=details,
            user_agent=user_agent,
            ip_address=ip_address,
        )

    async def session(
        self,
        attempt_id: int,
        user_id: int,
        action: str,
        user_agent: Optional[str] = None,
        detail: Optional[str] = None,
        now: Optional[datetime] = None,
        ip_address: Optional[str] = None,
    ) -> Activity:
        now = ensure_utc(now) or utc_now()
        async with transaction(self.db):
            attempt = await self._owned_attempt(attempt_id, user_id)
            activity = await self.log_activity(
                user_id=user_id,
                action=normalize_event_type(action),
                timestamp=now,
                assessment_id=attempt.assessment_id,
                attempt_id=attempt.id,
                details=detail,
                user_agent=user_agent,
                ip_address=ip_address,
            )
        logger.debug(f"Session event {activity.action} recorded for attempt {attempt_id}")
        return activity

    async def suspicious(
        self,
        attempt_id: int,
        user_id: int,
        event_type: str,
        details: Union[str, Dict[str, Any], None],
        timestamp: datetime,
        image: Optional[bytes] = None,
        now: Optional[datetime] = None,
    ) -> SuspiciousOutcome:
        """Classify and store one suspicious event; a resent event is recorded once"""
        now = ensure_utc(now) or utc_now()
        event_type = normalize_event_type(event_type)
        severity = classify_severity(event_type)

        async with transaction(self.db):
            attempt = await self._owned_attempt(attempt_id, user_id)
            inserted = await self.store.save_suspicious_event(
                attempt_id=attempt.id,
                user_id=attempt.user_id,
                assessment_id=attempt.assessment_id,
                event_type=event_type,
                details=render_details(event_type, details),
                timestamp=timestamp,
                severity=severity.value,
                image_data=image,
                created_at=now,
            )

        if inserted:
            logger.info(f"Suspicious event {event_type} ({severity.value}) recorded for attempt {attempt_id}")
        else:
            logger.warning(f"Duplicate suspicious event {event_type} at {timestamp} for attempt {attempt_id} ignored")

        return SuspiciousOutcome(
            severity=severity.value,
            message=student_message(event_type),
            duplicate=not inserted,
        )

    async def list_for_attempt(self, attempt_id: int) -> List[SuspiciousEvent]:
        attempt = await self.store.get_attempt(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found")
        return await self.store.list_suspicious_by_attempt(attempt_id)

    async def mark_reviewed(self, event_id: int) -> SuspiciousEvent:
        async with transaction(self.db):
            if not await self.store.mark_suspicious_reviewed(event_id):
                raise NotFoundError("Suspicious event not found")
        logger.info(f"Suspicious event {event_id} marked as reviewed")
        return await self.store.get_suspicious_event(event_id)
