from datetime import datetime
from typing import Optional, Union, Dict, Any
from pydantic import Field

from .common import CamelModel


class MonitorEventRequest(CamelModel):
    event_type: str = Field(..., min_length=1, max_length=50)
    timestamp: datetime
    details: Optional[Union[str, Dict[str, Any]]] = None
    image_data: Optional[str] = None  # base64


class MonitorEventResponse(CamelModel):
    received: bool = True
    severity: str
    message: str
    duplicate: bool = False


class SessionEventRequest(CamelModel):
    action: str = Field(..., min_length=1, max_length=50)
    user_agent: Optional[str] = Field(None, max_length=500)
    question_id: Optional[int] = None
    timestamp: Optional[datetime] = None


class SuspiciousEventOut(CamelModel):
    id: int
    attempt_id: int
    user_id: int
    assessment_id: int
    event_type: str
    details: Optional[str] = None
    timestamp: datetime
    severity: str
    has_image: bool
    reviewed: bool
