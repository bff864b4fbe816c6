from datetime import datetime
from typing import Optional, List

from .common import CamelModel


class SettingsOut(CamelModel):
    randomize_questions: bool = False
    show_results: bool = True
    allow_retake: bool = False
    max_attempts: int = 1
    time_limit_enforced: bool = True
    require_webcam: bool = False
    prevent_tab_switching: bool = False
    require_identity_verification: bool = False


class OptionOut(CamelModel):
    id: str
    text: str


class StudentQuestion(CamelModel):
    """Question as delivered to a student: never carries the answer key"""
    id: int
    type: str
    text: str
    points: int
    options: List[OptionOut] = []


class AvailableAssessment(CamelModel):
    id: int
    title: str
    subject: str
    description: Optional[str] = None
    duration: int
    passing_score: int
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    creator_name: Optional[str] = None
    question_count: int
    attempt_count: int
    has_completed: bool
    can_attempt: bool
    max_attempts: int
    allow_retake: bool
    time_limit_enforced: bool
    require_webcam: bool
    prevent_tab_switching: bool
    require_identity_verification: bool
