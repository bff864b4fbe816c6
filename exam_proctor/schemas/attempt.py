from datetime import datetime
from typing import Optional, List, Union
from pydantic import Field, StrictBool, StrictStr

from .common import CamelModel
from .assessment import SettingsOut, StudentQuestion


class StartAttemptResponse(CamelModel):
    attempt_id: int
    assessment_id: int
    title: str
    duration: int
    time_limit: bool
    started_at: datetime
    ends_at: datetime
    questions: List[StudentQuestion]
    settings: SettingsOut


class SaveAnswerRequest(CamelModel):
    question_id: int
    answer: Union[StrictBool, StrictStr]


class QuestionResult(CamelModel):
    question_id: int
    type: str
    answer: Optional[str] = None
    is_correct: Optional[bool] = None
    points: int
    earned_points: int


class SubmitAcknowledgement(CamelModel):
    """Returned when the assessment hides results from students"""
    attempt_id: int
    status: str
    submitted: bool = True
    submitted_at: datetime


class SubmitResult(SubmitAcknowledgement):
    score: float
    passed: bool
    duration: int
    total_questions: int
    correct_answers: int
    incorrect_answers: int
    unanswered: int
    essay_questions: int
    feedback: str
    per_question: List[QuestionResult]


class AnswerOut(CamelModel):
    question_id: int
    answer: str
    is_correct: Optional[bool] = None


class Progress(CamelModel):
    answered: int
    total: int
    percentage: int


class AttemptDetail(CamelModel):
    attempt_id: int
    assessment_id: int
    title: str
    status: str
    started_at: datetime
    ends_at: datetime
    submitted_at: Optional[datetime] = None
    duration: Optional[int] = None
    score: Optional[float] = None
    passed: Optional[bool] = None
    feedback: Optional[str] = None
    time_remaining: int
    progress: Progress
    questions: List[StudentQuestion]
    answers: List[AnswerOut]


class ResultHistoryItem(CamelModel):
    attempt_id: int
    title: str
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    duration: Optional[int] = None
    score: Optional[float] = None
    passing_score: int
    passed: Optional[bool] = None
    feedback: Optional[str] = None


class GradeAnswer(CamelModel):
    id: int
    is_correct: bool


class GradeRequest(CamelModel):
    score: float = Field(..., ge=0, le=100)
    feedback: Optional[str] = None
    answers: List[GradeAnswer] = []


class AdminAnswer(CamelModel):
    id: int
    question_id: int
    value: str
    is_correct: Optional[bool] = None
    updated_at: Optional[datetime] = None


class AdminAttempt(CamelModel):
    id: int
    user_id: int
    assessment_id: int
    status: str
    started_at: datetime
    ends_at: datetime
    submitted_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: Optional[int] = None
    score: Optional[float] = None
    passed: Optional[bool] = None
    feedback: Optional[str] = None
    question_order: List[int] = []
    answers: List[AdminAnswer] = []
