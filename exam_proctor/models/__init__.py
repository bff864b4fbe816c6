from .user import User, UserRole
from .assessment import Assessment, AssessmentSettings, AssessmentStatus, Question, QuestionOption, QuestionType
from .attempt import Attempt, AttemptStatus, Answer, IN_PROGRESS_INDEX, TERMINAL_STATUSES
from .proctoring import SuspiciousEvent, Activity, Severity

__all__ = ["User", "UserRole",
          "Assessment", "AssessmentSettings", "AssessmentStatus", "Question", "QuestionOption", "QuestionType",
          "Attempt", "AttemptStatus", "Answer", "IN_PROGRESS_INDEX", "TERMINAL_STATUSES",
          "SuspiciousEvent", "Activity", "Severity"]
