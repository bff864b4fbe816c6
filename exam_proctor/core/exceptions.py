"""
Domain errors raised by the attempt services.

Each error carries the HTTP status it maps to and a stable error code; the
handler registered in ``main.py`` renders them as ``{"detail", "code"}``.
"""
from typing import Optional


class AssessmentServiceError(Exception):
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(AssessmentServiceError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_detail = "Resource not found"


class NotTakeableError(AssessmentServiceError):
    status_code = 404
    error_code = "NOT_TAKEABLE"
    default_detail = "Assessment is not available"


class AlreadyInAttemptError(AssessmentServiceError):
    status_code = 409
    error_code = "ALREADY_IN_ATTEMPT"
    default_detail = "You already have an assessment in progress"


class AttemptsExhaustedError(AssessmentServiceError):
    status_code = 409
    error_code = "ATTEMPTS_EXHAUSTED"
    default_detail = "Maximum number of attempts reached"


class RetakeNotAllowedError(AssessmentServiceError):
    status_code = 409
    error_code = "RETAKE_NOT_ALLOWED"
    default_detail = "Retakes are not allowed for this assessment"


class InvalidStateError(AssessmentServiceError):
    status_code = 409
    error_code = "INVALID_STATE"
    default_detail = "Operation not allowed in the attempt's current state"


class TimeExpiredError(AssessmentServiceError):
    status_code = 409
    error_code = "TIME_EXPIRED"
    default_detail = "Time limit for this attempt has expired"


class UnauthorizedError(AssessmentServiceError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_detail = "Invalid authentication credentials"


class ForbiddenError(AssessmentServiceError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_detail = "Access denied"


class BadRequestError(AssessmentServiceError):
    status_code = 400
    error_code = "BAD_REQUEST"
    default_detail = "Invalid request"


class TransientError(AssessmentServiceError):
    status_code = 503
    error_code = "TRANSIENT"
    default_detail = "Service temporarily unavailable, please retry"


# Store-level signals, translated by the engine

class ConflictError(Exception):
    """Insert would create a second in-progress attempt for the user"""


class AlreadyTerminalError(Exception):
    """Compare-and-set lost: the attempt already left in_progress"""
