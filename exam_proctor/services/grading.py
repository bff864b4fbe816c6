"""
Auto-grading of objective questions.

Everything here is a pure function of the answer key and the saved answers:
the same inputs always produce the same score.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple, Union

from exam_proctor.core.exceptions import BadRequestError
from exam_proctor.models import QuestionType

SUBMIT_FEEDBACK = "Thank you for completing the assessment."
ESSAY_FEEDBACK = " Your essay will be graded manually."


@dataclass(frozen=True)
class AnswerKeyEntry:
    question_id: int
    type: str
    correct_answer: Optional[str]
    points: int
    option_ids: Tuple[str, ...] = ()


@dataclass
class QuestionGrade:
    question_id: int
    type: str
    answer: Optional[str]
    is_correct: Optional[bool]
    points: int
    earned_points: int


@dataclass
class GradeOutcome:
    questions: List[QuestionGrade] = field(default_factory=list)
    earned: int = 0
    total: int = 0
    score: float = 0.0

    @property
    def correct_count(self) -> int:
        return sum(1 for q in self.questions if q.is_correct is True)

    @property
    def incorrect_count(self) -> int:
        return sum(1 for q in self.questions
                   if q.is_correct is False and q.answer is not None)

    @property
    def unanswered_count(self) -> int:
        return sum(1 for q in self.questions if q.answer is None)

    @property
    def essay_count(self) -> int:
        return sum(1 for q in self.questions if q.type == QuestionType.ESSAY.value)


def round2(value: Union[Decimal, float, int]) -> float:
    """Round half-up to two decimals"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def compute_score(earned: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round2(Decimal(100 * earned) / Decimal(total))


def normalize_true_false(value: str) -> Optional[str]:
    """Return "true"/"false" for a true-false answer, or None if it is neither"""
    normalized = value.strip().lower()
    if normalized in ("true", "false"):
        return normalized
    return None


def coerce_answer_value(raw: Union[bool, str]) -> str:
    """Booleans become "true"/"false"; strings pass through"""
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, str):
        return raw
    raise BadRequestError("Answer must be a string or a boolean")


def validate_answer(entry: AnswerKeyEntry, value: str) -> str:
    """
    Check a saved value against its question type and return the value to store.

    Multiple-choice values must name one of the question's options and
    true-false values must read as true or false. Essay text is stored as is.
    """
    if entry.type == QuestionType.MULTIPLE_CHOICE.value:
        if value not in entry.option_ids:
            raise BadRequestError("Answer is not one of the question's options")
        return value
    if entry.type == QuestionType.TRUE_FALSE.value:
        normalized = normalize_true_false(value)
        if normalized is None:
            raise BadRequestError("True/false answer must be true or false")
        return normalized
    return value


def grade_question(entry: AnswerKeyEntry, answer: Optional[str]) -> QuestionGrade:
    if entry.type == QuestionType.ESSAY.value:
        is_correct = None
    elif answer is None:
        is_correct = False
    elif entry.type == QuestionType.MULTIPLE_CHOICE.value:
        is_correct = answer == entry.correct_answer
    elif entry.type == QuestionType.TRUE_FALSE.value:
        expected = normalize_true_false(entry.correct_answer or "")
        is_correct = expected is not None and normalize_true_false(answer) == expected
    else:
        is_correct = False

    return QuestionGrade(
        question_id=entry.question_id,
        type=entry.type,
        answer=answer,
        is_correct=is_correct,
        points=entry.points,
        earned_points=entry.points if is_correct else 0,
    )


def grade_attempt(
    answer_key: Dict[int, AnswerKeyEntry],
    question_order: Sequence[int],
    answers: Dict[int, str],
) -> GradeOutcome:
    """Grade every question of the captured set, in the attempt's order"""
    outcome = GradeOutcome()
    for question_id in question_order:
        entry = answer_key.get(question_id)
        if entry is None:
            continue
        grade = grade_question(entry, answers.get(question_id))
        outcome.questions.append(grade)
        outcome.total += grade.points
        outcome.earned += grade.earned_points

    outcome.score = compute_score(outcome.earned, outcome.total)
    return outcome


def submit_feedback(outcome: GradeOutcome) -> str:
    if outcome.essay_count:
        return SUBMIT_FEEDBACK + ESSAY_FEEDBACK
    return SUBMIT_FEEDBACK
