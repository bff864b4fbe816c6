from sqlalchemy import Column, String, Integer, BigInteger, Boolean, Float, DateTime, ForeignKey, Text, JSON, Index, UniqueConstraint, CheckConstraint, text
from sqlalchemy.orm import relationship
import enum

from exam_proctor.core.database import Base
from exam_proctor.utils.timeutils import utc_now


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


TERMINAL_STATUSES = (AttemptStatus.COMPLETED.value, AttemptStatus.EXPIRED.value)

# At most one live in-progress attempt per user
IN_PROGRESS_INDEX = 'uq_attempts_one_in_progress_per_user'
_ONE_ACTIVE_ATTEMPT = text("status = 'in_progress' AND deleted_at IS NULL")


class Attempt(Base):
    __tablename__ = "attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=AttemptStatus.IN_PROGRESS.value)

    # Timing
    started_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True))
    ended_at = Column(DateTime(timezone=True))
    duration = Column(Integer)  # minutes actually spent

    # Results
    score = Column(Float)
    passed = Column(Boolean)
    feedback = Column(Text)

    # Question set captured at start
    shuffle_seed = Column(BigInteger)
    question_order = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    assessment = relationship("Assessment", foreign_keys=[assessment_id])
    answers = relationship("Answer", back_populates="attempt", order_by="Answer.question_id", cascade="all, delete-orphan")

    __table_args__ = (
        Index(
            IN_PROGRESS_INDEX,
            'user_id',
            unique=True,
            postgresql_where=_ONE_ACTIVE_ATTEMPT,
            sqlite_where=_ONE_ACTIVE_ATTEMPT,
        ),
        Index('ix_attempts_user_assessment', 'user_id', 'assessment_id'),
        CheckConstraint("status IN ('in_progress', 'completed', 'expired')", name='valid_attempt_status'),
        CheckConstraint('score IS NULL OR (score >= 0 AND score <= 100)', name='valid_score'),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Answer(Base):
    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(Integer, ForeignKey("attempts.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    value = Column(Text, nullable=False)
    is_correct = Column(Boolean)  # None = ungraded
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    attempt = relationship("Attempt", back_populates="answers")

    __table_args__ = (
        UniqueConstraint('attempt_id', 'question_id', name='uq_answer_per_question'),
    )
