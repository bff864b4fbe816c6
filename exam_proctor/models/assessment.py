from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Text, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from exam_proctor.core.database import Base
from exam_proctor.utils.timeutils import utc_now


class AssessmentStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    ESSAY = "essay"


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    subject = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    duration = Column(Integer, nullable=False)  # minutes
    passing_score = Column(Integer, nullable=False, default=70)
    due_date = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default=AssessmentStatus.DRAFT.value, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    creator = relationship("User", foreign_keys=[created_by_id])
    settings = relationship("AssessmentSettings", back_populates="assessment", uselist=False, cascade="all, delete-orphan")
    questions = relationship("Question", back_populates="assessment", order_by="Question.id", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint('duration > 0', name='positive_duration'),
        CheckConstraint('passing_score >= 0 AND passing_score <= 100', name='valid_passing_score'),
        CheckConstraint("status IN ('draft', 'active', 'expired')", name='valid_assessment_status'),
    )


class AssessmentSettings(Base):
    __tablename__ = "assessment_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, unique=True)
    randomize_questions = Column(Boolean, nullable=False, default=False)
    show_results = Column(Boolean, nullable=False, default=True)
    allow_retake = Column(Boolean, nullable=False, default=False)
    max_attempts = Column(Integer, nullable=False, default=1)  # 0 = unlimited
    time_limit_enforced = Column(Boolean, nullable=False, default=True)
    require_webcam = Column(Boolean, nullable=False, default=False)
    prevent_tab_switching = Column(Boolean, nullable=False, default=False)
    require_identity_verification = Column(Boolean, nullable=False, default=False)

    assessment = relationship("Assessment", back_populates="settings")

    __table_args__ = (
        CheckConstraint('max_attempts >= 0', name='non_negative_max_attempts'),
    )


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    text = Column(Text, nullable=False)
    correct_answer = Column(String(255))  # option_id for MC, "true"/"false" for TF, empty for essay
    points = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    assessment = relationship("Assessment", back_populates="questions")
    options = relationship("QuestionOption", back_populates="question", order_by="QuestionOption.id", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint('points > 0', name='positive_points'),
        CheckConstraint("type IN ('multiple-choice', 'true-false', 'essay')", name='valid_question_type'),
    )


class QuestionOption(Base):
    __tablename__ = "question_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    option_id = Column(String(50), nullable=False)  # stable id referenced by correct_answer
    text = Column(Text, nullable=False)

    question = relationship("Question", back_populates="options")

    __table_args__ = (
        UniqueConstraint('question_id', 'option_id', name='uq_question_option'),
    )
