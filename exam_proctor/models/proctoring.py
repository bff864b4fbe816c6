from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Text, LargeBinary, UniqueConstraint
from sqlalchemy.orm import deferred
import enum

from exam_proctor.core.database import Base
from exam_proctor.utils.timeutils import utc_now


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class SuspiciousEvent(Base):
    __tablename__ = "suspicious_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(Integer, ForeignKey("attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    assessment_id = Column(Integer, ForeignKey("assessments.id"), nullable=False)
    event_type = Column(String(50), nullable=False)
    details = Column(Text)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    severity = Column(String(10), nullable=False)
    # Only loaded when explicitly requested
    image_data = deferred(Column(LargeBinary))
    has_image = Column(Boolean, nullable=False, default=False)
    reviewed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint('attempt_id', 'timestamp', 'event_type', name='uq_suspicious_event_natural_key'),
    )


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id"))
    attempt_id = Column(Integer, ForeignKey("attempts.id", ondelete="CASCADE"), index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text)
    ip_address = Column(String(45))
    user_agent = Column(String(500))
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utc_now)
