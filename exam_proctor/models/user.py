from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.types import Enum
import enum

from exam_proctor.core.database import Base
from exam_proctor.utils.timeutils import utc_now

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"

    def __str__(self):
        return self.value

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    role = Column(Enum(UserRole, name='user_role', values_callable=lambda obj: [e.value for e in obj]), default=UserRole.STUDENT, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    # Soft delete
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.INSTRUCTOR)
