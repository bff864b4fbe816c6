import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./exam_proctor_test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from exam_proctor.core.database import Base, get_db
from exam_proctor.core.security import create_access_token
from exam_proctor.models import (
    Assessment, AssessmentSettings, Question, QuestionOption, User, UserRole
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    """T0 plus the given number of minutes"""
    return T0 + timedelta(minutes=minutes)


MC_Q1 = {"type": "multiple-choice", "text": "Pick b", "options": ["a", "b", "c"], "correct_answer": "b", "points": 10}
TF_Q2 = {"type": "true-false", "text": "The sky is blue", "correct_answer": "true", "points": 5}
ESSAY_Q3 = {"type": "essay", "text": "Explain photosynthesis", "points": 5}


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'exam_proctor.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def create_user(db: AsyncSession, email: str, role: UserRole = UserRole.STUDENT,
                      name: Optional[str] = None) -> SimpleNamespace:
    """Persist a user and return a detached snapshot of it"""
    user = User(email=email, name=name or email.split("@")[0].title(), role=role)
    db.add(user)
    await db.commit()
    # Plain values: a rollback in a failing service call expires session instances
    return SimpleNamespace(id=user.id, email=user.email, name=user.name, role=user.role)


async def create_assessment(
    db: AsyncSession,
    creator,
    questions: List[Dict[str, Any]],
    *,
    title: str = "Algebra Basics",
    subject: str = "math",
    description: Optional[str] = None,
    duration: int = 30,
    passing_score: int = 70,
    status: str = "active",
    due_date: Optional[datetime] = None,
    settings: Optional[Dict[str, Any]] = None,
) -> SimpleNamespace:
    assessment = Assessment(
        title=title,
        subject=subject,
        description=description,
        duration=duration,
        passing_score=passing_score,
        status=status,
        due_date=due_date,
        created_by_id=creator.id,
    )
    if settings is not None:
        assessment.settings = AssessmentSettings(**settings)
    created = []
    for item in questions:
        question = Question(
            type=item["type"],
            text=item["text"],
            correct_answer=item.get("correct_answer"),
            points=item["points"],
        )
        question.options = [QuestionOption(option_id=o, text=f"Option {o}") for o in item.get("options", [])]
        assessment.questions.append(question)
        created.append(question)
    db.add(assessment)
    await db.commit()
    return SimpleNamespace(
        assessment=assessment,
        id=assessment.id,
        question_ids=[q.id for q in created],
    )


@pytest.fixture
def make_assessment(db):
    async def factory(creator, questions, **kwargs):
        return await create_assessment(db, creator, questions, **kwargs)
    return factory


@pytest.fixture
async def users(db):
    return SimpleNamespace(
        instructor=await create_user(db, "frizzle@example.com", UserRole.INSTRUCTOR, name="Ms Frizzle"),
        admin=await create_user(db, "admin@example.com", UserRole.ADMIN),
        student=await create_user(db, "student@example.com"),
        other_student=await create_user(db, "other@example.com"),
    )


@pytest.fixture
async def quiz(db, users):
    """Q1 multiple choice (b, 10 pts) and Q2 true/false (true, 5 pts), 30 minutes, pass at 70"""
    return await create_assessment(db, users.instructor, [MC_Q1, TF_Q2])


def auth_headers(user) -> Dict[str, str]:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_factory):
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
