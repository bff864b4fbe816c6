import sqlite3
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import at
from exam_proctor.core.exceptions import AlreadyTerminalError, ConflictError, InvalidStateError, NotFoundError
from exam_proctor.models import Answer
from exam_proctor.services.attempt_store import AttemptStore, is_in_progress_conflict


async def _create(store, user, quiz, minutes=0):
    return await store.create_attempt(
        user_id=user.id,
        assessment_id=quiz.id,
        started_at=at(minutes),
        ends_at=at(minutes + 30),
        question_order=quiz.question_ids,
    )


async def _finish(store, attempt_id, status="completed", minutes=5):
    await store.transition_to_terminal(
        attempt_id,
        status=status,
        submitted_at=at(minutes),
        ended_at=at(minutes),
        score=50.0,
        passed=False,
        duration=minutes,
    )


async def test_second_in_progress_attempt_conflicts(session_factory, users, quiz):
    async with session_factory() as session:
        store = AttemptStore(session)
        await _create(store, users.student, quiz)
        await session.commit()

    async with session_factory() as session:
        store = AttemptStore(session)
        with pytest.raises(ConflictError):
            await _create(store, users.student, quiz, minutes=1)

    async with session_factory() as session:
        store = AttemptStore(session)
        assert await store.count_attempts(users.student.id, quiz.id) == 1


async def test_new_attempt_allowed_once_previous_is_terminal(db, users, quiz):
    store = AttemptStore(db)
    first = await _create(store, users.student, quiz)
    await _finish(store, first.id)
    await db.commit()

    second = await _create(store, users.student, quiz, minutes=10)
    await db.commit()
    assert second.id != first.id


async def test_upsert_answer_keeps_single_row_with_last_value(db, users, quiz):
    store = AttemptStore(db)
    attempt = await _create(store, users.student, quiz)
    q1 = quiz.question_ids[0]

    for value in ("a", "c", "b"):
        await store.upsert_answer(attempt, q1, value, at(1))
    await db.commit()

    answers = await store.list_answers(attempt.id)
    assert len(answers) == 1
    assert answers[0].value == "b"


async def test_upsert_clears_previous_grade(db, users, quiz):
    store = AttemptStore(db)
    attempt = await _create(store, users.student, quiz)
    q1 = quiz.question_ids[0]
    await store.upsert_answer(attempt, q1, "b", at(1))
    await store.set_answer_grades(attempt.id, {q1: True})
    await store.upsert_answer(attempt, q1, "a", at(2))
    await db.commit()

    [answer] = await store.list_answers(attempt.id)
    assert isinstance(answer, Answer)
    assert answer.is_correct is None


async def test_upsert_rejects_missing_or_finished_attempt(db, users, quiz):
    store = AttemptStore(db)
    with pytest.raises(NotFoundError):
        await store.upsert_answer(None, quiz.question_ids[0], "b", at(1))

    attempt = await _create(store, users.student, quiz)
    await _finish(store, attempt.id)
    await db.commit()
    attempt = await store.get_attempt(attempt.id)
    with pytest.raises(InvalidStateError):
        await store.upsert_answer(attempt, quiz.question_ids[0], "b", at(6))


async def test_transition_is_compare_and_set(db, users, quiz):
    store = AttemptStore(db)
    attempt = await _create(store, users.student, quiz)
    await _finish(store, attempt.id, status="expired")
    with pytest.raises(AlreadyTerminalError):
        await _finish(store, attempt.id, status="completed", minutes=9)
    await db.commit()

    stored = await store.get_attempt(attempt.id)
    assert stored.status == "expired"
    assert stored.submitted_at is not None
    assert stored.ended_at is not None


async def test_counts_and_completion(db, users, quiz):
    store = AttemptStore(db)
    first = await _create(store, users.student, quiz)
    await _finish(store, first.id, status="expired")
    await db.commit()

    assert await store.count_attempts(users.student.id, quiz.id) == 1
    assert await store.has_completed(users.student.id, quiz.id) is False

    second = await _create(store, users.student, quiz, minutes=40)
    await _finish(store, second.id, status="completed", minutes=45)
    await db.commit()

    assert await store.count_attempts(users.student.id, quiz.id) == 2
    assert await store.has_completed(users.student.id, quiz.id) is True
    assert await store.has_completed(users.other_student.id, quiz.id) is False


async def test_soft_deleted_attempt_is_invisible(db, users, quiz):
    store = AttemptStore(db)
    attempt = await _create(store, users.student, quiz)
    assert await store.soft_delete_attempt(attempt.id, at(1)) is True
    await db.commit()

    assert await store.get_attempt(attempt.id) is None
    assert await store.find_in_progress(users.student.id) is None
    assert await store.count_attempts(users.student.id, quiz.id) == 0
    assert await store.soft_delete_attempt(attempt.id, at(2)) is False

    # The unique in-progress slot is free again
    await _create(store, users.student, quiz, minutes=3)
    await db.commit()


async def test_list_in_progress_joins_timing_rules(db, users, quiz, make_assessment):
    untimed = await make_assessment(users.instructor, [{"type": "essay", "text": "Free", "points": 1}],
                                    settings={"time_limit_enforced": False})
    store = AttemptStore(db)
    await _create(store, users.student, quiz)
    await _create(store, users.other_student, untimed)
    await db.commit()

    rows = {r.assessment_id: r for r in await store.list_in_progress()}
    assert rows[quiz.id].time_limit_enforced is True
    assert rows[quiz.id].ends_at == at(30)
    assert rows[untimed.id].time_limit_enforced is False


async def test_duplicate_suspicious_event_is_stored_once(db, users, quiz):
    store = AttemptStore(db)
    attempt = await _create(store, users.student, quiz)
    event = dict(
        attempt_id=attempt.id,
        user_id=users.student.id,
        assessment_id=quiz.id,
        event_type="TAB_SWITCHING",
        details="User switched tabs",
        timestamp=at(2),
        severity="HIGH",
        image_data=None,
        created_at=at(2),
    )
    assert await store.save_suspicious_event(**event) is True
    assert await store.save_suspicious_event(**event) is False
    await db.commit()

    events = await store.list_suspicious_by_attempt(attempt.id)
    assert len(events) == 1
    assert events[0].has_image is False


async def test_other_integrity_errors_are_not_reported_as_conflicts(db, users, quiz):
    store = AttemptStore(db)
    with pytest.raises(IntegrityError) as excinfo:
        await store.create_attempt(
            user_id=users.student.id,
            assessment_id=quiz.id,
            started_at=at(0),
            ends_at=None,
            question_order=quiz.question_ids,
        )
    assert not isinstance(excinfo.value, ConflictError)

    # The failed insert left the in-progress slot free
    attempt = await _create(store, users.student, quiz)
    await db.commit()
    assert attempt.id is not None


class _PgError(Exception):
    def __init__(self, constraint_name):
        super().__init__(f"violates constraint {constraint_name}")
        self.diag = SimpleNamespace(constraint_name=constraint_name)


@pytest.mark.parametrize("orig,expected", [
    (_PgError("uq_attempts_one_in_progress_per_user"), True),
    (_PgError("attempts_assessment_id_fkey"), False),
    (sqlite3.IntegrityError("UNIQUE constraint failed: attempts.user_id"), True),
    (sqlite3.IntegrityError("CHECK constraint failed: valid_score"), False),
    (sqlite3.IntegrityError("FOREIGN KEY constraint failed"), False),
])
def test_in_progress_conflict_detection(orig, expected):
    error = IntegrityError("INSERT INTO attempts ...", {}, orig)
    assert is_in_progress_conflict(error) is expected
