import asyncio

from conftest import MC_Q1, at
from exam_proctor.services.attempt_engine import AttemptEngine
from exam_proctor.services.attempt_store import AttemptStore
from exam_proctor.services.expiry_scheduler import ExpiryScheduler


async def test_sweep_expires_only_due_attempts(session_factory, db, users, quiz, make_assessment):
    short = await make_assessment(users.instructor, [MC_Q1], title="Pop quiz", duration=5)
    engine = AttemptEngine(db)
    due = await engine.start(users.student.id, short.id, at(0))
    running = await engine.start(users.other_student.id, quiz.id, at(0))

    scheduler = ExpiryScheduler(session_factory)
    report = await scheduler.run_once(at(5))

    assert report.checked == 2
    assert report.expired == [due.attempt_id]
    assert report.failed == []

    store = AttemptStore(db)
    assert (await store.get_attempt(due.attempt_id)).status == "expired"
    assert (await store.get_attempt(running.attempt_id)).status == "in_progress"

    # Nothing left to do on the next tick
    report = await scheduler.run_once(at(6))
    assert report.expired == []


async def test_failed_expiry_does_not_stop_the_sweep(session_factory, db, users, quiz, monkeypatch):
    engine = AttemptEngine(db)
    first = await engine.start(users.student.id, quiz.id, at(0))
    second = await engine.start(users.other_student.id, quiz.id, at(0))

    original_expire = AttemptEngine.expire

    async def flaky_expire(self, attempt_id, now):
        if attempt_id == first.attempt_id:
            raise RuntimeError("database went away")
        return await original_expire(self, attempt_id, now)

    monkeypatch.setattr(AttemptEngine, "expire", flaky_expire)

    report = await ExpiryScheduler(session_factory).run_once(at(31))
    assert report.failed == [first.attempt_id]
    assert report.expired == [second.attempt_id]

    store = AttemptStore(db)
    assert (await store.get_attempt(first.attempt_id)).status == "in_progress"
    assert (await store.get_attempt(second.attempt_id)).status == "expired"


async def test_background_loop_ticks_and_stops(session_factory, db, users, quiz):
    started = await AttemptEngine(db).start(users.student.id, quiz.id, at(0))
    scheduler = ExpiryScheduler(session_factory, interval_seconds=0.05, grace_seconds=1, clock=lambda: at(45))

    scheduler.start()
    assert scheduler.running
    for _ in range(100):
        attempt = await AttemptStore(db).get_attempt(started.attempt_id)
        if attempt.status == "expired":
            break
        await asyncio.sleep(0.05)
    await scheduler.stop()

    assert not scheduler.running
    assert attempt.status == "expired"
    assert attempt.duration == 30


async def test_stop_without_start_is_noop(session_factory):
    scheduler = ExpiryScheduler(session_factory)
    await scheduler.stop()
    assert not scheduler.running
