import pytest

from conftest import at
from exam_proctor.core.exceptions import ForbiddenError, NotFoundError
from exam_proctor.services.attempt_engine import AttemptEngine
from exam_proctor.services.attempt_store import AttemptStore
from exam_proctor.services.proctoring import (
    DEFAULT_MESSAGE, ProctoringRecorder, classify_severity, render_details, student_message
)


@pytest.mark.parametrize("event_type,severity", [
    ("TAB_SWITCHING", "HIGH"),
    ("MULTIPLE_FACES", "HIGH"),
    ("FACE_NOT_DETECTED", "MEDIUM"),
    ("LOOKING_AWAY", "MEDIUM"),
    ("TAB_SWITCH", "LOW"),
    ("VOICE_DETECTED", "LOW"),
    ("SOMETHING_NEW", "LOW"),
    (" tab_switching ", "HIGH"),
])
def test_severity_table(event_type, severity):
    assert classify_severity(event_type).value == severity


def test_student_messages():
    assert student_message("LOOKING_AWAY") == "Please focus on your screen."
    assert student_message("multiple_faces") == "Multiple faces detected. This is not allowed."
    assert student_message("COFFEE_BREAK") == DEFAULT_MESSAGE


def test_render_details():
    assert render_details("FACE_NOT_DETECTED", {"duration": 4, "confidence": 0.876}) == \
        "Face not detected for 4.0 seconds (confidence: 0.88)"
    assert render_details("MULTIPLE_FACES", {"count": 2}) == "Multiple faces detected: 2"
    assert render_details("LOOKING_AWAY", {"duration": 2.5}) == "Looking away for 2.5 seconds"
    assert render_details("TAB_SWITCHING", {"hidden": True}) == "User switched tabs"
    assert render_details("VOICE_DETECTED", {"level": 3}) == 'VOICE_DETECTED detected: {"level": 3}'
    assert render_details("VOICE_DETECTED", {}) == "VOICE_DETECTED detected"
    assert render_details("ANY", "already text") == "already text"
    assert render_details("ANY", None) is None


async def test_suspicious_event_is_classified_and_stored(db, users, quiz):
    started = await AttemptEngine(db).start(users.student.id, quiz.id, at(0))
    recorder = ProctoringRecorder(db)

    outcome = await recorder.suspicious(
        started.attempt_id, users.student.id, "multiple_faces", {"count": 3}, at(2),
        image=b"\x89PNG", now=at(2)
    )
    assert outcome.severity == "HIGH"
    assert outcome.message == "Multiple faces detected. This is not allowed."
    assert outcome.duplicate is False

    [event] = await recorder.list_for_attempt(started.attempt_id)
    assert event.event_type == "MULTIPLE_FACES"
    assert event.details == "Multiple faces detected: 3"
    assert event.has_image is True
    assert event.reviewed is False


async def test_resent_event_is_recorded_once(db, users, quiz):
    started = await AttemptEngine(db).start(users.student.id, quiz.id, at(0))
    recorder = ProctoringRecorder(db)

    first = await recorder.suspicious(started.attempt_id, users.student.id, "TAB_SWITCHING", None, at(3))
    second = await recorder.suspicious(started.attempt_id, users.student.id, "TAB_SWITCHING", None, at(3))
    third = await recorder.suspicious(started.attempt_id, users.student.id, "TAB_SWITCHING", None, at(4))

    assert (first.duplicate, second.duplicate, third.duplicate) == (False, True, False)
    assert len(await recorder.list_for_attempt(started.attempt_id)) == 2


async def test_events_accepted_after_attempt_ends(db, users, quiz):
    engine = AttemptEngine(db)
    started = await engine.start(users.student.id, quiz.id, at(0))
    await engine.submit(started.attempt_id, users.student.id, at(5))

    outcome = await ProctoringRecorder(db).suspicious(
        started.attempt_id, users.student.id, "LOOKING_AWAY", {"duration": 3}, at(6)
    )
    assert outcome.severity == "MEDIUM"

    # Events never change the grade
    attempt = await AttemptStore(db).get_attempt(started.attempt_id)
    assert attempt.score == 0.0


async def test_events_on_someone_elses_attempt_are_forbidden(db, users, quiz):
    started = await AttemptEngine(db).start(users.student.id, quiz.id, at(0))
    recorder = ProctoringRecorder(db)

    with pytest.raises(ForbiddenError):
        await recorder.suspicious(started.attempt_id, users.other_student.id, "TAB_SWITCHING", None, at(1))
    with pytest.raises(ForbiddenError):
        await recorder.session(started.attempt_id, users.other_student.id, "FOCUS")
    with pytest.raises(NotFoundError):
        await recorder.suspicious(999999, users.student.id, "TAB_SWITCHING", None, at(1))


async def test_session_event_is_logged_as_activity(db, users, quiz):
    started = await AttemptEngine(db).start(users.student.id, quiz.id, at(0))
    recorder = ProctoringRecorder(db)

    activity = await recorder.session(
        started.attempt_id, users.student.id, "page_view", user_agent="Firefox/140",
        detail="question 2", now=at(1), ip_address="10.0.0.8"
    )
    assert activity.action == "PAGE_VIEW"

    activities = await AttemptStore(db).list_activities(started.attempt_id)
    assert [a.action for a in activities] == ["SESSION_START", "PAGE_VIEW"]
    assert activities[1].user_agent == "Firefox/140"
    assert activities[1].ip_address == "10.0.0.8"


async def test_mark_reviewed(db, users, quiz):
    started = await AttemptEngine(db).start(users.student.id, quiz.id, at(0))
    recorder = ProctoringRecorder(db)
    await recorder.suspicious(started.attempt_id, users.student.id, "TAB_SWITCHING", None, at(1))
    [event] = await recorder.list_for_attempt(started.attempt_id)

    reviewed = await recorder.mark_reviewed(event.id)
    assert reviewed.reviewed is True
    with pytest.raises(NotFoundError):
        await recorder.mark_reviewed(999999)
