from conftest import ESSAY_Q3, MC_Q1, auth_headers


async def _finished_attempt(client, users, quiz):
    headers = auth_headers(users.student)
    attempt_id = (await client.post(f"/student/assessments/{quiz.id}/start", headers=headers)).json()["attemptId"]
    for question_id, answer in zip(quiz.question_ids, ["a", "Roots drink water"]):
        await client.post(
            f"/student/attempts/{attempt_id}/answers",
            json={"questionId": question_id, "answer": answer},
            headers=headers,
        )
    await client.post(
        f"/student/attempts/{attempt_id}/monitor",
        json={"eventType": "TAB_SWITCHING", "timestamp": "2026-03-02T09:01:00Z"},
        headers=headers,
    )
    await client.post(f"/student/attempts/{attempt_id}/submit", headers=headers)
    return attempt_id


async def test_students_cannot_use_admin_routes(client, users):
    response = await client.get("/admin/attempt/1", headers=auth_headers(users.student))
    assert response.status_code == 403
    assert (await client.get("/admin/attempt/1")).status_code == 401


async def test_grade_attempt(client, users, make_assessment):
    quiz = await make_assessment(users.instructor, [MC_Q1, ESSAY_Q3])
    attempt_id = await _finished_attempt(client, users, quiz)
    staff = auth_headers(users.instructor)

    record = (await client.get(f"/admin/attempt/{attempt_id}", headers=staff)).json()
    assert record["status"] == "completed"
    assert record["score"] == 0.0
    essay = next(a for a in record["answers"] if a["questionId"] == quiz.question_ids[1])
    assert essay["isCorrect"] is None

    response = await client.post(
        f"/admin/attempt/grade/{attempt_id}",
        json={"score": 55.5, "feedback": "Good essay", "answers": [{"id": essay["id"], "isCorrect": True}]},
        headers=staff,
    )
    assert response.status_code == 200
    graded = response.json()
    assert graded["score"] == 55.5
    assert graded["feedback"] == "Good essay"
    assert graded["passed"] is False
    assert next(a for a in graded["answers"] if a["id"] == essay["id"])["isCorrect"] is True

    out_of_range = await client.post(f"/admin/attempt/grade/{attempt_id}", json={"score": 120}, headers=staff)
    assert out_of_range.status_code == 400


async def test_grading_an_open_attempt_is_invalid(client, users, quiz):
    attempt_id = (await client.post(
        f"/student/assessments/{quiz.id}/start", headers=auth_headers(users.student)
    )).json()["attemptId"]

    response = await client.post(
        f"/admin/attempt/grade/{attempt_id}", json={"score": 80}, headers=auth_headers(users.admin)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_STATE"


async def test_list_user_attempts(client, users, make_assessment):
    quiz = await make_assessment(users.instructor, [MC_Q1, ESSAY_Q3], settings={"allow_retake": True, "max_attempts": 0})
    first = await _finished_attempt(client, users, quiz)
    second = await _finished_attempt(client, users, quiz)

    response = await client.get(
        f"/admin/attempts/{quiz.id}/users/{users.student.id}",
        params={"pageSize": 1},
        headers=auth_headers(users.admin),
    )
    assert response.status_code == 200
    page = response.json()
    assert page["total"] == 2
    assert page["totalPages"] == 2
    assert page["items"][0]["id"] in (first, second)
    assert page["items"][0]["questionOrder"] == quiz.question_ids


async def test_suspicious_events_review(client, users, make_assessment):
    quiz = await make_assessment(users.instructor, [MC_Q1, ESSAY_Q3])
    attempt_id = await _finished_attempt(client, users, quiz)
    staff = auth_headers(users.instructor)

    response = await client.get(f"/admin/attempt/{attempt_id}/suspicious", headers=staff)
    assert response.status_code == 200
    [event] = response.json()
    assert event["eventType"] == "TAB_SWITCHING"
    assert event["severity"] == "HIGH"
    assert event["hasImage"] is False
    assert "imageData" not in event

    reviewed = await client.post(f"/admin/suspicious/{event['id']}/review", headers=staff)
    assert reviewed.status_code == 200
    assert reviewed.json()["reviewed"] is True

    missing = await client.post("/admin/suspicious/999999/review", headers=staff)
    assert missing.status_code == 404


async def test_delete_attempt(client, users, quiz):
    student = auth_headers(users.student)
    attempt_id = (await client.post(f"/student/assessments/{quiz.id}/start", headers=student)).json()["attemptId"]

    response = await client.delete(f"/admin/attempt/{attempt_id}", headers=auth_headers(users.admin))
    assert response.status_code == 200
    assert response.json() == {"status": "SUCCESS"}

    assert (await client.get(f"/admin/attempt/{attempt_id}", headers=auth_headers(users.admin))).status_code == 404
    restarted = await client.post(f"/student/assessments/{quiz.id}/start", headers=student)
    assert restarted.status_code == 200
