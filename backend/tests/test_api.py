import pytest
from fastapi.testclient import TestClient

from assessment_engine.main import app
from assessment_engine.routers import attempts
from assessment_engine.routers.auth import create_access_token

from conftest import manual_question, mc_question


def auth(student_id: str = "student-1") -> dict:
    return {"Authorization": f"Bearer {create_access_token(student_id)}"}


@pytest.fixture
def client(gateway, seed):
    seed.assessment([mc_question("q1", 1, correct="b"), mc_question("q2", 2, correct="a")])
    app.dependency_overrides[attempts.get_gateway] = lambda: gateway
    attempts._sessions.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    attempts._sessions.clear()


def open_attempt(client, assessment_id="exercise-1", headers=None, **extra):
    return client.post("/attempts", json={"assessment_id": assessment_id, **extra}, headers=headers or auth())


def test_open_attempt_hides_correct_answers(client):
    resp = open_attempt(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["attempt_number"] == 1
    assert body["state"] == "in_progress"
    assert body["time_limit_seconds"] is None
    assert [q["id"] for q in body["questions"]] == ["q1", "q2"]
    assert body["questions"][0]["text"] == "Question q1"
    for option in body["questions"][0]["options"]:
        assert set(option) == {"label", "value"}


def test_prompts_follow_requested_language(client):
    body = client.post("/attempts?lang=nl", json={"assessment_id": "exercise-1"}, headers=auth()).json()
    assert body["questions"][0]["text"] == "Vraag q1"


def test_answer_and_submit(client):
    attempt_id = open_attempt(client).json()["attempt_id"]

    resp = client.put(f"/attempts/{attempt_id}/answers/q1", json={"value": "b"}, headers=auth())
    assert resp.json() == {"accepted": True, "state": "in_progress"}

    resp = client.post(f"/attempts/{attempt_id}/submit", json={"answers": {"q2": "c"}}, headers=auth())
    assert resp.status_code == 200
    result = resp.json()
    assert result["score_percent"] == 50.0
    assert result["passed"] is False
    assert result["attempt_number"] == 1

    body = client.get(f"/attempts/{attempt_id}", headers=auth()).json()
    assert body["state"] == "persisted"
    assert body["result"]["score_percent"] == 50.0
    assert body["answers"] == {"q1": "b", "q2": "c"}


def test_submit_twice_returns_the_same_result(client):
    attempt_id = open_attempt(client).json()["attempt_id"]
    first = client.post(f"/attempts/{attempt_id}/submit", json={"answers": {"q1": "b", "q2": "a"}}, headers=auth()).json()
    second = client.post(f"/attempts/{attempt_id}/submit", json={"answers": {}}, headers=auth()).json()
    assert second == first
    assert first["passed"] is True


def test_answer_after_submit_is_not_accepted(client):
    attempt_id = open_attempt(client).json()["attempt_id"]
    client.post(f"/attempts/{attempt_id}/submit", json={}, headers=auth())

    resp = client.put(f"/attempts/{attempt_id}/answers/q1", json={"value": "b"}, headers=auth())
    assert resp.status_code == 200
    assert resp.json() == {"accepted": False, "state": "persisted"}


def test_unknown_question_is_a_bad_request(client):
    attempt_id = open_attempt(client).json()["attempt_id"]
    resp = client.put(f"/attempts/{attempt_id}/answers/q9", json={"value": "b"}, headers=auth())
    assert resp.status_code == 400
    resp = client.post(f"/attempts/{attempt_id}/submit", json={"answers": {"q9": "a"}}, headers=auth())
    assert resp.status_code == 400


def test_reopening_held_attempt_does_not_create_another(client):
    attempt_id = open_attempt(client).json()["attempt_id"]
    again = open_attempt(client, attempt_id=attempt_id).json()
    assert again["attempt_id"] == attempt_id

    attempts._sessions.clear()
    after_restart = open_attempt(client, attempt_id=attempt_id).json()
    assert after_restart["attempt_id"] == attempt_id

    history = client.get("/attempts", params={"assessment_id": "exercise-1"}, headers=auth()).json()
    assert len(history["attempts"]) == 1


def test_exam_limit_is_a_conflict(client, seed):
    levels = seed.levels("A1", "A2")
    seed.assessment(
        [mc_question("e1", 1)], assessment_id="exam-1", kind="exam", max_attempts=1, level_id=levels[0],
    )
    attempt_id = open_attempt(client, "exam-1").json()["attempt_id"]
    client.post(f"/attempts/{attempt_id}/submit", json={"answers": {"e1": "b"}}, headers=auth())

    resp = open_attempt(client, "exam-1")
    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["code"] == "attempt_limit_exceeded"
    assert detail["max_attempts"] == 1


def test_passed_exam_reports_new_level(client, seed):
    levels = seed.levels("A1", "A2")
    seed.assessment(
        [mc_question("e1", 1), manual_question("e2", 2, points=0.25)],
        assessment_id="exam-1", kind="exam", level_id=levels[0],
    )
    attempt_id = open_attempt(client, "exam-1").json()["attempt_id"]

    result = client.post(
        f"/attempts/{attempt_id}/submit?lang=en", json={"answers": {"e1": "b", "e2": "essay"}}, headers=auth(),
    ).json()

    assert result["score_percent"] == 80.0
    assert result["passed"] is True
    assert result["promoted_to_level_id"] == "level-a2"
    assert result["promoted_to_level_name"] == "A2 (en)"
    assert result["requires_manual_review"] is True


def test_history_lists_newest_first(client):
    first = open_attempt(client).json()["attempt_id"]
    client.post(f"/attempts/{first}/submit", json={"answers": {"q1": "b"}}, headers=auth())
    open_attempt(client)

    body = client.get("/attempts", params={"assessment_id": "exercise-1"}, headers=auth()).json()
    rows = body["attempts"]
    assert [r["attempt_number"] for r in rows] == [2, 1]
    assert rows[1]["submitted_at"] is not None
    assert rows[1]["score_percent"] == 50.0
    assert rows[0]["submitted_at"] is None


def test_unknown_assessment_is_not_found(client):
    assert open_attempt(client, "missing").status_code == 404


def test_other_students_attempt_is_not_found(client):
    attempt_id = open_attempt(client).json()["attempt_id"]
    assert client.get(f"/attempts/{attempt_id}", headers=auth("student-2")).status_code == 404

    attempts._sessions.clear()
    assert client.get(f"/attempts/{attempt_id}", headers=auth("student-2")).status_code == 404


def test_missing_token_is_unauthorized(client):
    assert client.post("/attempts", json={"assessment_id": "exercise-1"}).status_code == 401
    assert client.get("/attempts/anything", headers={"Authorization": "Bearer not-a-token"}).status_code == 401


def test_submitted_attempt_keeps_its_result_after_restart(client):
    attempt_id = open_attempt(client).json()["attempt_id"]
    submitted = client.post(
        f"/attempts/{attempt_id}/submit", json={"answers": {"q1": "b"}}, headers=auth(),
    ).json()

    attempts._sessions.clear()
    body = client.get(f"/attempts/{attempt_id}", headers=auth()).json()

    assert body["state"] == "persisted"
    assert body["result"] is not None
    assert body["result"]["score_percent"] == submitted["score_percent"] == 50.0
    assert body["result"]["passed"] is False
    assert body["result"]["attempt_number"] == 1

    again = client.post(f"/attempts/{attempt_id}/submit", json={"answers": {"q2": "a"}}, headers=auth()).json()
    assert again["score_percent"] == 50.0
