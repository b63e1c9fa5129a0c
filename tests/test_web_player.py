"""
Tests for the web player JSON API in examforge/web/blueprints/player.py.
"""

import pytest

from examforge.attempt import MSG_NO_ATTEMPTS
from examforge.web.app import create_app

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _start(client):
    resp = client.post("/api/attempts")
    assert resp.status_code == 201
    return resp.get_json()


def _play_through(client, attempt_id, answers):
    """Answer every question in order and submit on the last one."""
    data = client.get(f"/api/attempts/{attempt_id}").get_json()
    while data["phase"] == "question":
        qid = data["question"]["id"]
        data = client.post(f"/api/attempts/{attempt_id}/answer", json={"questionId": qid, "answer": answers[qid]}).get_json()
        action = "submit" if data["currentIndex"] == data["total"] - 1 else "next"
        data = client.post(f"/api/attempts/{attempt_id}/{action}").get_json()
    return data


# ---------------------------------------------------------------------------
# Test info
# ---------------------------------------------------------------------------


class TestTestInfo:
    def test_start_page_data(self, flask_client):
        resp = flask_client.get("/api/test")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["ok"] is True
        assert data["title"] == "Astronomy Basics"
        assert data["totalQuestions"] == 4
        assert data["passPercent"] == 70
        assert data["startPageContent"] == "Good luck!"
        assert data["csrfToken"]


# ---------------------------------------------------------------------------
# Attempts
# ---------------------------------------------------------------------------


class TestAttemptFlow:
    def test_create_attempt(self, flask_client):
        data = _start(flask_client)
        assert data["ok"] is True
        assert data["phase"] == "question"
        assert data["total"] == 4
        assert data["question"]["index"] == 0
        assert "correct" not in data["question"]

    def test_full_attempt(self, flask_client, full_answers):
        attempt_id = _start(flask_client)["attemptId"]
        data = _play_through(flask_client, attempt_id, full_answers)
        assert data["phase"] == "results"
        assert data["submitted"] is True
        assert data["report"]["overallPassed"] is True
        assert data["report"]["overallPercent"] == 100.0
        assert data["question"] is None

    def test_next_without_answer_gives_notice(self, make_flask_app, make_test, single_q_data):
        test = make_test(
            sections=[{"topicId": "s", "topicName": "S", "questions": [single_q_data, dict(single_q_data, id="b")]}]
        )
        with make_flask_app(test).test_client() as client:
            attempt_id = _start(client)["attemptId"]
            data = client.post(f"/api/attempts/{attempt_id}/next").get_json()
        assert data["currentIndex"] == 0
        assert data["notices"] == [{"message": "Please answer the question first", "kind": "warning"}]

    def test_unknown_attempt(self, flask_client):
        resp = flask_client.get("/api/attempts/missing")
        assert resp.status_code == 404
        assert resp.get_json() == {"ok": False, "error": "Attempt not found"}
        assert flask_client.post("/api/attempts/missing/submit").status_code == 404

    def test_answer_requires_fields(self, flask_client):
        attempt_id = _start(flask_client)["attemptId"]
        resp = flask_client.post(f"/api/attempts/{attempt_id}/answer", json={"questionId": "q-single"})
        assert resp.status_code == 400
        assert resp.get_json()["ok"] is False

    @pytest.mark.parametrize("body", [[1, 2], "q-single", 3])
    def test_answer_body_must_be_object(self, flask_client, body):
        attempt_id = _start(flask_client)["attemptId"]
        resp = flask_client.post(f"/api/attempts/{attempt_id}/answer", json=body)
        assert resp.status_code == 400
        assert resp.get_json() == {"ok": False, "error": "Request body must be a JSON object"}

    def test_answer_without_json_body(self, flask_client):
        attempt_id = _start(flask_client)["attemptId"]
        resp = flask_client.post(f"/api/attempts/{attempt_id}/answer", data="not json")
        assert resp.status_code == 400
        assert resp.get_json()["ok"] is False

    def test_confirm_reveals_correct_answer(self, make_flask_app, make_test, full_answers):
        with make_flask_app(make_test(showCorrectAnswers=True)).test_client() as client:
            data = _start(client)
            attempt_id, qid = data["attemptId"], data["question"]["id"]
            client.post(f"/api/attempts/{attempt_id}/answer", json={"questionId": qid, "answer": full_answers[qid]})
            data = client.post(f"/api/attempts/{attempt_id}/confirm").get_json()
        assert data["question"]["locked"] is True
        assert data["question"]["feedback"]["outcome"] == "correct"
        assert "correct" in data["question"]


class TestAttemptLimits:
    def test_refused_when_attempts_used(self, make_flask_app, make_test, full_answers):
        with make_flask_app(make_test(maxAttempts=1)).test_client() as client:
            attempt_id = _start(client)["attemptId"]
            _play_through(client, attempt_id, full_answers)
            resp = client.post("/api/attempts")
        assert resp.status_code == 403
        data = resp.get_json()
        assert data["ok"] is False
        assert data["error"] == MSG_NO_ATTEMPTS
        assert data["phase"] == "start"

    def test_restart_starts_new_variant(self, flask_client, full_answers):
        attempt_id = _start(flask_client)["attemptId"]
        _play_through(flask_client, attempt_id, full_answers)
        data = flask_client.post(f"/api/attempts/{attempt_id}/restart").get_json()
        assert data["phase"] == "question"
        assert data["submitted"] is False
        assert data["report"] is None

    def test_timer_expiry_between_requests(self, make_flask_app, make_test):
        app = make_flask_app(make_test(timeLimitMinutes=1))
        with app.test_client() as client:
            data = _start(client)
            assert data["remainingSeconds"] == 60
            tracked = app.config["ATTEMPTS"][data["attemptId"]]
            tracked.clock = lambda: tracked.last_tick + 75
            data = client.get(f"/api/attempts/{data['attemptId']}").get_json()
        assert data["phase"] == "results"
        assert data["timeExpired"] is True
        assert data["remainingSeconds"] == 0
        assert data["report"]["timeExpired"] is True

    def test_oldest_attempts_dropped_beyond_cap(self, flask_app):
        flask_app.config["MAX_TRACKED_ATTEMPTS"] = 2
        with flask_app.test_client() as client:
            first, second, third = (_start(client)["attemptId"] for _ in range(3))
            assert client.get(f"/api/attempts/{first}").status_code == 404
            assert client.get(f"/api/attempts/{second}").status_code == 200
            assert client.get(f"/api/attempts/{third}").status_code == 200
        assert list(flask_app.config["ATTEMPTS"]) == [second, third]

    def test_cap_read_from_config(self, app_config, definition):
        app_config["server"]["max_tracked_attempts"] = 5
        assert create_app(app_config, definition).config["MAX_TRACKED_ATTEMPTS"] == 5


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_csrf_enforced_on_posts(self, app_config, definition):
        app = create_app(app_config, definition)
        app.config["TESTING"] = True
        with app.test_client() as client:
            assert client.post("/api/attempts").status_code == 400

    def test_loads_configured_test_file(self, app_config, definition_file):
        app_config["server"]["test_file"] = definition_file
        app = create_app(app_config)
        assert app.config["TEST_DEFINITION"].id == "astro-101"

    def test_requires_a_test(self, app_config):
        app_config["server"]["test_file"] = None
        with pytest.raises(ValueError):
            create_app(app_config)
