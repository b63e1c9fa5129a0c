"""
Player blueprint: the attempt state machine exposed as a JSON API.

Attempts live in process memory keyed by a random id; beyond
server.max_tracked_attempts the oldest are dropped. Before handling any
request for an attempt, the wall-clock seconds elapsed since the last request
are fed to the machine as a Tick so the countdown advances between calls.
"""

import logging
import time
import uuid

from flask import Blueprint, current_app, jsonify, request
from flask_wtf.csrf import generate_csrf

from examforge.attempt import AttemptStateMachine
from examforge.config import make_rng, webhook_settings
from examforge.runtime import ScormRuntimeAdapter

logger = logging.getLogger(__name__)

player_bp = Blueprint("player", __name__)


class _TrackedAttempt:
    """A machine plus the clock reading its timer was last advanced to."""

    def __init__(self, machine, clock=time.monotonic):
        self.machine = machine
        self.clock = clock
        self.last_tick = clock()

    def catch_up(self):
        now = self.clock()
        elapsed = int(now - self.last_tick)
        if elapsed > 0:
            self.machine.tick(elapsed)
            self.last_tick += elapsed


def _attempts():
    return current_app.config["ATTEMPTS"]


def _get_attempt(attempt_id):
    tracked = _attempts().get(attempt_id)
    if tracked is not None:
        tracked.catch_up()
    return tracked


def _not_found():
    return jsonify({"ok": False, "error": "Attempt not found"}), 404


def _attempt_payload(attempt_id, machine):
    state = machine.state
    return {
        "ok": True,
        "attemptId": attempt_id,
        "phase": state.phase,
        "currentIndex": state.current_index,
        "total": len(state.variant),
        "remainingSeconds": state.remaining_seconds,
        "timeExpired": state.time_expired,
        "submitted": state.submitted,
        "question": machine.question_view() if state.phase == "question" else None,
        "report": state.report.to_dict() if state.report else None,
        "notices": [{"message": n.message, "kind": n.kind} for n in machine.drain_notices()],
    }


@player_bp.route("/api/test")
def test_info():
    """Start-page data for the served test."""
    test = current_app.config["TEST_DEFINITION"]
    return jsonify(
        {
            "ok": True,
            "id": test.id,
            "title": test.title,
            "description": test.description,
            "startPageContent": test.start_page_content,
            "totalQuestions": test.total_questions,
            "passPercent": test.pass_percent,
            "timeLimitMinutes": test.time_limit_minutes,
            "maxAttempts": test.max_attempts,
            "showCorrectAnswers": test.show_correct_answers,
            "csrfToken": generate_csrf(),
        }
    )


@player_bp.route("/api/attempts", methods=["POST"])
def create_attempt():
    """Draw a variant and start an attempt."""
    config = current_app.config["APP_CONFIG"]
    test = current_app.config["TEST_DEFINITION"]
    url, timeout = webhook_settings(config, test.webhook_url)

    adapter = ScormRuntimeAdapter(
        current_app.config["RUNTIME_CHANNEL"],
        suspend_key=config.get("runtime", {}).get("suspend_key", "cmi.suspend_data"),
    )
    machine = AttemptStateMachine(test, adapter=adapter, rng=make_rng(config), webhook_url=url, webhook_timeout=timeout)
    machine.start()

    if machine.state.phase == "start":
        # refused, e.g. no attempts left
        payload = _attempt_payload(None, machine)
        payload["ok"] = False
        payload["error"] = payload["notices"][0]["message"] if payload["notices"] else "Attempt could not start"
        return jsonify(payload), 403

    attempt_id = uuid.uuid4().hex
    attempts = _attempts()
    attempts[attempt_id] = _TrackedAttempt(machine)
    # oldest first by insertion order
    while len(attempts) > current_app.config["MAX_TRACKED_ATTEMPTS"]:
        dropped = next(iter(attempts))
        del attempts[dropped]
        logger.info("Dropped attempt %s from the attempt table", dropped)
    logger.info("Created attempt %s", attempt_id)
    return jsonify(_attempt_payload(attempt_id, machine)), 201


@player_bp.route("/api/attempts/<attempt_id>")
def get_attempt(attempt_id):
    tracked = _get_attempt(attempt_id)
    if tracked is None:
        return _not_found()
    return jsonify(_attempt_payload(attempt_id, tracked.machine))


@player_bp.route("/api/attempts/<attempt_id>/answer", methods=["POST"])
def answer(attempt_id):
    """Record an answer. Body: {"questionId": ..., "answer": ...} in original index space."""
    tracked = _get_attempt(attempt_id)
    if tracked is None:
        return _not_found()

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"ok": False, "error": "Request body must be a JSON object"}), 400
    question_id = payload.get("questionId")
    if not question_id or "answer" not in payload:
        return jsonify({"ok": False, "error": "questionId and answer are required"}), 400

    tracked.machine.set_answer(str(question_id), payload["answer"])
    return jsonify(_attempt_payload(attempt_id, tracked.machine))


def _simple_action(attempt_id, action):
    tracked = _get_attempt(attempt_id)
    if tracked is None:
        return _not_found()
    action(tracked.machine)
    return jsonify(_attempt_payload(attempt_id, tracked.machine))


@player_bp.route("/api/attempts/<attempt_id>/confirm", methods=["POST"])
def confirm(attempt_id):
    return _simple_action(attempt_id, lambda m: m.confirm())


@player_bp.route("/api/attempts/<attempt_id>/next", methods=["POST"])
def next_question(attempt_id):
    return _simple_action(attempt_id, lambda m: m.next())


@player_bp.route("/api/attempts/<attempt_id>/submit", methods=["POST"])
def submit(attempt_id):
    return _simple_action(attempt_id, lambda m: m.submit())


@player_bp.route("/api/attempts/<attempt_id>/restart", methods=["POST"])
def restart(attempt_id):
    """Return to the start page with a new variant, then start again if attempts remain."""

    def _restart(machine):
        machine.restart()
        machine.start()

    return _simple_action(attempt_id, _restart)
