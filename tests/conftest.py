"""
Shared pytest fixtures for ExamForge tests.

Provides test definitions, seeded random sources, config dicts and Flask
test clients so that individual test files do not need to duplicate setup.

Fixture summary
---------------
Definitions:
    single_q_data        -- wire dict for a single-choice question
    multiple_q_data      -- wire dict for a multiple-choice question
    matching_q_data      -- wire dict for a matching question
    ranking_q_data       -- wire dict for a ranking question
    definition_data      -- full two-section test definition dict
    definition           -- the parsed TestDefinition of definition_data
    make_test            -- factory: parse definition_data with overrides
    eighths_test         -- eight 1-point questions in one topic, for rounding

Engine:
    rng                  -- random.Random seeded for reproducible draws
    full_answers         -- fully correct answers for every question in definition

Config:
    app_config           -- config dict with defaults, output under tmp_path
    definition_file      -- definition_data written to a temp JSON file

Flask:
    flask_app            -- player app serving definition, CSRF disabled
    flask_client         -- test client for flask_app
    make_flask_app       -- factory: player app for a given TestDefinition
"""

import copy
import json
import random

import pytest

from examforge.config import DEFAULTS
from examforge.models import parse_test_definition

# ---------------------------------------------------------------------------
# Question fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def single_q_data():
    """A 1-point single-choice question; option 2 is correct."""
    return {
        "id": "q-single",
        "type": "single",
        "prompt": "Which planet is known as the red planet?",
        "data": {"options": ["Venus", "Jupiter", "Mars", "Saturn"]},
        "correct": {"correctIndex": 2},
        "points": 1,
        "feedback": "Mars looks red because of iron oxide.",
    }


@pytest.fixture
def multiple_q_data():
    """A 2-point multiple-choice question; options 0 and 2 are correct."""
    return {
        "id": "q-multi",
        "type": "multiple",
        "prompt": "Which of these are gas giants?",
        "data": {"options": ["Jupiter", "Mars", "Saturn", "Mercury"]},
        "correct": {"correctIndices": [0, 2]},
        "points": 2,
        "feedbackMode": "conditional",
        "feedbackCorrect": "Right, both are gas giants.",
        "feedbackIncorrect": "Jupiter and Saturn are the gas giants here.",
    }


@pytest.fixture
def matching_q_data():
    """A 3-point matching question with pairs 0-1, 1-0, 2-2."""
    return {
        "id": "q-match",
        "type": "matching",
        "prompt": "Match each planet with its moon.",
        "data": {"left": ["Earth", "Mars", "Jupiter"], "right": ["Phobos", "Moon", "Europa"]},
        "correct": {"pairs": [{"left": 0, "right": 1}, {"left": 1, "right": 0}, {"left": 2, "right": 2}]},
        "points": 3,
    }


@pytest.fixture
def ranking_q_data():
    """A 1-point ranking question whose correct order is 2, 0, 1."""
    return {
        "id": "q-rank",
        "type": "ranking",
        "prompt": "Order these planets by distance from the sun.",
        "data": {"items": ["Earth", "Neptune", "Mercury"]},
        "correct": {"correctOrder": [2, 0, 1]},
        "points": 1,
    }


# ---------------------------------------------------------------------------
# Test definition fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def definition_data(single_q_data, multiple_q_data, matching_q_data, ranking_q_data):
    """A two-section test definition dict that draws every question.

    Section "planets" holds the single and multiple questions with a 50%
    topic rule; section "order" holds the matching and ranking questions
    with no topic rule. The overall rule is 70%.
    """
    return {
        "id": "astro-101",
        "title": "Astronomy Basics",
        "description": "Planets and moons.",
        "overallPassRule": {"type": "percent", "value": 70},
        "webhookUrl": None,
        "testFeedback": "Thanks for taking the test.",
        "timeLimitMinutes": None,
        "maxAttempts": None,
        "showCorrectAnswers": False,
        "startPageContent": "Good luck!",
        "sections": [
            {
                "topicId": "planets",
                "topicName": "Planets",
                "drawCount": 2,
                "topicPassRule": {"type": "percent", "value": 50},
                "topicFeedback": "Review the planets chapter.",
                "recommendedCourses": [{"title": "Planets 101", "url": "https://example.com/planets"}],
                "questions": [single_q_data, multiple_q_data],
            },
            {
                "topicId": "order",
                "topicName": "Order and Moons",
                "drawCount": 2,
                "topicPassRule": None,
                "questions": [matching_q_data, ranking_q_data],
            },
        ],
    }


@pytest.fixture
def make_test(definition_data):
    """Factory fixture: parse a deep copy of definition_data with top-level overrides.

    Usage::

        def test_example(make_test):
            test = make_test(maxAttempts=2, timeLimitMinutes=1)
    """

    def _make(**overrides):
        raw = copy.deepcopy(definition_data)
        raw.update(overrides)
        return parse_test_definition(raw)

    return _make


@pytest.fixture
def definition(make_test):
    """The parsed TestDefinition for definition_data, unmodified."""
    return make_test()


@pytest.fixture
def eighths_test(make_test, single_q_data):
    """One topic of eight 1-point single-choice questions (q0..q7), so one right answer is 12.5%."""
    questions = [dict(single_q_data, id=f"q{i}") for i in range(8)]
    return make_test(sections=[{"topicId": "eighths", "topicName": "Eighths", "questions": questions}])


@pytest.fixture
def full_answers():
    """Fully correct answers for every question of definition_data (original index space)."""
    return {
        "q-single": 2,
        "q-multi": [0, 2],
        "q-match": {0: 1, 1: 0, 2: 2},
        "q-rank": [2, 0, 1],
    }


@pytest.fixture
def rng():
    """A seeded Random so variant draws are reproducible within a test."""
    return random.Random(1234)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def app_config(tmp_path):
    """Default config dict with the output directory under tmp_path."""
    config = copy.deepcopy(DEFAULTS)
    config["paths"]["output_dir"] = str(tmp_path / "output")
    config["webhook"]["enabled"] = False
    return config


@pytest.fixture
def definition_file(tmp_path, definition_data):
    """definition_data written to a JSON file; returns the path as a string."""
    path = tmp_path / "test.json"
    path.write_text(json.dumps(definition_data), encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# Flask fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_flask_app(app_config):
    """Factory fixture: create a player app for a given TestDefinition."""
    from examforge.web.app import create_app

    def _create(test):
        app = create_app(app_config, test)
        app.config["TESTING"] = True
        app.config["WTF_CSRF_ENABLED"] = False
        return app

    return _create


@pytest.fixture
def flask_app(make_flask_app, definition):
    """Player app serving definition."""
    return make_flask_app(definition)


@pytest.fixture
def flask_client(flask_app):
    """Provide a Flask test client for the player app."""
    with flask_app.test_client() as client:
        yield client
