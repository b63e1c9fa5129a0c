"""
Tests for the ExamForge test definition loader.

Covers parsing of the four question types, tolerant handling of malformed
payloads, pass rule parsing, derived test properties, and file loading.
"""

import json

import pytest

from examforge.models import (
    DefinitionError,
    MatchingQuestion,
    MultipleChoiceQuestion,
    PassRule,
    RankingQuestion,
    SingleChoiceQuestion,
    all_questions,
    as_index,
    load_test_definition,
    parse_test_definition,
    pass_rule_from_dict,
    question_from_dict,
    round_half_up,
)

# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------


class TestQuestionFromDict:
    """Parse each question type from its wire dict."""

    def test_single(self, single_q_data):
        q = question_from_dict(single_q_data)
        assert isinstance(q, SingleChoiceQuestion)
        assert q.options == ("Venus", "Jupiter", "Mars", "Saturn")
        assert q.correct_index == 2
        assert q.feedback == "Mars looks red because of iron oxide."

    def test_multiple(self, multiple_q_data):
        q = question_from_dict(multiple_q_data)
        assert isinstance(q, MultipleChoiceQuestion)
        assert q.correct_indices == (0, 2)
        assert q.points == 2
        assert q.feedback_mode == "conditional"

    def test_matching(self, matching_q_data):
        q = question_from_dict(matching_q_data)
        assert isinstance(q, MatchingQuestion)
        assert q.pairs == ((0, 1), (1, 0), (2, 2))
        assert q.correct_map == {0: 1, 1: 0, 2: 2}

    def test_ranking(self, ranking_q_data):
        q = question_from_dict(ranking_q_data)
        assert isinstance(q, RankingQuestion)
        assert q.items == ("Earth", "Neptune", "Mercury")
        assert q.correct_order == (2, 0, 1)

    def test_unknown_type_raises(self):
        with pytest.raises(DefinitionError, match="Unknown question type"):
            question_from_dict({"id": "x", "type": "essay"})

    def test_missing_payload_degrades_to_empty(self):
        q = question_from_dict({"id": "x", "type": "single"})
        assert q.options == ()
        assert q.correct_index is None

    def test_non_numeric_indices_dropped(self):
        q = question_from_dict(
            {"id": "x", "type": "multiple", "data": {"options": ["a", "b"]}, "correct": {"correctIndices": [0, "1", True]}}
        )
        assert q.correct_indices == (0,)

    def test_non_positive_points_become_one(self, single_q_data):
        single_q_data["points"] = 0
        assert question_from_dict(single_q_data).points == 1
        single_q_data["points"] = None
        assert question_from_dict(single_q_data).points == 1

    def test_shuffle_answers_defaults_true(self, single_q_data):
        assert question_from_dict(single_q_data).shuffle_answers is True
        single_q_data["shuffleAnswers"] = False
        assert question_from_dict(single_q_data).shuffle_answers is False

    def test_unknown_media_type_dropped(self, single_q_data):
        single_q_data["mediaUrl"] = "https://example.com/a.gif"
        single_q_data["mediaType"] = "hologram"
        q = question_from_dict(single_q_data)
        assert q.media_url == "https://example.com/a.gif"
        assert q.media_type is None

    def test_pairs_accept_list_form(self, matching_q_data):
        matching_q_data["correct"] = {"pairs": [[0, 1], [1, 0]]}
        assert question_from_dict(matching_q_data).pairs == ((0, 1), (1, 0))

    def test_to_dict_keeps_wire_shape(self, multiple_q_data):
        out = question_from_dict(multiple_q_data).to_dict()
        assert out["type"] == "multiple"
        assert out["data"] == {"options": multiple_q_data["data"]["options"]}
        assert out["correct"] == {"correctIndices": [0, 2]}
        assert out["feedbackCorrect"] == "Right, both are gas giants."


class TestAsIndex:
    def test_accepts_ints_and_integral_floats(self):
        assert as_index(3) == 3
        assert as_index(2.0) == 2

    def test_rejects_bools_strings_and_fractions(self):
        assert as_index(True) is None
        assert as_index("1") is None
        assert as_index(1.5) is None


class TestRoundHalfUp:
    def test_halves_go_up(self):
        assert round_half_up(12.5) == 13
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3

    def test_other_values_round_to_nearest(self):
        assert round_half_up(33.33) == 33
        assert round_half_up(66.67) == 67
        assert round_half_up(0) == 0
        assert round_half_up(100.0) == 100


# ---------------------------------------------------------------------------
# Pass rules
# ---------------------------------------------------------------------------


class TestPassRuleFromDict:
    def test_empty_means_no_rule(self):
        assert pass_rule_from_dict(None) is None
        assert pass_rule_from_dict({}) is None

    def test_percent(self):
        assert pass_rule_from_dict({"type": "percent", "value": 70}) == PassRule("percent", 70)

    def test_count_is_alias_of_absolute(self):
        rule = pass_rule_from_dict({"type": "count", "value": 3})
        assert rule.type == "absolute"
        assert not rule.is_percent

    def test_out_of_range_percent_clamped(self):
        assert pass_rule_from_dict({"type": "percent", "value": 150}).value == 100.0
        assert pass_rule_from_dict({"type": "percent", "value": -5}).value == 0.0

    def test_unknown_type_raises(self):
        with pytest.raises(DefinitionError):
            pass_rule_from_dict({"type": "median", "value": 3})

    def test_non_numeric_value_raises(self):
        with pytest.raises(DefinitionError):
            pass_rule_from_dict({"type": "percent", "value": "seventy"})


# ---------------------------------------------------------------------------
# Tests and sections
# ---------------------------------------------------------------------------


class TestParseTestDefinition:
    def test_basic_fields(self, definition):
        assert definition.id == "astro-101"
        assert definition.title == "Astronomy Basics"
        assert definition.overall_pass_rule == PassRule("percent", 70)
        assert [s.topic_id for s in definition.sections] == ["planets", "order"]
        assert definition.sections[0].courses[0].url == "https://example.com/planets"

    def test_missing_sections_raises(self):
        with pytest.raises(DefinitionError, match="sections"):
            parse_test_definition({"id": "t", "title": "T"})

    def test_missing_draw_count_draws_whole_pool(self, definition_data):
        del definition_data["sections"][0]["drawCount"]
        test = parse_test_definition(definition_data)
        assert test.sections[0].draw_count == 2

    def test_total_questions_caps_draw_to_pool(self, make_test, definition_data):
        sections = definition_data["sections"]
        sections[0]["drawCount"] = 10
        test = make_test(sections=sections)
        assert test.total_questions == 4

    def test_pass_percent_for_percent_rule(self, definition):
        assert definition.pass_percent == 70

    def test_pass_percent_for_count_rule(self, make_test):
        test = make_test(overallPassRule={"type": "absolute", "value": 3})
        assert test.pass_percent == 75

    def test_pass_percent_rounds_halves_up(self, make_test, single_q_data):
        assert make_test(overallPassRule={"type": "percent", "value": 12.5}).pass_percent == 13
        questions = [dict(single_q_data, id=f"q{i}") for i in range(8)]
        test = make_test(
            overallPassRule={"type": "absolute", "value": 1},
            sections=[{"topicId": "t", "topicName": "T", "questions": questions}],
        )
        assert test.pass_percent == 13

    def test_pass_percent_without_questions(self, make_test):
        test = make_test(overallPassRule={"type": "absolute", "value": 3}, sections=[])
        assert test.pass_percent == 80

    def test_non_positive_limits_are_none(self, make_test):
        test = make_test(timeLimitMinutes=0, maxAttempts=-1)
        assert test.time_limit_minutes is None
        assert test.max_attempts is None

    def test_unknown_keys_kept_in_extra(self, make_test):
        assert make_test(authorNote="draft").extra == {"authorNote": "draft"}

    def test_to_dict_includes_derived_fields(self, definition):
        out = definition.to_dict()
        assert out["passPercent"] == 70
        assert out["totalQuestions"] == 4
        assert out["sections"][0]["topicPassRule"] == {"type": "percent", "value": 50}

    def test_round_trip_through_to_dict(self, definition):
        assert parse_test_definition(definition.to_dict()) == definition

    def test_all_questions_in_section_order(self, definition):
        assert [q.id for q in all_questions(definition)] == ["q-single", "q-multi", "q-match", "q-rank"]


class TestLoadTestDefinition:
    def test_loads_file(self, definition_file):
        assert load_test_definition(definition_file).id == "astro-101"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(DefinitionError):
            load_test_definition(str(tmp_path / "nope.json"))

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(DefinitionError):
            load_test_definition(str(path))

    def test_sample_definition_parses(self):
        import os

        sample = os.path.join(os.path.dirname(__file__), "..", "demo_data", "sample_test.json")
        with open(sample, encoding="utf-8") as f:
            test = parse_test_definition(json.load(f))
        assert test.total_questions == 4
        assert test.max_attempts == 3
