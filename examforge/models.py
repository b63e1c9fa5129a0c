"""
Test definition model for ExamForge.

Parses the denormalized test definition JSON (test metadata, ordered
sections, each section's full question pool) into immutable dataclasses.
Questions form a closed set of four types, one dataclass each, so the
grading code can dispatch on the class instead of guessing payload shapes.

Shape problems inside a question (missing options, non-numeric indices)
degrade to empty values and are graded as 0 later. Input the model cannot
represent at all (unknown question type, unknown pass rule type, missing
sections) raises DefinitionError.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("single", "multiple", "matching", "ranking")
MEDIA_TYPES = ("image", "audio", "video")
FEEDBACK_MODES = ("general", "conditional")

# "count" is accepted as an alias of "absolute"
RULE_TYPE_MAP = {
    "percent": "percent",
    "absolute": "absolute",
    "count": "absolute",
}


class ExamForgeError(Exception):
    """Base class for ExamForge errors."""


class DefinitionError(ExamForgeError):
    """Raised when a test definition cannot be represented."""


def as_index(value: Any) -> Optional[int]:
    """Return value as an int index, or None if it is not integral.

    Booleans are rejected even though they subclass int. Floats with an
    integral value (1.0 from some JSON encoders) are accepted.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (12.5 -> 13).

    Reported percentages use this instead of round(), which rounds halves
    to even.
    """
    return int(math.floor(value + 0.5))


def _int_list(values: Any) -> Tuple[int, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    result = []
    for v in values:
        idx = as_index(v)
        if idx is not None:
            result.append(idx)
    return tuple(result)


def _str_list(values: Any) -> Tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    return tuple("" if v is None else str(v) for v in values)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


# ---------------------------------------------------------------------------
# Pass rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PassRule:
    """Threshold on a percentage of points or on a fully-correct count."""

    type: str
    value: float

    @property
    def is_percent(self) -> bool:
        return self.type == "percent"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "value": self.value}


def pass_rule_from_dict(raw: Any) -> Optional[PassRule]:
    """Parse a pass rule dict. None or an empty dict means no rule.

    Raises:
        DefinitionError: If the rule type is unknown or the value is not numeric.
    """
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise DefinitionError(f"Pass rule must be an object, got {type(raw).__name__}")

    rule_type = RULE_TYPE_MAP.get(str(raw.get("type", "")).lower())
    if rule_type is None:
        raise DefinitionError(f"Unknown pass rule type: {raw.get('type')!r}")

    value = raw.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DefinitionError(f"Pass rule value must be a number, got {value!r}")

    if rule_type == "percent" and not 0 <= value <= 100:
        clamped = min(100.0, max(0.0, float(value)))
        logger.warning("Percent pass rule value %s outside 0-100, clamped to %s", value, clamped)
        value = clamped

    return PassRule(type=rule_type, value=value)


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Question:
    """Fields shared by every question type."""

    id: str
    prompt: str = ""
    points: int = 1
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    feedback: Optional[str] = None
    feedback_mode: str = "general"
    feedback_correct: Optional[str] = None
    feedback_incorrect: Optional[str] = None
    shuffle_answers: bool = True

    type: ClassVar[str] = ""

    def _data(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _correct(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the wire shape used inside test packages."""
        return {
            "id": self.id,
            "type": self.type,
            "prompt": self.prompt,
            "data": self._data(),
            "correct": self._correct(),
            "points": self.points,
            "mediaUrl": self.media_url,
            "mediaType": self.media_type,
            "feedback": self.feedback,
            "feedbackMode": self.feedback_mode,
            "feedbackCorrect": self.feedback_correct,
            "feedbackIncorrect": self.feedback_incorrect,
            "shuffleAnswers": self.shuffle_answers,
        }


@dataclass(frozen=True)
class SingleChoiceQuestion(Question):
    options: Tuple[str, ...] = ()
    correct_index: Optional[int] = None

    type: ClassVar[str] = "single"

    def _data(self):
        return {"options": list(self.options)}

    def _correct(self):
        return {"correctIndex": self.correct_index}


@dataclass(frozen=True)
class MultipleChoiceQuestion(Question):
    options: Tuple[str, ...] = ()
    correct_indices: Tuple[int, ...] = ()

    type: ClassVar[str] = "multiple"

    def _data(self):
        return {"options": list(self.options)}

    def _correct(self):
        return {"correctIndices": list(self.correct_indices)}


@dataclass(frozen=True)
class MatchingQuestion(Question):
    left: Tuple[str, ...] = ()
    right: Tuple[str, ...] = ()
    pairs: Tuple[Tuple[int, int], ...] = ()

    type: ClassVar[str] = "matching"

    @property
    def correct_map(self) -> Dict[int, int]:
        """Correct pairs as original-left -> original-right."""
        return {left: right for left, right in self.pairs}

    def _data(self):
        return {"left": list(self.left), "right": list(self.right)}

    def _correct(self):
        return {"pairs": [{"left": left, "right": right} for left, right in self.pairs]}


@dataclass(frozen=True)
class RankingQuestion(Question):
    items: Tuple[str, ...] = ()
    correct_order: Tuple[int, ...] = ()

    type: ClassVar[str] = "ranking"

    def _data(self):
        return {"items": list(self.items)}

    def _correct(self):
        return {"correctOrder": list(self.correct_order)}


QUESTION_CLASSES = {
    cls.type: cls for cls in (SingleChoiceQuestion, MultipleChoiceQuestion, MatchingQuestion, RankingQuestion)
}


def _parse_pairs(raw_pairs: Any) -> Tuple[Tuple[int, int], ...]:
    if not isinstance(raw_pairs, list):
        return ()
    pairs = []
    for p in raw_pairs:
        if isinstance(p, dict):
            left, right = as_index(p.get("left")), as_index(p.get("right"))
        elif isinstance(p, (list, tuple)) and len(p) == 2:
            left, right = as_index(p[0]), as_index(p[1])
        else:
            continue
        if left is not None and right is not None:
            pairs.append((left, right))
    return tuple(pairs)


def question_from_dict(raw: Dict[str, Any]) -> Question:
    """Build a typed Question from its wire dict.

    Args:
        raw: Question dict with id, type, prompt, data, correct, points, etc.

    Returns:
        One of the four Question subclasses.

    Raises:
        DefinitionError: If the question type is not one of QUESTION_TYPES.
    """
    if not isinstance(raw, dict):
        raise DefinitionError("Question entry must be an object")

    q_type = raw.get("type")
    cls = QUESTION_CLASSES.get(q_type)
    if cls is None:
        raise DefinitionError(f"Unknown question type {q_type!r} for question {raw.get('id')!r}")

    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    correct = raw.get("correct") if isinstance(raw.get("correct"), dict) else {}

    points = as_index(raw.get("points"))
    if points is None or points <= 0:
        points = 1

    media_type = raw.get("mediaType")
    if media_type not in MEDIA_TYPES:
        media_type = None

    feedback_mode = raw.get("feedbackMode") or "general"
    if feedback_mode not in FEEDBACK_MODES:
        feedback_mode = "general"

    common = {
        "id": str(raw.get("id", "")),
        "prompt": str(raw.get("prompt") or ""),
        "points": points,
        "media_url": _optional_str(raw.get("mediaUrl")),
        "media_type": media_type,
        "feedback": _optional_str(raw.get("feedback")),
        "feedback_mode": feedback_mode,
        "feedback_correct": _optional_str(raw.get("feedbackCorrect")),
        "feedback_incorrect": _optional_str(raw.get("feedbackIncorrect")),
        "shuffle_answers": raw.get("shuffleAnswers") is not False,
    }

    if cls is SingleChoiceQuestion:
        return cls(options=_str_list(data.get("options")), correct_index=as_index(correct.get("correctIndex")), **common)
    if cls is MultipleChoiceQuestion:
        return cls(
            options=_str_list(data.get("options")), correct_indices=_int_list(correct.get("correctIndices")), **common
        )
    if cls is MatchingQuestion:
        return cls(
            left=_str_list(data.get("left")),
            right=_str_list(data.get("right")),
            pairs=_parse_pairs(correct.get("pairs")),
            **common,
        )
    return cls(items=_str_list(data.get("items")), correct_order=_int_list(correct.get("correctOrder")), **common)


# ---------------------------------------------------------------------------
# Sections and tests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Course:
    title: str
    url: str


@dataclass(frozen=True)
class Section:
    """One topic's draw spec: the pool and how many to draw from it."""

    topic_id: str
    topic_name: str
    questions: Tuple[Question, ...] = ()
    draw_count: int = 0
    pass_rule: Optional[PassRule] = None
    feedback: Optional[str] = None
    courses: Tuple[Course, ...] = ()

    @property
    def effective_draw_count(self) -> int:
        """Number of questions actually drawn: draw_count capped to the pool."""
        return max(0, min(self.draw_count, len(self.questions)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topicId": self.topic_id,
            "topicName": self.topic_name,
            "drawCount": self.draw_count,
            "topicPassRule": self.pass_rule.to_dict() if self.pass_rule else None,
            "topicFeedback": self.feedback,
            "recommendedCourses": [{"title": c.title, "url": c.url} for c in self.courses],
            "questions": [q.to_dict() for q in self.questions],
        }


@dataclass(frozen=True)
class TestDefinition:
    """A fully resolved test, read-only to the engine."""

    __test__ = False  # not a pytest test class

    id: str
    title: str
    overall_pass_rule: Optional[PassRule]
    sections: Tuple[Section, ...] = ()
    description: Optional[str] = None
    time_limit_minutes: Optional[int] = None
    max_attempts: Optional[int] = None
    show_correct_answers: bool = False
    start_page_content: Optional[str] = None
    feedback: Optional[str] = None
    webhook_url: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def total_questions(self) -> int:
        return sum(s.effective_draw_count for s in self.sections)

    @property
    def pass_percent(self) -> int:
        """Overall pass threshold expressed as a percentage for display.

        Count rules are converted against the total number of drawn
        questions; with no questions the display falls back to 80.
        """
        rule = self.overall_pass_rule
        if rule is None:
            return 0
        if rule.is_percent:
            return round_half_up(rule.value)
        total = self.total_questions
        return round_half_up(rule.value / total * 100) if total > 0 else 80

    def section_for(self, topic_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.topic_id == topic_id:
                return section
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON embedded in exported packages."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "overallPassRule": self.overall_pass_rule.to_dict() if self.overall_pass_rule else None,
            "webhookUrl": self.webhook_url,
            "testFeedback": self.feedback,
            "timeLimitMinutes": self.time_limit_minutes,
            "maxAttempts": self.max_attempts,
            "showCorrectAnswers": self.show_correct_answers,
            "startPageContent": self.start_page_content,
            "passPercent": self.pass_percent,
            "totalQuestions": self.total_questions,
            "sections": [s.to_dict() for s in self.sections],
        }


def _positive_int_or_none(value: Any) -> Optional[int]:
    number = as_index(value)
    if number is None or number <= 0:
        return None
    return number


def section_from_dict(raw: Dict[str, Any]) -> Section:
    if not isinstance(raw, dict):
        raise DefinitionError("Section entry must be an object")

    questions = tuple(question_from_dict(q) for q in raw.get("questions") or [])
    draw_count = as_index(raw.get("drawCount"))
    if draw_count is None:
        draw_count = len(questions)

    courses = []
    for c in raw.get("recommendedCourses") or []:
        if isinstance(c, dict) and c.get("url"):
            courses.append(Course(title=str(c.get("title") or c["url"]), url=str(c["url"])))

    return Section(
        topic_id=str(raw.get("topicId", "")),
        topic_name=str(raw.get("topicName") or ""),
        questions=questions,
        draw_count=draw_count,
        pass_rule=pass_rule_from_dict(raw.get("topicPassRule")),
        feedback=_optional_str(raw.get("topicFeedback")),
        courses=tuple(courses),
    )


def parse_test_definition(raw: Dict[str, Any]) -> TestDefinition:
    """Build a TestDefinition from the denormalized JSON dict.

    Raises:
        DefinitionError: If the sections list is missing or any nested
            question/rule cannot be represented.
    """
    if not isinstance(raw, dict):
        raise DefinitionError("Test definition must be a JSON object")
    sections = raw.get("sections")
    if not isinstance(sections, list):
        raise DefinitionError("Test definition has no 'sections' list")

    known = {
        "id", "title", "description", "overallPassRule", "webhookUrl", "testFeedback",
        "timeLimitMinutes", "maxAttempts", "showCorrectAnswers", "startPageContent",
        "passPercent", "totalQuestions", "sections",
    }

    test = TestDefinition(
        id=str(raw.get("id", "")),
        title=str(raw.get("title") or "Test"),
        overall_pass_rule=pass_rule_from_dict(raw.get("overallPassRule")),
        sections=tuple(section_from_dict(s) for s in sections),
        description=_optional_str(raw.get("description")),
        time_limit_minutes=_positive_int_or_none(raw.get("timeLimitMinutes")),
        max_attempts=_positive_int_or_none(raw.get("maxAttempts")),
        show_correct_answers=bool(raw.get("showCorrectAnswers")),
        start_page_content=_optional_str(raw.get("startPageContent")),
        feedback=_optional_str(raw.get("testFeedback")),
        webhook_url=_optional_str(raw.get("webhookUrl")),
        extra={k: v for k, v in raw.items() if k not in known},
    )

    seen = set()
    for section in test.sections:
        if section.draw_count > len(section.questions):
            logger.warning(
                "Section %s draws %d from a pool of %d; the whole pool will be used",
                section.topic_id, section.draw_count, len(section.questions),
            )
        for q in section.questions:
            if q.id in seen:
                logger.warning("Duplicate question id %s in test %s", q.id, test.id)
            seen.add(q.id)
    return test


def load_test_definition(path: str) -> TestDefinition:
    """Read a test definition JSON file.

    Raises:
        DefinitionError: If the file cannot be read or parsed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError, ValueError) as e:
        raise DefinitionError(f"Could not read test definition {path}: {e}") from e
    return parse_test_definition(raw)


def all_questions(test: TestDefinition) -> List[Question]:
    """Every question in every pool, in section order."""
    return [q for s in test.sections for q in s.questions]
