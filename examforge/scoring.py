"""
Answer evaluation for ExamForge.

Maps (question, answer) to a score ratio in [0, 1]. Every scorer is total:
a missing answer, or one of the wrong shape, scores 0 and never raises.

Answers are always expressed in original index space (never display
positions):
- single:   int option index
- multiple: list of int option indices
- matching: dict original-left -> original-right (keys may be JSON strings)
- ranking:  list of original item indices in the learner's order
"""

from typing import Any, Dict, Optional

from examforge.models import (
    MatchingQuestion,
    MultipleChoiceQuestion,
    Question,
    RankingQuestion,
    SingleChoiceQuestion,
    as_index,
)

OUTCOME_CORRECT = "correct"
OUTCOME_PARTIAL = "partial"
OUTCOME_INCORRECT = "incorrect"


def _score_single(question: SingleChoiceQuestion, answer: Any) -> float:
    chosen = as_index(answer)
    if chosen is None or question.correct_index is None:
        return 0.0
    return 1.0 if chosen == question.correct_index else 0.0


def _score_multiple(question: MultipleChoiceQuestion, answer: Any) -> float:
    """Subtractive partial credit: (right picks - wrong picks) / correct count, floored at 0.

    Selecting every option therefore never beats selecting only the correct
    subset.
    """
    correct = set(question.correct_indices)
    if not correct or not isinstance(answer, (list, tuple, set, frozenset)):
        return 0.0

    selected = {idx for idx in (as_index(a) for a in answer) if idx is not None}
    right = len(selected & correct)
    wrong = len(selected - correct)
    return max(0.0, (right - wrong) / len(correct))


def normalize_matching_answer(answer: Any) -> Dict[int, int]:
    """Coerce a matching answer to {int left: int right}.

    JSON round-trips turn int keys into strings; entries that are not
    integral on either side are dropped.
    """
    if not isinstance(answer, dict):
        return {}
    pairs = {}
    for key, value in answer.items():
        left = as_index(key)
        if left is None and isinstance(key, str) and key.strip().lstrip("-").isdigit():
            left = int(key)
        right = as_index(value)
        if left is not None and right is not None:
            pairs[left] = right
    return pairs


def _score_matching(question: MatchingQuestion, answer: Any) -> float:
    if not question.pairs:
        return 0.0
    chosen = normalize_matching_answer(answer)
    hits = sum(1 for left, right in question.pairs if chosen.get(left) == right)
    return hits / len(question.pairs)


def _score_ranking(question: RankingQuestion, answer: Any) -> float:
    """Positional exact-match count over the order length.

    An item one slot away from its place earns nothing.
    """
    expected = question.correct_order
    if not expected or not isinstance(answer, (list, tuple)):
        return 0.0
    if len(answer) != len(expected):
        return 0.0
    hits = sum(1 for got, want in zip(answer, expected) if as_index(got) == want)
    return hits / len(expected)


def score_answer(question: Question, answer: Any) -> float:
    """Score an answer against a question.

    Args:
        question: Any of the four Question subclasses.
        answer: The learner's answer in original index space, or None.

    Returns:
        Score ratio in [0, 1]. 0 for a missing answer or an unknown type.
    """
    if answer is None:
        return 0.0
    if isinstance(question, SingleChoiceQuestion):
        return _score_single(question, answer)
    if isinstance(question, MultipleChoiceQuestion):
        return _score_multiple(question, answer)
    if isinstance(question, MatchingQuestion):
        return _score_matching(question, answer)
    if isinstance(question, RankingQuestion):
        return _score_ranking(question, answer)
    return 0.0


def is_fully_correct(ratio: float) -> bool:
    return ratio == 1


def outcome_label(ratio: float) -> str:
    """Classify a ratio as correct, partial, or incorrect."""
    if is_fully_correct(ratio):
        return OUTCOME_CORRECT
    if ratio > 0:
        return OUTCOME_PARTIAL
    return OUTCOME_INCORRECT


def feedback_text(question: Question, ratio: float) -> Optional[str]:
    """Pick the feedback to show after a question is confirmed.

    General mode shows the same text regardless of the outcome. Conditional
    mode shows the correct text only for full credit; partial credit gets
    the incorrect text.
    """
    if question.feedback_mode == "conditional":
        return question.feedback_correct if is_fully_correct(ratio) else question.feedback_incorrect
    return question.feedback


def has_answer(question: Question, answer: Any) -> bool:
    """Answer-presence check used before the learner may move on.

    - single needs an int
    - multiple needs a non-empty selection
    - matching needs every left item assigned
    - ranking always counts as answered (a default order always exists)
    """
    if isinstance(question, SingleChoiceQuestion):
        return as_index(answer) is not None
    if isinstance(question, MultipleChoiceQuestion):
        return isinstance(answer, (list, tuple, set, frozenset)) and len(answer) > 0
    if isinstance(question, MatchingQuestion):
        chosen = normalize_matching_answer(answer)
        return all(left in chosen for left in range(len(question.left)))
    if isinstance(question, RankingQuestion):
        return True
    return answer is not None
