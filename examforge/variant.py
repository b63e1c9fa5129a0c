"""
Variant generation for ExamForge.

Builds one attempt's materialized draw: for every section a random subset of
its pool, the drawn questions interleaved across topics, and a shuffle
mapping per question recording display position -> original index.

Each call is an independent draw. Nothing here is persisted; a restart simply
calls generate_variant() again.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from examforge.models import (
    MatchingQuestion,
    MultipleChoiceQuestion,
    Question,
    RankingQuestion,
    Section,
    SingleChoiceQuestion,
    TestDefinition,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchingMapping:
    """Independent display permutations for the two matching columns."""

    left: List[int]
    right: List[int]


ShuffleMapping = Union[List[int], MatchingMapping]


@dataclass(frozen=True)
class DrawnSection:
    topic_id: str
    topic_name: str
    question_ids: List[str]


@dataclass(frozen=True)
class FlatQuestion:
    """A drawn question tagged with the topic it was drawn from."""

    question: Question
    topic_id: str
    topic_name: str


@dataclass
class Variant:
    """One attempt's draw, flattened order, and shuffle mappings."""

    sections: List[DrawnSection] = field(default_factory=list)
    flat_questions: List[FlatQuestion] = field(default_factory=list)
    shuffle_mappings: Dict[str, ShuffleMapping] = field(default_factory=dict)
    initial_answers: Dict[str, Any] = field(default_factory=dict)

    def __len__(self):
        return len(self.flat_questions)

    def question_at(self, index: int) -> Optional[FlatQuestion]:
        if 0 <= index < len(self.flat_questions):
            return self.flat_questions[index]
        return None

    def find(self, question_id: str) -> Optional[FlatQuestion]:
        for fq in self.flat_questions:
            if fq.question.id == question_id:
                return fq
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Variant in the {"sections": [{topicId, topicName, questionIds}]} wire shape."""
        return {
            "sections": [
                {"topicId": s.topic_id, "topicName": s.topic_name, "questionIds": list(s.question_ids)}
                for s in self.sections
            ]
        }


def shuffle(items: list, rng: Optional[random.Random] = None) -> list:
    """Fisher-Yates shuffle in place. Returns the same list for chaining."""
    rng = rng or random
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


def create_shuffle_mapping(length: int, rng: Optional[random.Random] = None) -> List[int]:
    """Random permutation of 0..length-1 (display position -> original index)."""
    return shuffle(list(range(max(0, length))), rng)


def draw_questions(section: Section, rng: Optional[random.Random] = None) -> List[Question]:
    """Draw min(draw_count, pool size) questions without replacement.

    A draw count larger than the pool takes the whole pool; a negative one
    takes nothing.
    """
    pool = shuffle(list(section.questions), rng)
    return pool[: section.effective_draw_count]


def _mapping_for(question: Question, rng: Optional[random.Random]) -> Optional[ShuffleMapping]:
    def perm(n):
        if question.shuffle_answers:
            return create_shuffle_mapping(n, rng)
        return list(range(n))

    if isinstance(question, (SingleChoiceQuestion, MultipleChoiceQuestion)):
        return perm(len(question.options)) if question.options else None
    if isinstance(question, MatchingQuestion):
        if question.left and question.right:
            return MatchingMapping(left=perm(len(question.left)), right=perm(len(question.right)))
        return None
    if isinstance(question, RankingQuestion):
        return perm(len(question.items)) if question.items else None
    return None


def generate_variant(test: TestDefinition, rng: Optional[random.Random] = None) -> Variant:
    """Draw a fresh variant for one attempt.

    Args:
        test: The resolved test definition.
        rng: Random source; defaults to the module-level generator.

    Returns:
        Variant with drawn sections, the cross-topic shuffled question list,
        per-question shuffle mappings, and the initial ranking answers (the
        shuffled display order, so the learner starts from a non-trivial
        arrangement).
    """
    variant = Variant()

    for section in test.sections:
        drawn = draw_questions(section, rng)
        variant.sections.append(
            DrawnSection(
                topic_id=section.topic_id,
                topic_name=section.topic_name,
                question_ids=[q.id for q in drawn],
            )
        )
        for q in drawn:
            mapping = _mapping_for(q, rng)
            if mapping is not None:
                variant.shuffle_mappings[q.id] = mapping
                if isinstance(q, RankingQuestion):
                    variant.initial_answers[q.id] = list(mapping)
            variant.flat_questions.append(FlatQuestion(question=q, topic_id=section.topic_id, topic_name=section.topic_name))

    shuffle(variant.flat_questions, rng)

    logger.debug(
        "Generated variant for test %s: %d questions across %d sections",
        test.id, len(variant.flat_questions), len(variant.sections),
    )
    return variant


def display_order(variant: Variant, question: Question) -> Sequence[int]:
    """Original indices in display order for a single/multiple/ranking question.

    Falls back to the identity order when no mapping was generated.
    """
    mapping = variant.shuffle_mappings.get(question.id)
    if isinstance(mapping, list):
        return mapping
    if isinstance(question, (SingleChoiceQuestion, MultipleChoiceQuestion)):
        return list(range(len(question.options)))
    if isinstance(question, RankingQuestion):
        return list(range(len(question.items)))
    return []


def matching_order(variant: Variant, question: MatchingQuestion) -> MatchingMapping:
    """Left and right display orders for a matching question."""
    mapping = variant.shuffle_mappings.get(question.id)
    if isinstance(mapping, MatchingMapping):
        return mapping
    return MatchingMapping(left=list(range(len(question.left))), right=list(range(len(question.right))))


def full_variant(test: TestDefinition) -> Variant:
    """Every pool question of every section, in definition order, unshuffled.

    Used to grade answers recorded without a variant.
    """
    variant = Variant()
    for section in test.sections:
        variant.sections.append(
            DrawnSection(section.topic_id, section.topic_name, [q.id for q in section.questions])
        )
        variant.flat_questions.extend(FlatQuestion(q, section.topic_id, section.topic_name) for q in section.questions)
    return variant


def variant_from_dict(test: TestDefinition, raw: Dict[str, Any]) -> Variant:
    """Rebuild a Variant from its {"sections": [{topicId, questionIds}]} form.

    Ids that are not in the named section's pool are skipped with a warning.
    Questions are flattened in the recorded section order.
    """
    variant = Variant()
    for entry in raw.get("sections") or []:
        if not isinstance(entry, dict):
            continue
        section = test.section_for(str(entry.get("topicId", "")))
        if section is None:
            logger.warning("Recorded variant names unknown topic %s", entry.get("topicId"))
            continue
        pool = {q.id: q for q in section.questions}
        drawn = []
        for qid in entry.get("questionIds") or []:
            q = pool.get(str(qid))
            if q is None:
                logger.warning("Recorded variant names unknown question %s", qid)
                continue
            drawn.append(q)
        variant.sections.append(DrawnSection(section.topic_id, section.topic_name, [q.id for q in drawn]))
        variant.flat_questions.extend(FlatQuestion(q, section.topic_id, section.topic_name) for q in drawn)
    return variant
