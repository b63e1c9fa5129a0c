"""
Results aggregation for ExamForge.

Folds per-question scores into per-topic and overall totals and applies the
pass rules hierarchically: the test is passed only when the overall rule is
met AND every topic that has its own rule meets it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from examforge.models import Course, PassRule, TestDefinition, round_half_up
from examforge.pass_rules import describe_rule, passes
from examforge.scoring import is_fully_correct, score_answer
from examforge.variant import Variant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuestionResult:
    question_id: str
    topic_id: str
    ratio: float
    points: int

    @property
    def earned(self) -> float:
        return self.points * self.ratio


@dataclass
class TopicResult:
    topic_id: str
    topic_name: str
    correct: int = 0
    total: int = 0
    earned_points: float = 0.0
    possible_points: float = 0.0
    percent: float = 0.0
    passed: Optional[bool] = None
    pass_rule: Optional[PassRule] = None
    feedback: Optional[str] = None
    recommended_courses: List[Course] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topicId": self.topic_id,
            "topicName": self.topic_name,
            "correct": self.correct,
            "total": self.total,
            "percent": self.percent,
            "earnedPoints": self.earned_points,
            "possiblePoints": self.possible_points,
            "passed": self.passed,
            "passRule": self.pass_rule.to_dict() if self.pass_rule else None,
            "topicFeedback": self.feedback,
            "recommendedCourses": [{"title": c.title, "url": c.url} for c in self.recommended_courses],
        }


@dataclass
class AttemptReport:
    total_correct: int
    total_questions: int
    earned_points: float
    possible_points: float
    percent: float
    passed: bool
    topic_results: List[TopicResult] = field(default_factory=list)
    question_results: List[QuestionResult] = field(default_factory=list)
    time_expired: bool = False

    @property
    def failed_topics(self) -> List[TopicResult]:
        return [tr for tr in self.topic_results if tr.passed is False]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCorrect": self.total_correct,
            "totalQuestions": self.total_questions,
            "overallPercent": self.percent,
            "totalEarnedPoints": self.earned_points,
            "totalPossiblePoints": self.possible_points,
            "overallPassed": self.passed,
            "timeExpired": self.time_expired,
            "topicResults": [tr.to_dict() for tr in self.topic_results],
        }


def _percent(earned: float, possible: float) -> float:
    return earned / possible * 100 if possible > 0 else 0.0


def aggregate(
    test: TestDefinition,
    variant: Variant,
    answers: Mapping[str, Any],
    time_expired: bool = False,
) -> AttemptReport:
    """Grade every drawn question and build the attempt report.

    Args:
        test: The test definition (source of pass rules and topic metadata).
        variant: The attempt's variant; its flat question list is graded.
        answers: Answers keyed by question id, in original index space.
        time_expired: Whether the attempt was force-submitted by the timer.

    Returns:
        AttemptReport with point-weighted percentages and pass flags.
    """
    topics: Dict[str, TopicResult] = {}
    question_results = []
    earned = possible = 0.0
    fully_correct = 0

    for fq in variant.flat_questions:
        q = fq.question
        ratio = score_answer(q, answers.get(q.id))
        question_results.append(QuestionResult(question_id=q.id, topic_id=fq.topic_id, ratio=ratio, points=q.points))

        possible += q.points
        earned += q.points * ratio
        if is_fully_correct(ratio):
            fully_correct += 1

        tr = topics.get(fq.topic_id)
        if tr is None:
            section = test.section_for(fq.topic_id)
            tr = TopicResult(
                topic_id=fq.topic_id,
                topic_name=fq.topic_name,
                pass_rule=section.pass_rule if section else None,
                feedback=section.feedback if section else None,
                recommended_courses=list(section.courses) if section else [],
            )
            topics[fq.topic_id] = tr
        tr.total += 1
        tr.possible_points += q.points
        tr.earned_points += q.points * ratio
        if is_fully_correct(ratio):
            tr.correct += 1

    overall_percent = _percent(earned, possible)
    overall_rule_passed = passes(test.overall_pass_rule, overall_percent, fully_correct)

    # section order, not draw order, so objective indices are stable
    order = {s.topic_id: i for i, s in reversed(list(enumerate(test.sections)))}
    topic_results = sorted(topics.values(), key=lambda t: order.get(t.topic_id, len(order)))

    all_topics_passed = True
    for tr in topic_results:
        tr.percent = _percent(tr.earned_points, tr.possible_points)
        if tr.pass_rule is not None:
            tr.passed = passes(tr.pass_rule, tr.percent, tr.correct)
            if not tr.passed:
                all_topics_passed = False

    report = AttemptReport(
        total_correct=fully_correct,
        total_questions=len(variant.flat_questions),
        earned_points=earned,
        possible_points=possible,
        percent=overall_percent,
        passed=overall_rule_passed and all_topics_passed,
        topic_results=topic_results,
        question_results=question_results,
        time_expired=time_expired,
    )
    logger.info(
        "Graded test %s: %.1f%% (%d/%d fully correct), passed=%s",
        test.id, report.percent, report.total_correct, report.total_questions, report.passed,
    )
    return report


def format_report(report: AttemptReport, test: Optional[TestDefinition] = None) -> str:
    """Render the report as plain text for terminal display."""
    lines = []
    if test is not None:
        lines.append(test.title)
        lines.append("=" * min(60, max(len(test.title), 10)))
    verdict = "PASSED" if report.passed else "FAILED"
    lines.append(f"Result: {verdict}  {round_half_up(report.percent)}%")
    if report.time_expired:
        lines.append("Time expired: the attempt was submitted automatically.")
    lines.append(
        f"Correct: {report.total_correct}/{report.total_questions}   "
        f"Points: {report.earned_points:.1f} / {report.possible_points:.1f}"
    )

    if report.topic_results:
        lines.append("")
        lines.append("Results by topic:")
        for tr in report.topic_results:
            status = "" if tr.passed is None else ("  [passed]" if tr.passed else "  [not passed]")
            lines.append(
                f"  {tr.topic_name}: {round_half_up(tr.percent)}%  "
                f"({tr.earned_points:.1f} / {tr.possible_points:.1f} pts){status}"
            )
            if tr.pass_rule is not None:
                lines.append(f"    required: {describe_rule(tr.pass_rule)}")
            if tr.passed is False and tr.feedback:
                lines.append(f"    {tr.feedback}")

    failed = [tr for tr in report.failed_topics if tr.recommended_courses]
    if failed:
        lines.append("")
        lines.append("Recommended courses:")
        for tr in failed:
            lines.append(f"  {tr.topic_name}")
            for course in tr.recommended_courses:
                lines.append(f"    - {course.title} <{course.url}>")

    if test is not None and test.feedback:
        lines.append("")
        lines.append(test.feedback)

    return "\n".join(lines)
