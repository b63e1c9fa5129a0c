"""
Pass-rule evaluation for ExamForge.

Percent rules compare against the point-weighted percentage, which includes
partial credit. Count rules compare against the number of questions that
earned full credit; partial credit never counts toward them.
"""

from typing import Optional

from examforge.models import PassRule


def passes(rule: Optional[PassRule], achieved_percent: float, fully_correct: int) -> bool:
    """Return True if the achieved result satisfies the rule.

    Args:
        rule: Pass rule, or None when no constraint is configured.
        achieved_percent: Point-weighted percentage, 0-100.
        fully_correct: Count of questions scored exactly 1.

    Returns:
        True when there is no rule or the threshold is met.
    """
    if rule is None:
        return True
    if rule.is_percent:
        return achieved_percent >= rule.value
    return fully_correct >= rule.value


def describe_rule(rule: Optional[PassRule]) -> str:
    """Human-readable threshold, e.g. '70%' or '3 correct'."""
    if rule is None:
        return "none"
    value = int(rule.value) if float(rule.value).is_integer() else rule.value
    if rule.is_percent:
        return f"{value}%"
    return f"{value} correct"
