"""
Condition Logic - Operators and engagement predicates for Condition steps

Supports:
- Value operators (equals, contains, greater_than, in, exists, ...)
- Engagement predicates against a previously sent message (opened, not_replied, ...)
"""

import logging
from enum import Enum
from typing import Any, Iterable, Optional

from dripflow.models.engagement import EngagementType

logger = logging.getLogger(__name__)


class ConditionOperator(str, Enum):
    """Value operators"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IN = "in"
    NOT_IN = "not_in"


class EngagementPredicate(str, Enum):
    """Engagement predicates on the referenced message"""
    OPENED = "opened"
    NOT_OPENED = "not_opened"
    CLICKED = "clicked"
    NOT_CLICKED = "not_clicked"
    REPLIED = "replied"
    NOT_REPLIED = "not_replied"
    OPENED_NO_REPLY = "opened_no_reply"
    OPENED_NO_CLICK = "opened_no_click"
    CLICKED_NO_REPLY = "clicked_no_reply"


# predicate -> (event types required, event types forbidden)
ENGAGEMENT_RULES = {
    EngagementPredicate.OPENED.value: ({EngagementType.OPENED.value}, set()),
    EngagementPredicate.NOT_OPENED.value: (set(), {EngagementType.OPENED.value}),
    EngagementPredicate.CLICKED.value: ({EngagementType.CLICKED.value}, set()),
    EngagementPredicate.NOT_CLICKED.value: (set(), {EngagementType.CLICKED.value}),
    EngagementPredicate.REPLIED.value: ({EngagementType.REPLIED.value}, set()),
    EngagementPredicate.NOT_REPLIED.value: (set(), {EngagementType.REPLIED.value}),
    EngagementPredicate.OPENED_NO_REPLY.value: ({EngagementType.OPENED.value}, {EngagementType.REPLIED.value}),
    EngagementPredicate.OPENED_NO_CLICK.value: ({EngagementType.OPENED.value}, {EngagementType.CLICKED.value}),
    EngagementPredicate.CLICKED_NO_REPLY.value: ({EngagementType.CLICKED.value}, {EngagementType.REPLIED.value}),
}


def is_engagement_predicate(name: Optional[str]) -> bool:
    return bool(name) and name in ENGAGEMENT_RULES


def evaluate_engagement(predicate: str, observed: Iterable[str]) -> bool:
    """
    Check an engagement predicate against the event types observed for a message.

    Args:
        predicate: EngagementPredicate value
        observed: event types recorded for the referenced message
    """
    required, forbidden = ENGAGEMENT_RULES[predicate]
    observed = set(observed)
    return required.issubset(observed) and not (forbidden & observed)


def normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def to_number(value: Any) -> Optional[float]:
    """Numeric parse; None when the value is not a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _contains(actual: Any, expected: Any) -> Optional[bool]:
    if isinstance(actual, str) and isinstance(expected, str):
        return normalize_value(expected) in normalize_value(actual)
    if isinstance(actual, list):
        normalized = [normalize_value(item) for item in actual]
        return normalize_value(expected) in normalized
    return None


def _membership(actual: Any, expected: Any) -> Optional[bool]:
    if isinstance(expected, str):
        expected = expected.split(',')
    if isinstance(expected, list):
        return normalize_value(actual) in [normalize_value(item) for item in expected]
    return None


def evaluate_operator(actual: Any, operator: str, expected: Any) -> bool:
    """
    Evaluate a value operator.

    Strings compare case-insensitively after trimming. Numeric operators
    are false when either side is not a number.
    """
    if operator == ConditionOperator.EQUALS.value:
        return normalize_value(actual) == normalize_value(expected)

    elif operator == ConditionOperator.NOT_EQUALS.value:
        return normalize_value(actual) != normalize_value(expected)

    elif operator == ConditionOperator.CONTAINS.value:
        return bool(_contains(actual, expected))

    elif operator == ConditionOperator.NOT_CONTAINS.value:
        result = _contains(actual, expected)
        return True if result is None else not result

    elif operator in (ConditionOperator.GREATER_THAN.value, ConditionOperator.LESS_THAN.value):
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            return False
        if operator == ConditionOperator.GREATER_THAN.value:
            return left > right
        return left < right

    elif operator == ConditionOperator.EXISTS.value:
        return actual is not None and actual != ''

    elif operator == ConditionOperator.NOT_EXISTS.value:
        return actual is None or actual == ''

    elif operator == ConditionOperator.IN.value:
        return bool(_membership(actual, expected))

    elif operator == ConditionOperator.NOT_IN.value:
        result = _membership(actual, expected)
        return True if result is None else not result

    logger.warning(f"Unknown condition operator: {operator}")
    return False
