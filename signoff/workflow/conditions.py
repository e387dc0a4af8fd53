"""
Skip-condition evaluation.

A stage is skipped when ANY of its conditions matches the target context.
Field lookup by condition type:

- user_role: the requester's role
- content_type: ``attributes["content_type"]`` if present, else the target type
- budget_threshold: the target's budget
- custom: ``attributes[condition.field]``
"""

import logging
from enum import Enum
from numbers import Number
from typing import Any, Optional, Tuple

from signoff.workflow.schema import (
    ApprovalStage,
    ConditionOperator,
    ConditionType,
    SkipCondition,
    TargetContext,
)

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _to_number(value: Any) -> Optional[float]:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def resolve_field(condition: SkipCondition, context: TargetContext) -> Any:
    """Value of the target context that ``condition`` compares against."""
    if condition.type == ConditionType.USER_ROLE:
        return context.requester_role
    if condition.type == ConditionType.CONTENT_TYPE:
        return context.attributes.get("content_type", context.target_type)
    if condition.type == ConditionType.BUDGET_THRESHOLD:
        if context.budget is not None:
            return context.budget
        return context.attributes.get("budget")
    return context.attributes.get(condition.field)


def compare_values(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    """
    Apply a comparison operator.

    A missing value (None) only ever satisfies ``not_equals``. Ordering
    operators coerce both sides to numbers and fail when either side is
    not numeric. ``contains`` is case-insensitive and also tests
    membership for list values.
    """
    actual = _normalize(actual)
    expected = _normalize(expected)

    if operator == ConditionOperator.NOT_EQUALS:
        return not compare_values(actual, ConditionOperator.EQUALS, expected)

    if actual is None:
        return False

    if operator == ConditionOperator.EQUALS:
        if _is_number(actual) and _is_number(expected):
            return float(actual) == float(expected)
        return actual == expected

    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == ConditionOperator.GREATER_THAN else left < right

    if operator == ConditionOperator.CONTAINS:
        needle = str(expected).lower()
        if isinstance(actual, (list, tuple, set, frozenset)):
            return any(str(_normalize(item)).lower() == needle for item in actual)
        return needle in str(actual).lower()

    return False


def condition_matches(condition: SkipCondition, context: TargetContext) -> bool:
    actual = resolve_field(condition, context)
    return compare_values(actual, condition.operator, condition.value)


def should_skip_stage(
    stage: ApprovalStage, context: Optional[TargetContext]
) -> Tuple[bool, Optional[SkipCondition]]:
    """Whether to bypass ``stage``, and the first condition that matched."""
    if context is None:
        return False, None
    for condition in stage.skip_conditions:
        if condition_matches(condition, context):
            logger.debug(
                f"Stage '{stage.id}' skipped: {condition.type.value} "
                f"{condition.operator.value} {condition.value!r}"
            )
            return True, condition
    return False, None
