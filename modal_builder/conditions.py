"""Evaluation of field visibility and operation execution conditions."""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Mapping as MappingABC
from typing import Any, Dict, Iterable, List, Mapping, Optional

from modal_builder.models import Condition, EntityOperation, to_display_text, to_number

logger = logging.getLogger(__name__)

OPERATOR_ALIASES: Dict[str, str] = {
    "equals": "equals",
    "notEquals": "not_equals",
    "not_equals": "not_equals",
    "contains": "contains",
    "not_contains": "not_contains",
    "notContains": "not_contains",
    "isEmpty": "is_empty",
    "is_empty": "is_empty",
    "isNotEmpty": "is_not_empty",
    "is_not_empty": "is_not_empty",
    "greater_than": "greater_than",
    "greaterThan": "greater_than",
    "less_than": "less_than",
    "lessThan": "less_than",
}
OPERATOR_LABELS: Dict[str, str] = {
    "equals": "Equals",
    "not_equals": "Does not equal",
    "contains": "Contains",
    "not_contains": "Does not contain",
    "is_empty": "Is empty",
    "is_not_empty": "Is not empty",
    "greater_than": "Greater than",
    "less_than": "Less than",
}
VALUELESS_OPERATORS = frozenset({"is_empty", "is_not_empty"})
NUMERIC_OPERATORS = frozenset({"greater_than", "less_than"})


class UnknownOperatorPolicy(enum.Enum):
    """How conditions with an unrecognised operator evaluate."""

    ALLOW = "allow"
    DENY = "deny"

    @classmethod
    def parse(cls, value: Any, default: Optional["UnknownOperatorPolicy"] = None) -> "UnknownOperatorPolicy":
        """Return the policy named by ``value`` falling back to ``default``."""

        fallback = default or cls.ALLOW
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                logger.warning("Unknown operator policy %r; using %s.", value, fallback.value)
        return fallback


DEFAULT_UNKNOWN_OPERATOR_POLICY = UnknownOperatorPolicy.ALLOW


def normalize_operator(operator: Any) -> Optional[str]:
    """Return the canonical operator name, or ``None`` if it is not supported."""

    if not isinstance(operator, str):
        return None
    return OPERATOR_ALIASES.get(operator.strip())


def is_empty_value(value: Any) -> bool:
    """Return ``True`` for values an emptiness condition treats as empty.

    Falsy scalars count as empty: ``None``, ``""``, ``False``, zero and NaN.
    Collections are present whatever their length.
    """

    if value is None or isinstance(value, bool):
        return value is not True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (int, float)):
        return value == 0 or math.isnan(value)
    return False


def _compare_numbers(actual: Any, expected: Any, operator: str) -> bool:
    left = to_number(actual)
    right = to_number(expected)
    if left is None or right is None:
        return False
    if operator == "greater_than":
        return left > right
    return left < right


def evaluate_condition(
    condition: Condition,
    values: Mapping[str, Any],
    *,
    unknown_operator: UnknownOperatorPolicy = DEFAULT_UNKNOWN_OPERATOR_POLICY,
) -> bool:
    """Evaluate a single condition against the current form values."""

    actual = values.get(condition.target_field_id) if isinstance(values, MappingABC) else None
    operator = normalize_operator(condition.operator)
    expected = condition.value.value if condition.value is not None else None

    if operator is None:
        logger.warning(
            "Condition %s uses unsupported operator %r; treating as %s.",
            condition.id or "<unnamed>",
            condition.operator,
            "visible" if unknown_operator is UnknownOperatorPolicy.ALLOW else "hidden",
        )
        return unknown_operator is UnknownOperatorPolicy.ALLOW

    if operator == "is_empty":
        return is_empty_value(actual)
    if operator == "is_not_empty":
        return not is_empty_value(actual)
    if operator in NUMERIC_OPERATORS:
        return _compare_numbers(actual, expected, operator)

    actual_text = to_display_text(actual)
    expected_text = to_display_text(expected)
    if operator == "equals":
        return actual_text == expected_text
    if operator == "not_equals":
        return actual_text != expected_text
    if operator == "contains":
        return expected_text in actual_text
    return expected_text not in actual_text


def evaluate_conditions(
    conditions: Optional[Iterable[Condition]],
    values: Mapping[str, Any],
    *,
    unknown_operator: UnknownOperatorPolicy = DEFAULT_UNKNOWN_OPERATOR_POLICY,
) -> bool:
    """Return ``True`` when every condition holds; an empty list always holds."""

    if not conditions:
        return True
    return all(
        evaluate_condition(condition, values, unknown_operator=unknown_operator)
        for condition in conditions
    )


def evaluate_operation_conditions(
    operation: EntityOperation,
    values: Mapping[str, Any],
    *,
    unknown_operator: UnknownOperatorPolicy = DEFAULT_UNKNOWN_OPERATOR_POLICY,
) -> bool:
    """Decide whether an entity operation runs, honouring its ``and``/``or`` logic."""

    if not operation.conditions:
        return True
    results = (
        evaluate_condition(condition, values, unknown_operator=unknown_operator)
        for condition in operation.conditions
    )
    if operation.condition_logic == "or":
        return any(results)
    return all(results)


def condition_problems(condition: Condition, known_fields: Iterable[str]) -> List[str]:
    """Return configuration problems with ``condition`` as readable messages."""

    problems = []
    label = condition.id or "condition"
    if not condition.target_field_id:
        problems.append(f"Condition '{label}' does not reference a field.")
    elif condition.target_field_id not in set(known_fields):
        problems.append(
            f"Condition '{label}' references unknown field '{condition.target_field_id}'."
        )
    operator = normalize_operator(condition.operator)
    if operator is None:
        problems.append(f"Condition '{label}' uses unsupported operator '{condition.operator}'.")
    elif operator not in VALUELESS_OPERATORS:
        if condition.value is None or condition.value.as_text() == "":
            problems.append(f"Condition '{label}' needs a value to compare against.")
        elif operator in NUMERIC_OPERATORS and condition.value.as_number() is None:
            problems.append(f"Condition '{label}' compares numbers but its value is not numeric.")
    return problems
