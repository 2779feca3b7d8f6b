"""Helpers deciding which fields a multi-step form shows at any moment."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from modal_builder.conditions import (
    DEFAULT_UNKNOWN_OPERATOR_POLICY,
    UnknownOperatorPolicy,
    evaluate_conditions,
)
from modal_builder.models import Field, ModalConfig, Step


def clamp_step_index(index: int, steps: Sequence[Step]) -> int:
    """Return ``index`` limited to the valid range for ``steps``."""

    if not steps:
        return 0
    return max(0, min(int(index), len(steps) - 1))


def next_step_index(index: int, steps: Sequence[Step]) -> int:
    """Advance one step without moving past the last one."""

    return clamp_step_index(clamp_step_index(index, steps) + 1, steps)


def previous_step_index(index: int, steps: Sequence[Step]) -> int:
    """Go back one step without moving before the first one."""

    return clamp_step_index(clamp_step_index(index, steps) - 1, steps)


def is_last_step(index: int, steps: Sequence[Step]) -> bool:
    return clamp_step_index(index, steps) >= max(len(steps) - 1, 0)


def fields_for_step(fields: Sequence[Field], steps: Sequence[Step], index: int) -> List[Field]:
    """Return the candidate fields for the step at ``index``.

    Without steps every field is a candidate. Fields keep their configured
    order.
    """

    if not steps:
        return list(fields)
    step_id = steps[clamp_step_index(index, steps)].id
    return [item for item in fields if item.step_id == step_id]


def visible_fields(
    fields: Sequence[Field],
    steps: Sequence[Step],
    current_step_index: int,
    values: Mapping[str, Any],
    *,
    unknown_operator: UnknownOperatorPolicy = DEFAULT_UNKNOWN_OPERATOR_POLICY,
) -> List[Field]:
    """Return the fields the preview renders for the current step and answers."""

    return [
        item
        for item in fields_for_step(fields, steps, current_step_index)
        if evaluate_conditions(item.conditions, values, unknown_operator=unknown_operator)
    ]


def prune_hidden_values(
    config: ModalConfig,
    values: Mapping[str, Any],
    *,
    unknown_operator: UnknownOperatorPolicy = DEFAULT_UNKNOWN_OPERATOR_POLICY,
) -> Dict[str, Any]:
    """Return ``values`` without answers for hidden or deleted fields.

    Visibility is judged across all steps so answers on other pages survive
    while the user moves between them. Conditions are re-checked against the
    pruned answers until nothing else drops out, so a field that depends on a
    hidden field's stale answer is hidden too.
    """

    pruned = dict(values)
    while True:
        shown = {
            item.id
            for item in config.fields
            if evaluate_conditions(item.conditions, pruned, unknown_operator=unknown_operator)
        }
        kept = {key: value for key, value in pruned.items() if key in shown}
        if len(kept) == len(pruned):
            return kept
        pruned = kept
