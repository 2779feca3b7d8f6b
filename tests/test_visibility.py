"""Tests for step navigation and field visibility in the live preview."""

from __future__ import annotations

from modal_builder.conditions import UnknownOperatorPolicy
from modal_builder.models import Condition, ConditionValue, Field, ModalConfig, Step
from modal_builder.visibility import (
    clamp_step_index,
    fields_for_step,
    is_last_step,
    next_step_index,
    previous_step_index,
    prune_hidden_values,
    visible_fields,
)

STEPS = (Step(id="S1", title="One"), Step(id="S2", title="Two"))


def _ids(fields):
    return [item.id for item in fields]


def test_each_step_shows_only_its_fields() -> None:
    fields = [Field(id="a", label="A", step_id="S1"), Field(id="b", label="B", step_id="S2")]

    assert _ids(visible_fields(fields, STEPS, 0, {})) == ["a"]
    assert _ids(visible_fields(fields, STEPS, 1, {})) == ["b"]


def test_without_steps_every_field_is_a_candidate() -> None:
    fields = [Field(id="a", label="A"), Field(id="b", label="B", step_id="S9")]

    assert _ids(fields_for_step(fields, (), 3)) == ["a", "b"]


def test_unassigned_fields_are_hidden_when_steps_exist() -> None:
    fields = [Field(id="a", label="A"), Field(id="b", label="B", step_id="S1")]

    assert _ids(visible_fields(fields, STEPS, 0, {})) == ["b"]


def test_conditions_hide_fields_and_keep_order() -> None:
    show_when_yes = (
        Condition(id="c1", target_field_id="choice", operator="equals", value=ConditionValue("string", "yes")),
    )
    fields = [
        Field(id="choice", label="Choice"),
        Field(id="details", label="Details", conditions=show_when_yes),
        Field(id="notes", label="Notes"),
    ]

    assert _ids(visible_fields(fields, (), 0, {"choice": "no"})) == ["choice", "notes"]
    assert _ids(visible_fields(fields, (), 0, {"choice": "yes"})) == ["choice", "details", "notes"]


def test_unknown_operator_policy_reaches_visibility() -> None:
    odd = (Condition(id="c1", target_field_id="x", operator="regex", value=ConditionValue("string", ".*")),)
    fields = [Field(id="y", label="Y", conditions=odd)]

    assert _ids(visible_fields(fields, (), 0, {})) == ["y"]
    assert visible_fields(fields, (), 0, {}, unknown_operator=UnknownOperatorPolicy.DENY) == []


def test_step_index_helpers_clamp() -> None:
    assert clamp_step_index(5, STEPS) == 1
    assert clamp_step_index(-2, STEPS) == 0
    assert clamp_step_index(4, ()) == 0
    assert next_step_index(1, STEPS) == 1
    assert previous_step_index(0, STEPS) == 0
    assert next_step_index(0, STEPS) == 1
    assert is_last_step(1, STEPS) is True
    assert is_last_step(0, STEPS) is False
    assert is_last_step(0, ()) is True


def test_prune_hidden_values_drops_hidden_and_unknown_answers() -> None:
    config = ModalConfig(
        name="Demo",
        fields=(
            Field(id="toggle", label="Toggle", type="checkbox"),
            Field(
                id="reason",
                label="Reason",
                conditions=(Condition(id="c", target_field_id="toggle", operator="is_not_empty"),),
            ),
        ),
    )

    assert prune_hidden_values(config, {"toggle": False, "reason": "x", "stale": 1}) == {"toggle": False}
    assert prune_hidden_values(config, {"toggle": True, "reason": "x"}) == {"toggle": True, "reason": "x"}


def _chain() -> ModalConfig:
    def shown_when(target: str, expected: str) -> tuple:
        return (Condition(id=f"c_{target}", target_field_id=target, operator="equals", value=ConditionValue("string", expected)),)

    return ModalConfig(
        name="Chain",
        fields=(
            Field(id="x", label="X"),
            Field(id="a", label="A", conditions=shown_when("x", "yes")),
            Field(id="b", label="B", conditions=shown_when("a", "foo")),
        ),
    )


def test_prune_hidden_values_follows_chained_conditions() -> None:
    config = _chain()

    assert prune_hidden_values(config, {"x": "no", "a": "foo", "b": "secret"}) == {"x": "no"}
    assert prune_hidden_values(config, {"x": "yes", "a": "foo", "b": "secret"}) == {
        "x": "yes",
        "a": "foo",
        "b": "secret",
    }
    assert prune_hidden_values(config, {"x": "yes", "a": "bar", "b": "secret"}) == {"x": "yes", "a": "bar"}
