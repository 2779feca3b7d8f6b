"""Tests for replace-on-write config updates and edit history."""

from __future__ import annotations

import pytest

from modal_builder.config_updates import (
    ConfigHistory,
    ConfigUpdateError,
    add_condition,
    add_field,
    add_step,
    apply_action,
    assign_field_to_step,
    move_field,
    remove_condition,
    remove_field,
    remove_step,
    rename_field,
    set_basic_info,
    update_field,
)
from modal_builder.models import (
    ByField,
    Condition,
    ConditionValue,
    EntityOperation,
    Field,
    ModalConfig,
    StatusUpdate,
    Step,
)


def _config() -> ModalConfig:
    return ModalConfig(
        name="Demo",
        description="d",
        fields=(
            Field(id="a", label="A"),
            Field(
                id="b",
                label="B",
                conditions=(
                    Condition(id="c1", target_field_id="a", operator="equals", value=ConditionValue("string", "x")),
                ),
            ),
            Field(id="c", label="C"),
        ),
        steps=(Step(id="s1", title="One"),),
        entity_operations=(
            EntityOperation(
                id="op",
                type="update",
                entity="E",
                field_mappings=({"a": "alpha"}, {"fieldId": "c", "attribute": "gamma"}),
                conditions=(Condition(id="c2", target_field_id="a", operator="is_not_empty"),),
                id_resolution=ByField("a"),
            ),
        ),
        status_updates=(StatusUpdate(id="su", entity="E", target_field="s", new_value="v", id_resolution=ByField("a")),),
    )


def test_updates_return_new_configs() -> None:
    original = _config()

    updated = update_field(original, "a", label="Alpha")

    assert updated is not original
    assert original.fields[0].label == "A"
    assert updated.fields[0].label == "Alpha"


def test_set_basic_info_only_changes_given_values() -> None:
    config = set_basic_info(_config(), name="New")

    assert config.name == "New"
    assert config.description == "d"
    assert set_basic_info(config) is config


def test_add_field_rejects_duplicates_and_unknown_steps() -> None:
    with pytest.raises(ConfigUpdateError):
        add_field(_config(), Field(id="a", label="Again"))
    with pytest.raises(ConfigUpdateError):
        add_field(_config(), Field(id="z", label="Z", step_id="missing"))

    added = add_field(_config(), Field(id="z", label="Z"), index=0)
    assert added.field_ids() == ["z", "a", "b", "c"]


def test_update_cannot_change_ids_or_unknown_attributes() -> None:
    with pytest.raises(ConfigUpdateError):
        update_field(_config(), "a", id="other")
    with pytest.raises(ConfigUpdateError):
        update_field(_config(), "missing", label="x")
    with pytest.raises(ConfigUpdateError):
        apply_action(_config(), {"type": "update_field", "field_id": "a", "changes": {"colour": "red"}})


def test_move_field_ignores_moves_past_the_ends() -> None:
    config = _config()

    assert move_field(config, "a", 1).field_ids() == ["b", "a", "c"]
    assert move_field(config, "a", -1).field_ids() == ["a", "b", "c"]
    assert move_field(config, "c", 1).field_ids() == ["a", "b", "c"]


def test_remove_field_drops_every_reference() -> None:
    config = remove_field(_config(), "a")
    operation = config.entity_operations[0]

    assert config.field_ids() == ["b", "c"]
    assert config.fields[0].conditions == ()
    assert operation.conditions == ()
    assert operation.mapping_pairs() == [("c", "gamma")]
    assert operation.id_resolution is None
    assert config.status_updates[0].id_resolution is None


def test_rename_field_rewrites_every_reference() -> None:
    config = rename_field(_config(), "a", "alpha")
    operation = config.entity_operations[0]

    assert config.field_ids() == ["alpha", "b", "c"]
    assert config.fields[1].conditions[0].target_field_id == "alpha"
    assert operation.conditions[0].target_field_id == "alpha"
    assert operation.mapping_pairs() == [("alpha", "alpha"), ("c", "gamma")]
    assert operation.id_resolution == ByField("alpha")
    assert config.status_updates[0].id_resolution == ByField("alpha")


def test_rename_field_rejects_clashes() -> None:
    with pytest.raises(ConfigUpdateError):
        rename_field(_config(), "a", "b")
    with pytest.raises(ConfigUpdateError):
        rename_field(_config(), "a", "")
    assert rename_field(_config(), "a", "a") == _config()


def test_condition_helpers() -> None:
    condition = Condition(id="c9", target_field_id="b", operator="is_empty")

    added = add_condition(_config(), "c", condition)
    assert added.field_by_id("c").conditions == (condition,)

    changed = apply_action(
        added, {"type": "update_condition", "field_id": "c", "condition_id": "c9", "changes": {"operator": "is_not_empty"}}
    )
    assert changed.field_by_id("c").conditions[0].operator == "is_not_empty"

    removed = remove_condition(added, "c", "c9")
    assert removed.field_by_id("c").conditions == ()


def test_removing_a_step_unassigns_its_fields() -> None:
    config = assign_field_to_step(_config(), "a", "s1")
    assert config.field_by_id("a").step_id == "s1"

    config = remove_step(config, "s1")
    assert config.steps == ()
    assert config.field_by_id("a").step_id is None


def test_assign_to_unknown_step_fails() -> None:
    with pytest.raises(ConfigUpdateError):
        assign_field_to_step(_config(), "a", "nope")


def test_update_field_checks_the_step() -> None:
    with pytest.raises(ConfigUpdateError):
        update_field(_config(), "a", step_id="nope")
    with pytest.raises(ConfigUpdateError):
        apply_action(_config(), {"type": "update_field", "field_id": "a", "changes": {"step_id": "nope"}})

    assigned = update_field(_config(), "a", step_id="s1")
    assert assigned.field_by_id("a").step_id == "s1"
    assert update_field(assigned, "a", step_id=None).field_by_id("a").step_id is None


def test_apply_action_accepts_documents() -> None:
    config = apply_action(_config(), {"type": "add_step", "step": {"id": "s2", "title": "Two"}})
    config = apply_action(config, {"type": "add_field", "field": {"id": "d", "type": "number", "label": "D"}})
    config = apply_action(config, {"type": "update_step", "step_id": "s2", "changes": {"title": "Second"}})

    assert config.step_ids() == ["s1", "s2"]
    assert config.steps[1].title == "Second"
    assert config.field_by_id("d").type == "number"


@pytest.mark.parametrize(
    "action",
    [{"type": "explode"}, {}, {"type": "remove_field"}, {"type": "update_field", "field_id": "a", "changes": []}],
)
def test_apply_action_rejects_bad_actions(action) -> None:
    with pytest.raises(ConfigUpdateError):
        apply_action(_config(), action)


def test_history_undo_and_redo() -> None:
    history = ConfigHistory(_config())
    history = history.apply({"type": "set_basic_info", "name": "One"})
    history = history.apply({"type": "set_basic_info", "name": "Two"})

    assert history.present.name == "Two"
    history = history.undo()
    assert history.present.name == "One"
    assert history.can_redo is True
    history = history.redo()
    assert history.present.name == "Two"

    history = history.undo().apply({"type": "set_basic_info", "name": "Other"})
    assert history.can_redo is False
    assert history.redo().present.name == "Other"


def test_history_skips_no_op_changes_and_respects_limit() -> None:
    history = ConfigHistory(_config(), limit=2)

    assert history.push(_config()) is history

    for index in range(5):
        history = history.push(add_step(history.present, Step(id=f"x{index}")))
    assert len(history.past) == 2
    assert ConfigHistory(_config()).undo().present == _config()
