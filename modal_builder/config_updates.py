"""Replace-on-write updates for modal configurations.

Every function takes a :class:`ModalConfig` and returns a new one; nothing is
mutated in place. The builder page routes all edits through these helpers
(directly or via :func:`apply_action`) and keeps snapshots in a
:class:`ConfigHistory` for undo and redo.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, TypeVar

from modal_builder.models import (
    ByField,
    Condition,
    EmailNotification,
    EntityOperation,
    Field,
    ModalConfig,
    StatusUpdate,
    Step,
    Webhook,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
HISTORY_LIMIT = 50


class ConfigUpdateError(ValueError):
    """Raised when an update refers to an unknown item or action."""


def _index_of(items: Tuple[Any, ...], item_id: str, kind: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    raise ConfigUpdateError(f"Unknown {kind} '{item_id}'.")


def _insert(items: Tuple[T, ...], item: T, index: Optional[int], kind: str) -> Tuple[T, ...]:
    if any(existing.id == item.id for existing in items):  # type: ignore[attr-defined]
        raise ConfigUpdateError(f"A {kind} with id '{item.id}' already exists.")  # type: ignore[attr-defined]
    position = len(items) if index is None else max(0, min(index, len(items)))
    return items[:position] + (item,) + items[position:]


def _change(items: Tuple[T, ...], item_id: str, kind: str, changes: Mapping[str, Any]) -> Tuple[T, ...]:
    if "id" in changes and changes["id"] != item_id:
        raise ConfigUpdateError(f"Use a rename to change the id of {kind} '{item_id}'.")
    index = _index_of(items, item_id, kind)
    updated = replace(items[index], **changes)
    return items[:index] + (updated,) + items[index + 1 :]


def _drop(items: Tuple[T, ...], item_id: str, kind: str) -> Tuple[T, ...]:
    index = _index_of(items, item_id, kind)
    return items[:index] + items[index + 1 :]


def _move(items: Tuple[T, ...], item_id: str, offset: int, kind: str) -> Tuple[T, ...]:
    index = _index_of(items, item_id, kind)
    target = index + offset
    if not 0 <= target < len(items):
        return items
    reordered = list(items)
    reordered[index], reordered[target] = reordered[target], reordered[index]
    return tuple(reordered)


def set_basic_info(
    config: ModalConfig, *, name: Optional[str] = None, description: Optional[str] = None
) -> ModalConfig:
    changes: Dict[str, Any] = {}
    if name is not None:
        changes["name"] = name
    if description is not None:
        changes["description"] = description
    return replace(config, **changes) if changes else config


def _require_step(config: ModalConfig, step_id: Optional[str]) -> None:
    if step_id is not None and step_id not in config.step_ids():
        raise ConfigUpdateError(f"Unknown step '{step_id}'.")


def add_field(config: ModalConfig, item: Field, *, index: Optional[int] = None) -> ModalConfig:
    """Insert ``item`` at ``index`` (appending by default)."""

    _require_step(config, item.step_id)
    return replace(config, fields=_insert(config.fields, item, index, "field"))


def update_field(config: ModalConfig, field_id: str, **changes: Any) -> ModalConfig:
    if "step_id" in changes:
        _require_step(config, changes["step_id"])
    return replace(config, fields=_change(config.fields, field_id, "field", changes))


def move_field(config: ModalConfig, field_id: str, offset: int) -> ModalConfig:
    """Move a field by ``offset`` places; moves past either end are ignored."""

    return replace(config, fields=_move(config.fields, field_id, offset, "field"))


def _rewrite_conditions(
    conditions: Tuple[Condition, ...], old_id: str, new_id: Optional[str]
) -> Tuple[Condition, ...]:
    """Point conditions at ``new_id``, or drop them when ``new_id`` is ``None``."""

    rewritten = []
    for condition in conditions:
        if condition.target_field_id != old_id:
            rewritten.append(condition)
        elif new_id is not None:
            rewritten.append(replace(condition, target_field_id=new_id))
    return tuple(rewritten)


def _rewrite_mappings(mappings: Any, old_id: str, new_id: Optional[str]) -> Any:
    def _rewrite_entry(entry: Mapping[str, Any]) -> Dict[str, Any]:
        if "fieldId" in entry:
            if entry.get("fieldId") != old_id:
                return dict(entry)
            return {**entry, "fieldId": new_id} if new_id is not None else {}
        result: Dict[str, Any] = {}
        for key, value in entry.items():
            if key != old_id:
                result[key] = value
            elif new_id is not None:
                result[new_id] = value
        return result

    if isinstance(mappings, Mapping):
        return _rewrite_entry(mappings)
    return tuple(entry for entry in (_rewrite_entry(item) for item in mappings) if entry)


def _rewrite_resolution(resolution: Any, old_id: str, new_id: Optional[str]) -> Any:
    if isinstance(resolution, ByField) and resolution.field_id == old_id:
        return ByField(new_id) if new_id is not None else None
    return resolution


def _rewrite_field_references(config: ModalConfig, old_id: str, new_id: Optional[str]) -> ModalConfig:
    fields = tuple(
        replace(item, conditions=_rewrite_conditions(item.conditions, old_id, new_id))
        for item in config.fields
    )
    operations = tuple(
        replace(
            operation,
            conditions=_rewrite_conditions(operation.conditions, old_id, new_id),
            field_mappings=_rewrite_mappings(operation.field_mappings, old_id, new_id),
            id_resolution=_rewrite_resolution(operation.id_resolution, old_id, new_id),
        )
        for operation in config.entity_operations
    )
    status_updates = tuple(
        replace(update, id_resolution=_rewrite_resolution(update.id_resolution, old_id, new_id))
        for update in config.status_updates
    )
    return replace(config, fields=fields, entity_operations=operations, status_updates=status_updates)


def rename_field(config: ModalConfig, old_id: str, new_id: str) -> ModalConfig:
    """Change a field id and every condition, mapping and id lookup using it."""

    if old_id == new_id:
        return config
    if not new_id:
        raise ConfigUpdateError("Field ids cannot be empty.")
    if new_id in config.field_ids():
        raise ConfigUpdateError(f"A field with id '{new_id}' already exists.")
    index = _index_of(config.fields, old_id, "field")
    fields = config.fields[:index] + (replace(config.fields[index], id=new_id),) + config.fields[index + 1 :]
    return _rewrite_field_references(replace(config, fields=fields), old_id, new_id)


def remove_field(config: ModalConfig, field_id: str) -> ModalConfig:
    """Delete a field along with conditions and mappings that point at it."""

    trimmed = replace(config, fields=_drop(config.fields, field_id, "field"))
    return _rewrite_field_references(trimmed, field_id, None)


def add_condition(config: ModalConfig, field_id: str, condition: Condition) -> ModalConfig:
    index = _index_of(config.fields, field_id, "field")
    conditions = _insert(config.fields[index].conditions, condition, None, "condition")
    return update_field(config, field_id, conditions=conditions)


def update_condition(config: ModalConfig, field_id: str, condition_id: str, **changes: Any) -> ModalConfig:
    index = _index_of(config.fields, field_id, "field")
    conditions = _change(config.fields[index].conditions, condition_id, "condition", changes)
    return update_field(config, field_id, conditions=conditions)


def remove_condition(config: ModalConfig, field_id: str, condition_id: str) -> ModalConfig:
    index = _index_of(config.fields, field_id, "field")
    conditions = _drop(config.fields[index].conditions, condition_id, "condition")
    return update_field(config, field_id, conditions=conditions)


def add_step(config: ModalConfig, step: Step, *, index: Optional[int] = None) -> ModalConfig:
    return replace(config, steps=_insert(config.steps, step, index, "step"))


def update_step(config: ModalConfig, step_id: str, **changes: Any) -> ModalConfig:
    return replace(config, steps=_change(config.steps, step_id, "step", changes))


def move_step(config: ModalConfig, step_id: str, offset: int) -> ModalConfig:
    return replace(config, steps=_move(config.steps, step_id, offset, "step"))


def remove_step(config: ModalConfig, step_id: str) -> ModalConfig:
    """Delete a step and unassign the fields that belonged to it."""

    steps = _drop(config.steps, step_id, "step")
    fields = tuple(
        replace(item, step_id=None) if item.step_id == step_id else item for item in config.fields
    )
    return replace(config, steps=steps, fields=fields)


def assign_field_to_step(config: ModalConfig, field_id: str, step_id: Optional[str]) -> ModalConfig:
    """Assign a field to a step, or unassign it with ``None``."""

    return update_field(config, field_id, step_id=step_id)


def add_operation(config: ModalConfig, operation: EntityOperation) -> ModalConfig:
    return replace(config, entity_operations=_insert(config.entity_operations, operation, None, "operation"))


def update_operation(config: ModalConfig, operation_id: str, **changes: Any) -> ModalConfig:
    return replace(
        config,
        entity_operations=_change(config.entity_operations, operation_id, "operation", changes),
    )


def remove_operation(config: ModalConfig, operation_id: str) -> ModalConfig:
    return replace(config, entity_operations=_drop(config.entity_operations, operation_id, "operation"))


def add_webhook(config: ModalConfig, webhook: Webhook) -> ModalConfig:
    return replace(config, webhooks=_insert(config.webhooks, webhook, None, "webhook"))


def update_webhook(config: ModalConfig, webhook_id: str, **changes: Any) -> ModalConfig:
    return replace(config, webhooks=_change(config.webhooks, webhook_id, "webhook", changes))


def remove_webhook(config: ModalConfig, webhook_id: str) -> ModalConfig:
    return replace(config, webhooks=_drop(config.webhooks, webhook_id, "webhook"))


def add_email(config: ModalConfig, email: EmailNotification) -> ModalConfig:
    return replace(
        config,
        email_notifications=_insert(config.email_notifications, email, None, "email notification"),
    )


def update_email(config: ModalConfig, email_id: str, **changes: Any) -> ModalConfig:
    return replace(
        config,
        email_notifications=_change(config.email_notifications, email_id, "email notification", changes),
    )


def remove_email(config: ModalConfig, email_id: str) -> ModalConfig:
    return replace(
        config, email_notifications=_drop(config.email_notifications, email_id, "email notification")
    )


def add_status_update(config: ModalConfig, update: StatusUpdate) -> ModalConfig:
    return replace(config, status_updates=_insert(config.status_updates, update, None, "status update"))


def update_status_update(config: ModalConfig, update_id: str, **changes: Any) -> ModalConfig:
    return replace(
        config, status_updates=_change(config.status_updates, update_id, "status update", changes)
    )


def remove_status_update(config: ModalConfig, update_id: str) -> ModalConfig:
    return replace(config, status_updates=_drop(config.status_updates, update_id, "status update"))


def _model(value: Any, model: Any) -> Any:
    """Accept either a model instance or its persisted mapping."""

    if isinstance(value, model):
        return value
    if isinstance(value, Mapping):
        return model.from_dict(value)
    raise ConfigUpdateError(f"Expected a {model.__name__} or mapping, got {type(value).__name__}.")


def _changes(action: Mapping[str, Any]) -> Dict[str, Any]:
    changes = action.get("changes", {})
    if not isinstance(changes, Mapping):
        raise ConfigUpdateError("Action 'changes' must be a mapping of attribute names.")
    return dict(changes)


_ACTIONS: Dict[str, Callable[[ModalConfig, Mapping[str, Any]], ModalConfig]] = {
    "set_basic_info": lambda c, a: set_basic_info(c, name=a.get("name"), description=a.get("description")),
    "add_field": lambda c, a: add_field(c, _model(a["field"], Field), index=a.get("index")),
    "update_field": lambda c, a: update_field(c, a["field_id"], **_changes(a)),
    "rename_field": lambda c, a: rename_field(c, a["field_id"], a["new_id"]),
    "move_field": lambda c, a: move_field(c, a["field_id"], int(a.get("offset", 0))),
    "remove_field": lambda c, a: remove_field(c, a["field_id"]),
    "add_condition": lambda c, a: add_condition(c, a["field_id"], _model(a["condition"], Condition)),
    "update_condition": lambda c, a: update_condition(c, a["field_id"], a["condition_id"], **_changes(a)),
    "remove_condition": lambda c, a: remove_condition(c, a["field_id"], a["condition_id"]),
    "add_step": lambda c, a: add_step(c, _model(a["step"], Step), index=a.get("index")),
    "update_step": lambda c, a: update_step(c, a["step_id"], **_changes(a)),
    "move_step": lambda c, a: move_step(c, a["step_id"], int(a.get("offset", 0))),
    "remove_step": lambda c, a: remove_step(c, a["step_id"]),
    "assign_field_to_step": lambda c, a: assign_field_to_step(c, a["field_id"], a.get("step_id")),
    "add_operation": lambda c, a: add_operation(c, _model(a["operation"], EntityOperation)),
    "update_operation": lambda c, a: update_operation(c, a["operation_id"], **_changes(a)),
    "remove_operation": lambda c, a: remove_operation(c, a["operation_id"]),
    "add_webhook": lambda c, a: add_webhook(c, _model(a["webhook"], Webhook)),
    "update_webhook": lambda c, a: update_webhook(c, a["webhook_id"], **_changes(a)),
    "remove_webhook": lambda c, a: remove_webhook(c, a["webhook_id"]),
    "add_email": lambda c, a: add_email(c, _model(a["email"], EmailNotification)),
    "update_email": lambda c, a: update_email(c, a["email_id"], **_changes(a)),
    "remove_email": lambda c, a: remove_email(c, a["email_id"]),
    "add_status_update": lambda c, a: add_status_update(c, _model(a["status_update"], StatusUpdate)),
    "update_status_update": lambda c, a: update_status_update(c, a["status_update_id"], **_changes(a)),
    "remove_status_update": lambda c, a: remove_status_update(c, a["status_update_id"]),
}


def apply_action(config: ModalConfig, action: Mapping[str, Any]) -> ModalConfig:
    """Apply an action mapping such as ``{"type": "remove_field", "field_id": "f1"}``."""

    action_type = action.get("type")
    handler = _ACTIONS.get(action_type) if isinstance(action_type, str) else None
    if handler is None:
        raise ConfigUpdateError(f"Unknown action type: {action_type!r}")
    try:
        updated = handler(config, action)
    except KeyError as exc:
        raise ConfigUpdateError(f"Action '{action_type}' is missing {exc}.") from exc
    except TypeError as exc:
        raise ConfigUpdateError(f"Action '{action_type}' has invalid changes: {exc}") from exc
    logger.debug("Applied %s to modal config %r", action_type, config.name)
    return updated


@dataclass(frozen=True)
class ConfigHistory:
    """Undo/redo stack of config snapshots."""

    present: ModalConfig
    past: Tuple[ModalConfig, ...] = ()
    future: Tuple[ModalConfig, ...] = ()
    limit: int = HISTORY_LIMIT

    @property
    def can_undo(self) -> bool:
        return bool(self.past)

    @property
    def can_redo(self) -> bool:
        return bool(self.future)

    def push(self, config: ModalConfig) -> "ConfigHistory":
        """Record ``config`` as the new present, discarding redo entries."""

        if config == self.present:
            return self
        past = (self.past + (self.present,))[-self.limit :]
        return replace(self, present=config, past=past, future=())

    def apply(self, action: Mapping[str, Any]) -> "ConfigHistory":
        return self.push(apply_action(self.present, action))

    def undo(self) -> "ConfigHistory":
        if not self.past:
            return self
        return replace(
            self, present=self.past[-1], past=self.past[:-1], future=(self.present,) + self.future
        )

    def redo(self) -> "ConfigHistory":
        if not self.future:
            return self
        return replace(
            self, present=self.future[0], past=self.past + (self.present,), future=self.future[1:]
        )


