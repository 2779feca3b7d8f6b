"""Builder page for editing modal configurations."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import requests
import streamlit as st

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from Home import BUILDER_HISTORY_STATE_KEY as HISTORY_STATE_KEY
from Home import NEW_CONFIG_STATE_KEY, SELECTED_CONFIG_STATE_KEY, load_configs
from modal_builder.conditions import OPERATOR_LABELS, VALUELESS_OPERATORS
from modal_builder.config_store import (
    config_key_for,
    resolve_remote_config_path,
    save_local_config,
)
from modal_builder.config_updates import ConfigHistory, ConfigUpdateError
from modal_builder.defaults import (
    FIELD_TYPE_LABELS,
    UNSELECTED_LABEL,
    new_config,
    new_email,
    new_field,
    new_id,
    new_operation,
    new_status_update,
    new_step,
    new_webhook,
)
from modal_builder.github_backend import GitHubBackend, PublishConflictError
from modal_builder.models import (
    ARRAY_FIELD_TYPE,
    CONDITION_LOGIC_OPTIONS,
    FIELD_TYPES,
    ID_RESOLUTION_METHODS,
    MAPPING_TYPES,
    OPERATION_TYPES,
    WEBHOOK_METHODS,
    ByContext,
    ByField,
    Condition,
    ConditionValue,
    Field,
    FieldOption,
    FieldTemplate,
    IdResolution,
    ModalConfig,
    RagConfig,
    ValidationRules,
    iter_field_mappings,
    to_number,
)
from modal_builder.settings import github_settings
from modal_builder.ui_theme import apply_app_theme, badge_markup, page_header, render_issue_list
from modal_builder.validation import SECTION_LABELS, SECTION_ORDER, ValidationResult, validate_config

logger = logging.getLogger(__name__)

SHA_STATE_KEY = "builder_config_sha"
SOURCES_STATE_KEY = "builder_config_sources"
ACTIVE_FIELD_STATE_KEY = "builder_active_field"
RESOLUTION_METHODS = ("none",) + ID_RESOLUTION_METHODS


@contextmanager
def section_card(
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Any:
    """Render a bordered container with optional title and description."""

    container = st.container(border=True)
    if title:
        container.markdown(f"### {title}")
    if description:
        container.caption(description)
    yield container


def _rerun_app() -> None:
    """Trigger a Streamlit rerun using the available API."""

    if hasattr(st, "rerun"):
        st.rerun()
    elif hasattr(st, "experimental_rerun"):
        st.experimental_rerun()


def parse_condition_value(raw: str, operator: str) -> Optional[ConditionValue]:
    """Turn the text typed in the condition builder into a tagged value.

    Valueless operators store nothing; numeric text becomes a number so that
    comparisons against number fields behave like the live form.
    """

    if operator in VALUELESS_OPERATORS:
        return None
    text = raw.strip()
    if text.lower() in ("true", "false"):
        return ConditionValue("bool", text.lower() == "true")
    number = to_number(text) if text else None
    if number is not None:
        return ConditionValue("number", int(number) if number.is_integer() else number)
    return ConditionValue("string", raw)


def options_to_text(options: Sequence[FieldOption]) -> str:
    lines = []
    for option in options:
        if option.label == option.value:
            lines.append(option.label)
        else:
            lines.append(f"{option.label} | {option.value}")
    return "\n".join(lines)


def parse_options(raw: str, existing: Sequence[FieldOption] = ()) -> Tuple[FieldOption, ...]:
    """Parse ``label | value`` lines, keeping ids of options whose value is unchanged."""

    known = {option.value: option.id for option in existing}
    options: List[FieldOption] = []
    for line in raw.splitlines():
        if not line.strip():
            continue
        label, _, value = line.partition("|")
        label = label.strip()
        value = value.strip() or label
        options.append(FieldOption(id=known.get(value) or new_id("opt"), label=label, value=value))
    return tuple(options)


def mappings_to_text(mappings: Any) -> str:
    return "\n".join(f"{field_id} = {attribute}" for field_id, attribute in iter_field_mappings(mappings))


def parse_mappings(raw: str) -> Dict[str, str]:
    """Parse ``field_id = attribute`` lines into a field mapping dict."""

    mappings: Dict[str, str] = {}
    for line in raw.splitlines():
        field_id, separator, attribute = line.partition("=")
        if not separator or not field_id.strip():
            continue
        mappings[field_id.strip()] = attribute.strip()
    return mappings


_JSON_KIND_NAMES = {dict: "object", list: "array"}


def parse_json_text(raw: str, *, expected: Any = dict) -> Tuple[Any, Optional[str]]:
    """Return ``(value, error)`` for JSON typed into a text area; blank means ``None``."""

    if not raw.strip():
        return None, None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        return None, f"Invalid JSON: {exc.msg} (line {exc.lineno})."
    if not isinstance(value, expected):
        kinds = expected if isinstance(expected, tuple) else (expected,)
        names = " or ".join(_JSON_KIND_NAMES.get(kind, kind.__name__) for kind in kinds)
        return None, f"Expected a JSON {names}."
    return value, None


def build_resolution(method: str, value: str) -> Optional[IdResolution]:
    if method == "field":
        return ByField(value)
    if method == "context":
        return ByContext(value.strip())
    return None


def _resolution_parts(resolution: Optional[IdResolution]) -> Tuple[str, str]:
    if isinstance(resolution, ByField):
        return "field", resolution.field_id
    if isinstance(resolution, ByContext):
        return "context", resolution.context_path
    return "none", ""


def _parse_iso_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def build_rules(field_type: str, inputs: Mapping[str, Any]) -> Optional[ValidationRules]:
    """Collect the rule inputs that apply to ``field_type``; ``None`` if all are blank."""

    values: Dict[str, Any] = {}
    if field_type in ("text", "textarea", "richtext"):
        for key in ("min_length", "max_length"):
            if inputs.get(key) is not None:
                values[key] = int(inputs[key])
        if inputs.get("pattern"):
            values["pattern"] = str(inputs["pattern"])
    elif field_type == "number":
        for key in ("min", "max"):
            if inputs.get(key) is not None:
                values[key] = float(inputs[key])
    elif field_type == "date":
        for key in ("min_date", "max_date"):
            chosen = inputs.get(key)
            if isinstance(chosen, date):
                values[key] = chosen.isoformat()
    if inputs.get("required") is not None:
        values["required"] = bool(inputs["required"])
    if inputs.get("error_message"):
        values["error_message"] = str(inputs["error_message"])
    rules = ValidationRules(**values)
    return rules if rules.has_rules() else None


def get_backend(config_key: str) -> Optional[GitHubBackend]:
    """Instantiate a GitHub backend for ``config_key`` if configuration is available."""

    settings = github_settings()
    if settings is None:
        return None
    return GitHubBackend(
        token=settings["token"],
        repo=settings["repo"],
        path=resolve_remote_config_path(settings["path"], config_key),
        branch=settings["branch"],
        api_url=settings["api_url"],
    )


def _histories() -> Dict[str, ConfigHistory]:
    histories = st.session_state.get(HISTORY_STATE_KEY)
    if not isinstance(histories, dict):
        histories = {}
        st.session_state[HISTORY_STATE_KEY] = histories
    return histories


def _sha_state() -> Dict[str, Optional[str]]:
    sha_state = st.session_state.get(SHA_STATE_KEY)
    if not isinstance(sha_state, dict):
        sha_state = {}
        st.session_state[SHA_STATE_KEY] = sha_state
    return sha_state


def get_history(config_key: str, configs: Mapping[str, ModalConfig]) -> ConfigHistory:
    """Return the edit history for ``config_key``, loading it on first use."""

    histories = _histories()
    if config_key not in histories:
        histories[config_key] = ConfigHistory(configs.get(config_key) or new_config())
        backend = get_backend(config_key)
        if backend is not None:
            try:
                _sha_state()[config_key] = backend.get_file_sha()
            except requests.RequestException as exc:
                st.error(f"Could not load modal metadata from GitHub for '{config_key}': {exc}")
                _sha_state()[config_key] = None
    return histories[config_key]


def commit(config_key: str, history: ConfigHistory, *actions: Mapping[str, Any]) -> bool:
    """Apply ``actions`` in order and store the result; nothing is kept if one fails."""

    updated = history
    try:
        for action in actions:
            updated = updated.apply(action)
    except ConfigUpdateError as exc:
        st.error(str(exc))
        return False
    _histories()[config_key] = updated
    return True


def _commit_and_rerun(config_key: str, history: ConfigHistory, *actions: Mapping[str, Any]) -> None:
    if commit(config_key, history, *actions):
        _rerun_app()


def render_basic_info(config_key: str, history: ConfigHistory) -> None:
    config = history.present
    with section_card("Basic information", "Name the modal and describe what it collects.") as card:
        form = card.form(f"basic_info_{config_key}")
        name = form.text_input("Modal name", value=config.name)
        description = form.text_area("Description", value=config.description)
        if form.form_submit_button("Save basic information"):
            _commit_and_rerun(
                config_key,
                history,
                {"type": "set_basic_info", "name": name, "description": description},
            )


def render_field_overview(
    config_key: str, history: ConfigHistory, result: ValidationResult, *, active_id: Optional[str]
) -> None:
    """Show fields in order with their status and inline actions."""

    fields = history.present.fields
    with section_card("Fields", "Reorder fields and open one to edit its settings.") as card:
        if not fields:
            card.info("Fields will appear here once added.")
            return

        for index, item in enumerate(fields):
            field_result = result.field_result_at(index)
            ok = field_result is None or field_result.is_valid
            is_active = item.id == active_id
            with card.container():
                cols = st.columns([0.5, 3.5, 1.5, 1.2, 1.0, 1.2, 1.2])
                cols[0].markdown(f"**{index + 1}**")
                label_text = f"**{item.label or 'Untitled field'}**\n\n`{item.id}`"
                if is_active:
                    label_text = f":blue[{label_text}]"
                cols[1].markdown(label_text)
                cols[2].write(FIELD_TYPE_LABELS.get(item.type, item.type))
                cols[3].markdown(
                    badge_markup("OK" if ok else "Issues", ok), unsafe_allow_html=True
                )
                if cols[4].button("▲", key=f"field_up_{index}_{item.id}", disabled=index == 0, help="Move up"):
                    _commit_and_rerun(config_key, history, {"type": "move_field", "field_id": item.id, "offset": -1})
                if cols[4].button(
                    "▼", key=f"field_down_{index}_{item.id}", disabled=index == len(fields) - 1, help="Move down"
                ):
                    _commit_and_rerun(config_key, history, {"type": "move_field", "field_id": item.id, "offset": 1})
                if cols[5].button(
                    "Edit", key=f"field_edit_{index}_{item.id}", type="primary" if is_active else "secondary"
                ):
                    st.session_state[ACTIVE_FIELD_STATE_KEY] = item.id
                    _rerun_app()
                if cols[6].button("Remove", key=f"field_remove_{index}_{item.id}"):
                    _commit_and_rerun(config_key, history, {"type": "remove_field", "field_id": item.id})
                if field_result is not None:
                    render_issue_list(field_result.issues + field_result.warnings)


def _render_rule_inputs(form: Any, item: Field) -> Dict[str, Any]:
    rules = item.validation or ValidationRules()
    inputs: Dict[str, Any] = {"required": rules.required}
    if item.type in ("text", "textarea", "richtext"):
        col_min, col_max = form.columns(2)
        inputs["min_length"] = col_min.number_input(
            "Minimum length", min_value=0, step=1, value=rules.min_length
        )
        inputs["max_length"] = col_max.number_input(
            "Maximum length", min_value=0, step=1, value=rules.max_length
        )
        inputs["pattern"] = form.text_input(
            "Pattern", value=rules.pattern or "", help="Regular expression the answer must match."
        )
    elif item.type == "number":
        col_min, col_max = form.columns(2)
        inputs["min"] = col_min.number_input("Minimum", value=rules.min)
        inputs["max"] = col_max.number_input("Maximum", value=rules.max)
    elif item.type == "date":
        col_min, col_max = form.columns(2)
        inputs["min_date"] = col_min.date_input("Earliest date", value=_parse_iso_date(rules.min_date))
        inputs["max_date"] = col_max.date_input("Latest date", value=_parse_iso_date(rules.max_date))
    inputs["error_message"] = form.text_input(
        "Custom error message", value=rules.error_message or "", help="Replaces the default message."
    )
    return inputs


ARRAY_ITEM_TYPES = ("text", "number", "date", "checkbox")


def _render_type_inputs(form: Any, item: Field) -> Dict[str, Any]:
    """Render settings specific to file and array fields and return the field changes."""

    if item.type == "file":
        rag = item.rag_config or RagConfig()
        template = item.template or FieldTemplate()
        form.markdown("**Document handling**")
        col_rag, col_extract = form.columns(2)
        rag_enabled = col_rag.checkbox("Ingest for retrieval", value=rag.enabled)
        extract_data = col_extract.checkbox("Extract data", value=rag.extract_data)
        extraction_enabled = form.checkbox("Use an extraction template", value=template.extraction_enabled)
        description = form.text_area(
            "Fields to extract",
            value=template.extraction_fields_description,
            help="A complete extraction template makes the label optional.",
        )
        changes: Dict[str, Any] = {}
        if item.rag_config is not None or rag_enabled or extract_data:
            changes["rag_config"] = replace(rag, enabled=rag_enabled, extract_data=extract_data)
        if item.template is not None or extraction_enabled:
            changes["template"] = replace(
                template,
                extraction_enabled=extraction_enabled,
                extraction_fields_description=description.strip(),
            )
        return changes
    if item.type == ARRAY_FIELD_TYPE:
        array_config = dict(item.array_config or {})
        current = array_config.get("itemType")
        item_type = form.selectbox(
            "Item type",
            options=list(ARRAY_ITEM_TYPES),
            index=ARRAY_ITEM_TYPES.index(current) if current in ARRAY_ITEM_TYPES else 0,
        )
        array_config["itemType"] = item_type
        return {"array_config": array_config}
    return {}


def render_field_editor(config_key: str, history: ConfigHistory, item: Field) -> None:
    """Render the editor form for a single field."""

    config = history.present
    with section_card(f"Edit field: {item.label or item.id}", "Changes apply when you save the form.") as card:
        form = card.form(f"field_form_{item.id}")
        field_id = form.text_input("Field id", value=item.id, help="Referenced by conditions and mappings.")
        col_label, col_type = form.columns([3, 2])
        label = col_label.text_input("Label", value=item.label)
        type_options = list(FIELD_TYPES)
        if item.type == ARRAY_FIELD_TYPE:
            type_options.append(ARRAY_FIELD_TYPE)
        field_type = col_type.selectbox(
            "Type",
            options=type_options,
            index=type_options.index(item.type) if item.type in type_options else 0,
            format_func=lambda value: FIELD_TYPE_LABELS.get(value, value),
        )
        placeholder = form.text_input("Placeholder", value=item.placeholder)
        help_text = form.text_input("Help text", value=item.help_text)
        required = form.checkbox("Required", value=item.required)

        step_options = [""] + config.step_ids()
        step_titles = {step.id: step.title or step.id for step in config.steps}
        step_id = form.selectbox(
            "Step",
            options=step_options,
            index=step_options.index(item.step_id) if item.step_id in step_options else 0,
            format_func=lambda value: step_titles.get(value, UNSELECTED_LABEL),
            disabled=not config.steps,
        )

        options_text = form.text_area(
            "Options",
            value=options_to_text(item.options),
            help="One option per line, written as `label | value`. Only used by dropdowns.",
        )

        mapping_type = form.radio(
            "Mapping",
            options=list(MAPPING_TYPES),
            index=MAPPING_TYPES.index(item.mapping_type) if item.mapping_type in MAPPING_TYPES else 0,
            horizontal=True,
        )
        col_entity, col_attribute, col_path = form.columns(3)
        target_entity = col_entity.text_input("Target entity", value=item.target_entity)
        target_attribute = col_attribute.text_input("Target attribute", value=item.target_attribute)
        custom_json_path = col_path.text_input("Custom JSON path", value=item.custom_json_path)

        form.markdown("**Validation rules**")
        rule_inputs = _render_rule_inputs(form, item)
        type_changes = _render_type_inputs(form, item)

        if form.form_submit_button("Save field", type="primary"):
            rule_inputs["required"] = True if required else None
            changes: Dict[str, Any] = {
                "label": label,
                "type": field_type,
                "placeholder": placeholder,
                "help_text": help_text,
                "required": required,
                "step_id": step_id or None,
                "options": parse_options(options_text, item.options) if field_type == "select" else (),
                "mapping_type": mapping_type,
                "target_entity": target_entity,
                "target_attribute": target_attribute,
                "custom_json_path": custom_json_path,
                "validation": build_rules(field_type, rule_inputs),
            }
            if field_type == item.type:
                changes.update(type_changes)
            new_field_id = field_id.strip()
            actions: List[Dict[str, Any]] = []
            if new_field_id != item.id:
                actions.append({"type": "rename_field", "field_id": item.id, "new_id": new_field_id})
            actions.append({"type": "update_field", "field_id": new_field_id, "changes": changes})
            if commit(config_key, history, *actions):
                st.session_state[ACTIVE_FIELD_STATE_KEY] = new_field_id
                _rerun_app()

    render_conditions_editor(config_key, history, item)


def render_conditions_editor(config_key: str, history: ConfigHistory, item: Field) -> None:
    """List the visibility conditions of ``item`` and allow adding new ones."""

    config = history.present
    labels = {other.id: other.label or other.id for other in config.fields}
    with section_card("Show this field when", "All conditions must match.") as card:
        if not item.conditions:
            card.caption("Always shown.")
        for condition in item.conditions:
            cols = card.columns([4, 1])
            value_text = "" if condition.value is None else f" `{condition.value.as_text()}`"
            cols[0].markdown(
                f"**{labels.get(condition.target_field_id, condition.target_field_id)}** "
                f"{OPERATOR_LABELS.get(condition.operator, condition.operator).lower()}{value_text}"
            )
            if cols[1].button("Remove", key=f"condition_remove_{item.id}_{condition.id}"):
                _commit_and_rerun(
                    config_key,
                    history,
                    {"type": "remove_condition", "field_id": item.id, "condition_id": condition.id},
                )

        targets = [other.id for other in config.fields if other.id != item.id]
        if not targets:
            card.caption("Add another field to build conditions.")
            return
        form = card.form(f"condition_form_{item.id}")
        col_target, col_operator, col_value = form.columns(3)
        target = col_target.selectbox("Field", options=targets, format_func=lambda value: labels.get(value, value))
        operator = col_operator.selectbox(
            "Operator", options=list(OPERATOR_LABELS), format_func=lambda value: OPERATOR_LABELS[value]
        )
        raw_value = col_value.text_input("Value", help="Ignored by the empty checks.")
        if form.form_submit_button("Add condition"):
            condition = Condition(
                id=new_id("cond"),
                target_field_id=target,
                operator=operator,
                value=parse_condition_value(raw_value, operator),
            )
            _commit_and_rerun(
                config_key, history, {"type": "add_condition", "field_id": item.id, "condition": condition}
            )


def render_add_field(config_key: str, history: ConfigHistory) -> None:
    with section_card("Add a field") as card:
        col_type, col_label, col_button = card.columns([2, 3, 1])
        field_type = col_type.selectbox(
            "Type",
            options=list(FIELD_TYPES),
            format_func=lambda value: FIELD_TYPE_LABELS.get(value, value),
            key=f"add_field_type_{config_key}",
        )
        label = col_label.text_input("Label", key=f"add_field_label_{config_key}")
        if col_button.button("Add field", type="primary", key=f"add_field_{config_key}"):
            item = new_field(field_type, label.strip())
            if commit(config_key, history, {"type": "add_field", "field": item}):
                st.session_state[ACTIVE_FIELD_STATE_KEY] = item.id
                _rerun_app()


def render_steps_editor(config_key: str, history: ConfigHistory) -> None:
    steps = history.present.steps
    with section_card("Steps", "Split the modal into pages. Leave empty for a single page.") as card:
        for index, step in enumerate(steps):
            form = card.form(f"step_form_{step.id}")
            col_title, col_description = form.columns([2, 3])
            title = col_title.text_input("Title", value=step.title, key=f"step_title_{step.id}")
            description = col_description.text_input(
                "Description", value=step.description, key=f"step_description_{step.id}"
            )
            if form.form_submit_button(f"Save step {index + 1}"):
                _commit_and_rerun(
                    config_key,
                    history,
                    {"type": "update_step", "step_id": step.id, "changes": {"title": title, "description": description}},
                )
            cols = card.columns([1, 1, 1, 5])
            if cols[0].button("▲", key=f"step_up_{step.id}", disabled=index == 0):
                _commit_and_rerun(config_key, history, {"type": "move_step", "step_id": step.id, "offset": -1})
            if cols[1].button("▼", key=f"step_down_{step.id}", disabled=index == len(steps) - 1):
                _commit_and_rerun(config_key, history, {"type": "move_step", "step_id": step.id, "offset": 1})
            if cols[2].button("Remove", key=f"step_remove_{step.id}"):
                _commit_and_rerun(config_key, history, {"type": "remove_step", "step_id": step.id})
        if card.button("Add step", key=f"add_step_{config_key}"):
            _commit_and_rerun(config_key, history, {"type": "add_step", "step": new_step(f"Step {len(steps) + 1}")})


def _resolution_inputs(form: Any, key: str, resolution: Optional[IdResolution]) -> Optional[IdResolution]:
    method, value = _resolution_parts(resolution)
    col_method, col_value = form.columns([1, 2])
    chosen = col_method.selectbox(
        "Record id from",
        options=list(RESOLUTION_METHODS),
        index=RESOLUTION_METHODS.index(method),
        key=f"{key}_resolution_method",
    )
    text = col_value.text_input(
        "Field id or context path", value=value, key=f"{key}_resolution_value"
    )
    return build_resolution(chosen, text)


def render_operations_editor(config_key: str, history: ConfigHistory) -> None:
    operations = history.present.entity_operations
    with section_card("Entity operations", "Records created or updated when the modal is submitted.") as card:
        for operation in operations:
            with card.expander(f"{operation.type or 'operation'} {operation.entity or '(no entity)'}", expanded=False):
                form = st.form(f"operation_form_{operation.id}")
                col_type, col_entity, col_logic = form.columns(3)
                op_type = col_type.selectbox(
                    "Type",
                    options=list(OPERATION_TYPES),
                    index=OPERATION_TYPES.index(operation.type) if operation.type in OPERATION_TYPES else 0,
                )
                entity = col_entity.text_input("Entity", value=operation.entity)
                logic = col_logic.selectbox(
                    "Condition logic",
                    options=list(CONDITION_LOGIC_OPTIONS),
                    index=CONDITION_LOGIC_OPTIONS.index(operation.condition_logic)
                    if operation.condition_logic in CONDITION_LOGIC_OPTIONS
                    else 0,
                )
                mappings_text = form.text_area(
                    "Field mappings",
                    value=mappings_to_text(operation.field_mappings),
                    help="One `field_id = attribute` per line.",
                )
                conditions_text = form.text_area(
                    "Conditions (JSON array)",
                    value=json.dumps([condition.to_dict() for condition in operation.conditions], indent=2)
                    if operation.conditions
                    else "",
                )
                resolution = _resolution_inputs(form, f"operation_{operation.id}", operation.id_resolution)
                if form.form_submit_button("Save operation"):
                    conditions, error = parse_json_text(conditions_text, expected=list)
                    if error:
                        st.error(f"Conditions: {error}")
                    else:
                        changes = {
                            "type": op_type,
                            "entity": entity,
                            "condition_logic": logic,
                            "field_mappings": parse_mappings(mappings_text),
                            "conditions": tuple(
                                Condition.from_dict(item) for item in conditions or [] if isinstance(item, dict)
                            ),
                            "id_resolution": resolution if op_type == "update" else None,
                        }
                        _commit_and_rerun(
                            config_key,
                            history,
                            {"type": "update_operation", "operation_id": operation.id, "changes": changes},
                        )
                if st.button("Remove operation", key=f"operation_remove_{operation.id}"):
                    _commit_and_rerun(config_key, history, {"type": "remove_operation", "operation_id": operation.id})
        if card.button("Add entity operation", key=f"add_operation_{config_key}"):
            _commit_and_rerun(config_key, history, {"type": "add_operation", "operation": new_operation()})


def render_webhooks_editor(config_key: str, history: ConfigHistory) -> None:
    webhooks = history.present.webhooks
    with section_card("Webhooks", "HTTP calls made after submission.") as card:
        for webhook in webhooks:
            with card.expander(webhook.url or "New webhook", expanded=not webhook.url):
                form = st.form(f"webhook_form_{webhook.id}")
                col_url, col_method = form.columns([4, 1])
                url = col_url.text_input("URL", value=webhook.url)
                method = col_method.selectbox(
                    "Method",
                    options=list(WEBHOOK_METHODS),
                    index=WEBHOOK_METHODS.index(webhook.method) if webhook.method in WEBHOOK_METHODS else 0,
                )
                headers_text = form.text_area(
                    "Headers (JSON object)", value=json.dumps(webhook.headers, indent=2) if webhook.headers else ""
                )
                payload_text = form.text_area(
                    "Custom payload (JSON)",
                    value=json.dumps(webhook.custom_payload, indent=2) if webhook.custom_payload is not None else "",
                    help="Leave blank to send the form data. `{{fieldId}}` placeholders are filled in.",
                )
                col_form, col_context, col_enabled = form.columns(3)
                include_form_data = col_form.checkbox("Include form data", value=webhook.include_form_data)
                include_context = col_context.checkbox("Include context", value=webhook.include_context)
                enabled = col_enabled.checkbox("Enabled", value=webhook.enabled)
                if form.form_submit_button("Save webhook"):
                    headers, header_error = parse_json_text(headers_text)
                    payload, payload_error = parse_json_text(payload_text, expected=(dict, list))
                    if header_error or payload_error:
                        st.error(header_error or payload_error)
                    else:
                        changes = {
                            "url": url.strip(),
                            "method": method,
                            "headers": {str(key): str(value) for key, value in (headers or {}).items()},
                            "custom_payload": payload,
                            "include_form_data": include_form_data,
                            "include_context": include_context,
                            "enabled": enabled,
                        }
                        _commit_and_rerun(
                            config_key,
                            history,
                            {"type": "update_webhook", "webhook_id": webhook.id, "changes": changes},
                        )
                if st.button("Remove webhook", key=f"webhook_remove_{webhook.id}"):
                    _commit_and_rerun(config_key, history, {"type": "remove_webhook", "webhook_id": webhook.id})
        if card.button("Add webhook", key=f"add_webhook_{config_key}"):
            _commit_and_rerun(config_key, history, {"type": "add_webhook", "webhook": new_webhook()})


def render_emails_editor(config_key: str, history: ConfigHistory) -> None:
    emails = history.present.email_notifications
    with section_card("Email notifications", "Messages sent after submission.") as card:
        for email in emails:
            with card.expander(email.subject or email.to or "New email", expanded=not email.to):
                form = st.form(f"email_form_{email.id}")
                col_to, col_from = form.columns(2)
                to = col_to.text_input("Recipient", value=email.to)
                from_name = col_from.text_input("From name", value=email.from_name)
                subject = form.text_input("Subject", value=email.subject)
                body = form.text_area("Body", value=email.body, help="`{{fieldId}}` placeholders are filled in.")
                col_data, col_enabled = form.columns(2)
                include_form_data = col_data.checkbox("Append form data", value=email.include_form_data)
                enabled = col_enabled.checkbox("Enabled", value=email.enabled)
                if form.form_submit_button("Save email"):
                    changes = {
                        "to": to.strip(),
                        "from_name": from_name,
                        "subject": subject,
                        "body": body,
                        "include_form_data": include_form_data,
                        "enabled": enabled,
                    }
                    _commit_and_rerun(
                        config_key, history, {"type": "update_email", "email_id": email.id, "changes": changes}
                    )
                if st.button("Remove email", key=f"email_remove_{email.id}"):
                    _commit_and_rerun(config_key, history, {"type": "remove_email", "email_id": email.id})
        if card.button("Add email notification", key=f"add_email_{config_key}"):
            _commit_and_rerun(config_key, history, {"type": "add_email", "email": new_email()})


def render_status_updates_editor(config_key: str, history: ConfigHistory) -> None:
    updates = history.present.status_updates
    with section_card("Status updates", "Attribute changes applied to existing records.") as card:
        for update in updates:
            with card.expander(update.entity or "New status update", expanded=not update.entity):
                form = st.form(f"status_form_{update.id}")
                col_entity, col_field, col_value = form.columns(3)
                entity = col_entity.text_input("Entity", value=update.entity)
                target_field = col_field.text_input("Attribute", value=update.target_field)
                new_value = col_value.text_input("New value", value=update.new_value)
                resolution = _resolution_inputs(form, f"status_{update.id}", update.id_resolution)
                enabled = form.checkbox("Enabled", value=update.enabled)
                if form.form_submit_button("Save status update"):
                    changes = {
                        "entity": entity,
                        "target_field": target_field,
                        "new_value": new_value,
                        "id_resolution": resolution,
                        "enabled": enabled,
                    }
                    _commit_and_rerun(
                        config_key,
                        history,
                        {"type": "update_status_update", "status_update_id": update.id, "changes": changes},
                    )
                if st.button("Remove status update", key=f"status_remove_{update.id}"):
                    _commit_and_rerun(
                        config_key, history, {"type": "remove_status_update", "status_update_id": update.id}
                    )
        if card.button("Add status update", key=f"add_status_{config_key}"):
            _commit_and_rerun(config_key, history, {"type": "add_status_update", "status_update": new_status_update()})


def render_validation_panel(result: ValidationResult) -> None:
    """Summarise the validation result section by section in the sidebar."""

    with st.sidebar:
        st.markdown("### Validation")
        if result.is_valid:
            st.success("Ready to publish.")
        elif result.critical_issues:
            st.error(f"{result.total_issues} issue(s), including blocking ones.")
        else:
            st.warning(f"{result.total_issues} issue(s).")
        for name in SECTION_ORDER:
            section = result.sections[name]
            st.markdown(
                f"{SECTION_LABELS[name]} {badge_markup('OK' if section.is_valid else 'Issues', section.is_valid)}",
                unsafe_allow_html=True,
            )
            render_issue_list(section.issues + list(section.details.get("warnings", [])))


def handle_publish(config_key: str, history: ConfigHistory) -> None:
    """Publish the config to GitHub or save it locally if GitHub is not configured."""

    config = history.present
    result = validate_config(config)
    if not result.is_valid:
        for issues in result.issues_by_section().values():
            for issue in issues:
                st.error(issue)
        return

    sha_state = _sha_state()
    backend = get_backend(config_key)
    if backend is not None:
        try:
            sha_state[config_key] = backend.publish_config(config, expected_sha=sha_state.get(config_key))
        except PublishConflictError as exc:
            st.error(str(exc))
            try:
                sha_state[config_key] = backend.get_file_sha()
            except requests.RequestException:
                logger.warning("Could not refresh the SHA of %s after a conflict", config_key)
            return
        except requests.RequestException as exc:
            st.error(f"Could not publish modal configuration to GitHub: {exc}")
            return
        st.success("Modal configuration published.")
    else:
        try:
            sources = st.session_state.get(SOURCES_STATE_KEY) or {}
            target_path = save_local_config(config_key, config, sources)
        except OSError as exc:
            st.error(f"Could not save modal configuration locally: {exc}")
            return
        sources = dict(sources)
        sources[config_key] = target_path
        st.session_state[SOURCES_STATE_KEY] = sources
        sha_state[config_key] = None
        st.info("GitHub is not configured; modal configuration saved locally instead.")

    st.cache_data.clear()
    load_configs.clear()


def reload_from_remote(config_key: str) -> bool:
    """Replace local edits with the published config, keeping undo available."""

    backend = get_backend(config_key)
    if backend is None:
        return False
    try:
        config, sha = backend.read_config()
    except FileNotFoundError:
        st.warning("This modal has not been published yet.")
        return False
    except (requests.RequestException, ValueError) as exc:
        st.error(f"Could not load modal configuration from GitHub: {exc}")
        return False
    histories = _histories()
    current = histories.get(config_key)
    histories[config_key] = current.push(config) if current is not None else ConfigHistory(config)
    _sha_state()[config_key] = sha
    return True


def _select_config(configs: Mapping[str, ModalConfig]) -> Optional[str]:
    """Pick the config to edit, creating a new one when requested."""

    histories = _histories()
    if st.session_state.pop(NEW_CONFIG_STATE_KEY, False):
        config = new_config()
        config_key = config_key_for(f"{config.name} {new_id('modal')}")
        histories[config_key] = ConfigHistory(config)
        st.session_state[SELECTED_CONFIG_STATE_KEY] = config_key

    keys = list(dict.fromkeys(list(configs) + list(histories)))
    if not keys:
        return None
    selected = st.session_state.get(SELECTED_CONFIG_STATE_KEY)
    if selected not in keys:
        selected = keys[0]
    if len(keys) > 1:
        selected = st.selectbox(
            "Modal configuration",
            options=keys,
            index=keys.index(selected),
            format_func=lambda key: (histories[key].present.name if key in histories else configs[key].name) or key,
        )
    st.session_state[SELECTED_CONFIG_STATE_KEY] = selected
    return selected


def main() -> None:
    """Render the modal builder page."""

    apply_app_theme(page_title="Modal builder", page_icon="🛠️")
    page_header("Modal builder", "Edit fields, steps, and submit-time actions.", icon="🛠️")

    configs, sources, errors = load_configs()
    for config_key, message in errors.items():
        st.warning(f"Skipping invalid modal config '{config_key}': {message}")
    st.session_state.setdefault(SOURCES_STATE_KEY, dict(sources))

    config_key = _select_config(configs)
    if config_key is None:
        st.info("No modal configurations yet.")
        if st.button("Create a modal", type="primary"):
            st.session_state[NEW_CONFIG_STATE_KEY] = True
            _rerun_app()
        return

    history = get_history(config_key, configs)
    config = history.present
    result = validate_config(config)
    render_validation_panel(result)

    col_undo, col_redo, _ = st.columns([1, 1, 6])
    if col_undo.button("Undo", disabled=not history.can_undo):
        _histories()[config_key] = history.undo()
        _rerun_app()
    if col_redo.button("Redo", disabled=not history.can_redo):
        _histories()[config_key] = history.redo()
        _rerun_app()

    render_basic_info(config_key, history)

    field_ids = config.field_ids()
    active_id = st.session_state.get(ACTIVE_FIELD_STATE_KEY)
    if active_id not in field_ids:
        active_id = field_ids[0] if field_ids else None
        st.session_state[ACTIVE_FIELD_STATE_KEY] = active_id

    tab_fields, tab_steps, tab_actions = st.tabs(["Fields", "Steps", "Submit actions"])
    with tab_fields:
        render_field_overview(config_key, history, result, active_id=active_id)
        active = config.field_by_id(active_id) if active_id else None
        if active is not None:
            render_field_editor(config_key, history, active)
        render_add_field(config_key, history)
    with tab_steps:
        render_steps_editor(config_key, history)
    with tab_actions:
        render_operations_editor(config_key, history)
        render_webhooks_editor(config_key, history)
        render_emails_editor(config_key, history)
        render_status_updates_editor(config_key, history)

    with st.expander("View raw configuration"):
        st.json(config.to_dict())

    st.divider()
    with section_card("Save changes", "Publish the configuration for the live form.") as card:
        col_publish, col_reload = card.columns(2)
        if col_publish.button("Publish", type="primary", disabled=not result.is_valid):
            handle_publish(config_key, history)
        if github_settings() is not None and col_reload.button("Reload from GitHub"):
            if reload_from_remote(config_key):
                _rerun_app()
        if not result.is_valid:
            card.caption("Resolve the issues listed in the sidebar before publishing.")


if __name__ == "__main__":
    main()
