"""Live preview of a modal configuration as respondents would see it."""

from __future__ import annotations

import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import requests
import streamlit as st

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from Home import BUILDER_HISTORY_STATE_KEY, SELECTED_CONFIG_STATE_KEY, load_configs
from modal_builder.conditions import UnknownOperatorPolicy
from modal_builder.defaults import (
    DEFAULT_BACK_LABEL,
    DEFAULT_NEXT_LABEL,
    DEFAULT_SUBMIT_LABEL,
    DEFAULT_SUBMIT_SUCCESS_MESSAGE,
    UNSELECTED_LABEL,
)
from modal_builder.models import Field, ModalConfig
from modal_builder.settings import unknown_operator_policy
from modal_builder.submission import SubmissionPlan, dispatch_webhook, plan_submission, validate_submission
from modal_builder.ui_theme import apply_app_theme, page_header
from modal_builder.visibility import (
    clamp_step_index,
    is_last_step,
    next_step_index,
    prune_hidden_values,
    previous_step_index,
    visible_fields,
)

logger = logging.getLogger(__name__)

PREVIEW_VALUES_STATE_KEY = "preview_values"
PREVIEW_STEP_STATE_KEY = "preview_step"
PREVIEW_ERRORS_STATE_KEY = "preview_errors"
PREVIEW_PLAN_STATE_KEY = "preview_plan"
PREVIEW_CONTEXT_STATE_KEY = "preview_context"


def step_caption(config: ModalConfig, index: int) -> str:
    """Return the progress caption shown above a multi-step form."""

    if not config.steps:
        return ""
    index = clamp_step_index(index, config.steps)
    step = config.steps[index]
    title = step.title or f"Step {index + 1}"
    return f"Step {index + 1} of {len(config.steps)}: {title}"


def answer_from_widget(item: Field, raw: Any) -> Any:
    """Convert a widget value into the answer stored for ``item``; ``None`` means unanswered."""

    if item.type == "select":
        return None if raw in (None, UNSELECTED_LABEL) else raw
    if item.type == "date":
        return raw.isoformat() if isinstance(raw, date) else None
    if item.type == "file":
        if isinstance(raw, str):
            return raw or None
        return getattr(raw, "name", None)
    if item.type == "checkbox":
        return bool(raw)
    return raw


def parse_context(raw: str) -> Dict[str, Any]:
    """Parse the launch context typed in the sidebar; invalid JSON gives an empty context."""

    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        st.sidebar.error("Launch context must be valid JSON.")
        return {}
    if not isinstance(value, dict):
        st.sidebar.error("Launch context must be a JSON object.")
        return {}
    return value


def render_preview_field(item: Field, values: Dict[str, Any], *, prefix: str, error: Optional[str]) -> None:
    """Render the input widget for a visible field and record its answer."""

    widget_key = f"preview_{prefix}_{item.id}"
    label = f"{item.label or item.id}{' *' if item.required else ''}"
    help_text = item.help_text or None
    current = values.get(item.id)

    if item.type == "textarea" or item.type == "richtext":
        raw = st.text_area(label, value=current or "", placeholder=item.placeholder, help=help_text, key=widget_key)
    elif item.type == "number":
        number = current if isinstance(current, (int, float)) and not isinstance(current, bool) else None
        raw = st.number_input(label, value=number, placeholder=item.placeholder or None, help=help_text, key=widget_key)
    elif item.type == "date":
        chosen = None
        if isinstance(current, str):
            try:
                chosen = date.fromisoformat(current[:10])
            except ValueError:
                chosen = None
        raw = st.date_input(label, value=chosen, help=help_text, key=widget_key)
    elif item.type == "select":
        choices = [UNSELECTED_LABEL, *[option.value for option in item.options]]
        labels = {option.value: option.label for option in item.options}
        if not item.options:
            st.warning(f"Field '{item.id}' has no options configured.")
            return
        index = choices.index(current) if current in choices else 0
        raw = st.selectbox(
            label,
            choices,
            index=index,
            format_func=lambda value: labels.get(value, value),
            help=help_text,
            key=widget_key,
        )
    elif item.type == "checkbox":
        raw = st.checkbox(label, value=bool(current), help=help_text, key=widget_key)
    elif item.type == "file":
        raw = st.file_uploader(label, help=help_text, key=widget_key)
        if raw is None and current:
            # Uploads are dropped when the step changes; keep the earlier file name.
            raw = current
            st.caption(f"Previously selected: {current}")
    else:
        raw = st.text_input(label, value=current or "", placeholder=item.placeholder, help=help_text, key=widget_key)

    answer = answer_from_widget(item, raw)
    if answer is None:
        values.pop(item.id, None)
    else:
        values[item.id] = answer
    if error:
        st.error(error)


def render_plan(plan: SubmissionPlan, *, policy: UnknownOperatorPolicy) -> None:
    """Show what a real submission would do and offer to send the webhooks."""

    st.success(DEFAULT_SUBMIT_SUCCESS_MESSAGE)
    for message in plan.errors:
        st.warning(message)
    if plan.is_empty:
        st.info("This submission would not trigger any actions.")
    st.json(plan.to_dict())

    if plan.webhook_requests and st.button("Send webhooks now", key="preview_send_webhooks"):
        for request in plan.webhook_requests:
            try:
                response = dispatch_webhook(request)
            except requests.RequestException as exc:
                st.error(f"Webhook {request.url} failed: {exc}")
                continue
            st.success(f"Webhook {request.url} answered {response.status_code}.")
    st.caption(f"Unknown operators are treated as '{policy.value}'.")


def _active_config(configs: Mapping[str, ModalConfig]) -> Optional[Tuple[str, ModalConfig]]:
    """Return ``(key, config)`` preferring unsaved builder edits over stored files."""

    histories = st.session_state.get(BUILDER_HISTORY_STATE_KEY) or {}
    keys = list(dict.fromkeys(list(histories) + list(configs)))
    if not keys:
        return None
    selected = st.session_state.get(SELECTED_CONFIG_STATE_KEY)
    if selected not in keys:
        selected = keys[0]

    def _lookup(key: str) -> ModalConfig:
        if key in histories:
            return histories[key].present
        return configs[key]

    if len(keys) > 1:
        selected = st.selectbox(
            "Modal configuration",
            options=keys,
            index=keys.index(selected),
            format_func=lambda key: _lookup(key).name or key,
        )
    st.session_state[SELECTED_CONFIG_STATE_KEY] = selected
    return selected, _lookup(selected)


def main() -> None:
    """Render the live preview page."""

    apply_app_theme(page_title="Live preview", page_icon="👀")
    page_header("Live preview", "Fill in the modal exactly as a respondent would.", icon="👀")

    configs, _, _ = load_configs()
    active = _active_config(configs)
    if active is None:
        st.info("No modal configurations yet. Create one in the builder.")
        return
    config_key, config = active
    policy = unknown_operator_policy()

    with st.sidebar:
        st.markdown("### Launch context")
        context_text = st.text_area(
            "Context (JSON)",
            value=st.session_state.get(PREVIEW_CONTEXT_STATE_KEY, ""),
            help="Values available to `{{context.path}}` placeholders and context id lookups.",
        )
        st.session_state[PREVIEW_CONTEXT_STATE_KEY] = context_text
        if st.button("Reset preview"):
            for state_key in (PREVIEW_VALUES_STATE_KEY, PREVIEW_STEP_STATE_KEY, PREVIEW_ERRORS_STATE_KEY, PREVIEW_PLAN_STATE_KEY):
                st.session_state.get(state_key, {}).pop(config_key, None)
    context = parse_context(context_text)

    values_state: Dict[str, Dict[str, Any]] = st.session_state.setdefault(PREVIEW_VALUES_STATE_KEY, {})
    step_state: Dict[str, int] = st.session_state.setdefault(PREVIEW_STEP_STATE_KEY, {})
    errors_state: Dict[str, Dict[str, str]] = st.session_state.setdefault(PREVIEW_ERRORS_STATE_KEY, {})
    plan_state: Dict[str, SubmissionPlan] = st.session_state.setdefault(PREVIEW_PLAN_STATE_KEY, {})

    values = values_state.setdefault(config_key, {})
    step_index = clamp_step_index(step_state.get(config_key, 0), config.steps)
    errors = errors_state.get(config_key, {})

    st.markdown(f"## {config.name or 'Untitled modal'}")
    if config.description:
        st.caption(config.description)
    caption = step_caption(config, step_index)
    if caption:
        st.progress((step_index + 1) / len(config.steps), text=caption)

    shown = visible_fields(config.fields, config.steps, step_index, values, unknown_operator=policy)
    if not shown:
        st.info("No fields to show on this page yet.")
    for item in shown:
        render_preview_field(item, values, prefix=config_key, error=errors.get(item.id))

    values = prune_hidden_values(config, values, unknown_operator=policy)
    values_state[config_key] = values

    col_back, col_forward, _ = st.columns([1, 1, 4])
    if config.steps and step_index > 0 and col_back.button(DEFAULT_BACK_LABEL):
        step_state[config_key] = previous_step_index(step_index, config.steps)
        errors_state[config_key] = {}
        st.rerun()

    if not is_last_step(step_index, config.steps):
        if col_forward.button(DEFAULT_NEXT_LABEL, type="primary"):
            step_errors = validate_submission(config, values, step_index=step_index, unknown_operator=policy)
            errors_state[config_key] = step_errors
            if not step_errors:
                step_state[config_key] = next_step_index(step_index, config.steps)
            st.rerun()
    elif col_forward.button(DEFAULT_SUBMIT_LABEL, type="primary"):
        submit_errors = validate_submission(config, values, unknown_operator=policy)
        errors_state[config_key] = submit_errors
        if submit_errors:
            plan_state.pop(config_key, None)
            logger.info("Preview submission of %r blocked by %d error(s)", config.name, len(submit_errors))
        else:
            plan_state[config_key] = plan_submission(config, values, context, unknown_operator=policy)
        st.rerun()

    if errors and not any(item.id in errors for item in shown):
        st.error("Some answers on other pages need attention.")

    plan = plan_state.get(config_key)
    if plan is not None:
        st.divider()
        render_plan(plan, policy=policy)


if __name__ == "__main__":
    main()
