"""Checks and side-effect planning for submitted modal forms.

``validate_submission`` applies each visible field's validation rules to the
entered values. ``plan_submission`` turns a valid submission into the entity
writes, webhook calls, emails and status updates the configuration asks for.
Planning is pure; only :func:`dispatch_webhook` talks to the network.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from modal_builder.conditions import (
    DEFAULT_UNKNOWN_OPERATOR_POLICY,
    UnknownOperatorPolicy,
    evaluate_conditions,
    evaluate_operation_conditions,
)
from modal_builder.models import (
    ByContext,
    ByField,
    EntityOperation,
    Field,
    IdResolution,
    ModalConfig,
    ValidationRules,
    to_display_text,
    to_number,
)
from modal_builder.visibility import prune_hidden_values, visible_fields

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")
WEBHOOK_TIMEOUT = 10


def is_unanswered(value: Any) -> bool:
    """Return ``True`` when a required field has not been filled in.

    ``0`` counts as an answer. An empty list or mapping does not.
    """

    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value.strip()) < 10:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def check_field_value(item: Field, value: Any) -> Optional[str]:
    """Return an error message if ``value`` breaks the rules of ``item``."""

    rules = item.validation or ValidationRules()
    label = item.label.strip() or item.id
    required = item.required or rules.required is True

    if is_unanswered(value):
        if required:
            return rules.error_message or f"{label} is required"
        return None

    error: Optional[str] = None
    if item.type == "number":
        number = to_number(value)
        minimum = to_number(rules.min)
        maximum = to_number(rules.max)
        if number is None:
            error = "Enter a valid number"
        elif minimum is not None and number < minimum:
            error = f"Must be at least {to_display_text(rules.min)}"
        elif maximum is not None and number > maximum:
            error = f"Must be at most {to_display_text(rules.max)}"
    elif item.type == "date":
        entered = _parse_date(value)
        earliest = _parse_date(rules.min_date)
        latest = _parse_date(rules.max_date)
        if entered is None:
            error = "Enter a valid date"
        elif earliest is not None and entered < earliest:
            error = f"Must be on or after {earliest.isoformat()}"
        elif latest is not None and entered > latest:
            error = f"Must be on or before {latest.isoformat()}"
    elif isinstance(value, str):
        if rules.min_length is not None and len(value) < int(rules.min_length):
            error = f"Must be at least {rules.min_length} characters"
        elif rules.max_length is not None and len(value) > int(rules.max_length):
            error = f"Must be at most {rules.max_length} characters"
        elif rules.pattern:
            try:
                matched = re.search(str(rules.pattern), value) is not None
            except re.error:
                logger.warning("Field %s has an invalid pattern %r; skipping it.", item.id, rules.pattern)
                matched = True
            if not matched:
                error = "Invalid format"

    if error is not None and rules.error_message:
        return rules.error_message
    return error


def validate_submission(
    config: ModalConfig,
    values: Mapping[str, Any],
    *,
    step_index: Optional[int] = None,
    unknown_operator: UnknownOperatorPolicy = DEFAULT_UNKNOWN_OPERATOR_POLICY,
) -> Dict[str, str]:
    """Return ``{field_id: message}`` for visible fields with invalid values.

    With ``step_index`` only the visible fields of that step are checked, which
    is what the preview does before moving to the next page.
    """

    values = prune_hidden_values(config, values, unknown_operator=unknown_operator)
    if step_index is not None:
        candidates = visible_fields(
            config.fields, config.steps, step_index, values, unknown_operator=unknown_operator
        )
    else:
        # Fields outside every step are never rendered once steps exist.
        step_ids = set(config.step_ids())
        candidates = [
            item
            for item in config.fields
            if (not step_ids or item.step_id in step_ids)
            and evaluate_conditions(item.conditions, values, unknown_operator=unknown_operator)
        ]

    errors: Dict[str, str] = {}
    for item in candidates:
        message = check_field_value(item, values.get(item.id))
        if message:
            errors[item.id] = message
    return errors


def resolve_path(source: Any, path: str) -> Any:
    """Follow a dotted ``path`` through nested mappings and sequences."""

    current = source
    for part in [segment for segment in path.split(".") if segment]:
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, Sequence) and not isinstance(current, str) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _assign_path(target: Dict[str, Any], path: str, value: Any) -> None:
    parts = [segment for segment in path.split(".") if segment]
    if not parts:
        return
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def render_template(text: str, values: Mapping[str, Any], context: Optional[Mapping[str, Any]] = None) -> str:
    """Replace ``{{fieldId}}`` and ``{{context.path}}`` placeholders in ``text``."""

    def _substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key.startswith("context."):
            return to_display_text(resolve_path(context or {}, key[len("context.") :]))
        return to_display_text(values.get(key))

    return PLACEHOLDER_PATTERN.sub(_substitute, text)


def _render_payload(payload: Any, values: Mapping[str, Any], context: Optional[Mapping[str, Any]]) -> Any:
    if isinstance(payload, str):
        return render_template(payload, values, context)
    if isinstance(payload, Mapping):
        return {key: _render_payload(item, values, context) for key, item in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [_render_payload(item, values, context) for item in payload]
    return payload


@dataclass
class MappedValues:
    entities: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    custom_json: Dict[str, Any] = field(default_factory=dict)


def map_field_values(config: ModalConfig, values: Mapping[str, Any]) -> MappedValues:
    """Group submitted values by each field's own mapping settings."""

    mapped = MappedValues()
    for item in config.fields:
        if item.id not in values:
            continue
        value = values[item.id]
        if item.mapping_type == "entity" and item.target_entity and item.target_attribute:
            mapped.entities.setdefault(item.target_entity, {})[item.target_attribute] = value
        elif item.mapping_type == "custom_json" and item.custom_json_path:
            _assign_path(mapped.custom_json, item.custom_json_path, value)
    return mapped


@dataclass
class EntityRequest:
    operation_id: str
    entity: str
    action: str
    data: Dict[str, Any]
    record_id: Optional[str] = None


@dataclass
class WebhookRequest:
    webhook_id: str
    url: str
    method: str
    headers: Dict[str, str]
    body: Any


@dataclass
class EmailRequest:
    email_id: str
    to: str
    from_name: str
    subject: str
    body: str


@dataclass
class StatusRequest:
    status_update_id: str
    entity: str
    record_id: str
    data: Dict[str, Any]


@dataclass
class SubmissionPlan:
    """Everything a submission would do, in execution order."""

    values: Dict[str, Any]
    entity_requests: List[EntityRequest] = field(default_factory=list)
    webhook_requests: List[WebhookRequest] = field(default_factory=list)
    email_requests: List[EmailRequest] = field(default_factory=list)
    status_requests: List[StatusRequest] = field(default_factory=list)
    skipped_operations: List[str] = field(default_factory=list)
    custom_json: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.entity_requests or self.webhook_requests or self.email_requests or self.status_requests
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def resolve_record_id(
    resolution: Optional[IdResolution],
    values: Mapping[str, Any],
    context: Optional[Mapping[str, Any]],
) -> Optional[str]:
    """Return the record id named by ``resolution`` or ``None`` if unavailable."""

    if isinstance(resolution, ByField):
        raw = values.get(resolution.field_id)
    elif isinstance(resolution, ByContext):
        raw = resolve_path(context or {}, resolution.context_path)
    else:
        return None
    text = to_display_text(raw).strip()
    return text or None


def _operations_to_run(config: ModalConfig) -> List[EntityOperation]:
    """Configured operations, or file templates' defaults when none are configured."""

    if config.entity_operations:
        return list(config.entity_operations)
    defaults: List[EntityOperation] = []
    for item in config.fields:
        if item.type == "file" and item.template is not None:
            defaults.extend(item.template.default_operations)
    return defaults


def _form_data_summary(config: ModalConfig, values: Mapping[str, Any]) -> str:
    lines = []
    for item in config.fields:
        if item.id in values:
            lines.append(f"{item.label or item.id}: {to_display_text(values[item.id])}")
    return "\n".join(lines)


def plan_submission(
    config: ModalConfig,
    values: Mapping[str, Any],
    context: Optional[Mapping[str, Any]] = None,
    *,
    unknown_operator: UnknownOperatorPolicy = DEFAULT_UNKNOWN_OPERATOR_POLICY,
) -> SubmissionPlan:
    """Build the list of side effects for a submission of ``values``."""

    submitted = prune_hidden_values(config, values, unknown_operator=unknown_operator)
    mapped = map_field_values(config, submitted)
    plan = SubmissionPlan(values=dict(submitted), custom_json=mapped.custom_json)

    for operation in _operations_to_run(config):
        if not evaluate_operation_conditions(operation, submitted, unknown_operator=unknown_operator):
            plan.skipped_operations.append(operation.id)
            continue
        data = dict(mapped.entities.get(operation.entity, {}))
        for field_id, attribute in operation.mapping_pairs():
            if field_id in submitted and attribute:
                data[attribute] = submitted[field_id]
        record_id = None
        if operation.type == "update":
            record_id = resolve_record_id(operation.id_resolution, submitted, context)
            if record_id is None:
                plan.errors.append(
                    f"Operation {operation.id or operation.entity}: could not resolve the record id to update."
                )
                continue
        plan.entity_requests.append(
            EntityRequest(
                operation_id=operation.id,
                entity=operation.entity,
                action=operation.type,
                data=data,
                record_id=record_id,
            )
        )

    for webhook in config.webhooks:
        if not webhook.enabled or not webhook.url.strip():
            continue
        if webhook.custom_payload not in (None, "", {}):
            body = _render_payload(webhook.custom_payload, submitted, context)
            if isinstance(body, str):
                try:
                    body = json.loads(body)
                except json.JSONDecodeError:
                    logger.debug("Webhook %s payload is not JSON; sending as text.", webhook.id)
        else:
            body = {"modal": config.name}
            if webhook.include_form_data:
                body["formData"] = dict(submitted)
            if webhook.include_context:
                body["context"] = dict(context or {})
        plan.webhook_requests.append(
            WebhookRequest(
                webhook_id=webhook.id,
                url=render_template(webhook.url, submitted, context),
                method=webhook.method,
                headers=dict(webhook.headers),
                body=body,
            )
        )

    for email in config.email_notifications:
        if not email.enabled or not email.to.strip():
            continue
        body = render_template(email.body, submitted, context)
        if email.include_form_data:
            summary = _form_data_summary(config, submitted)
            if summary:
                body = f"{body}\n\n{summary}" if body else summary
        plan.email_requests.append(
            EmailRequest(
                email_id=email.id,
                to=render_template(email.to, submitted, context),
                from_name=email.from_name,
                subject=render_template(email.subject, submitted, context),
                body=body,
            )
        )

    for update in config.status_updates:
        if not update.enabled or not (update.entity and update.target_field):
            continue
        record_id = resolve_record_id(update.id_resolution, submitted, context)
        if record_id is None:
            plan.errors.append(f"Status update {update.id or update.entity}: could not resolve the record id.")
            continue
        plan.status_requests.append(
            StatusRequest(
                status_update_id=update.id,
                entity=update.entity,
                record_id=record_id,
                data={update.target_field: update.new_value},
            )
        )

    logger.debug(
        "Planned submission for %r: %d entity, %d webhook, %d email, %d status request(s)",
        config.name,
        len(plan.entity_requests),
        len(plan.webhook_requests),
        len(plan.email_requests),
        len(plan.status_requests),
    )
    return plan


def dispatch_webhook(
    request: WebhookRequest,
    *,
    session: Optional[requests.Session] = None,
    timeout: int = WEBHOOK_TIMEOUT,
) -> requests.Response:
    """Send a planned webhook and raise ``requests.HTTPError`` on failure."""

    sender = session or requests
    headers = dict(request.headers)
    kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout}
    if isinstance(request.body, (dict, list)):
        kwargs["json"] = request.body
    else:
        kwargs["data"] = to_display_text(request.body).encode("utf-8")
    response = sender.request(request.method, request.url, **kwargs)
    response.raise_for_status()
    logger.info("Webhook %s delivered to %s (%s)", request.webhook_id, request.url, response.status_code)
    return response
