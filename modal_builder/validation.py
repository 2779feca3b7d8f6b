"""Validation of modal configurations for the builder's status panel.

The validator is advisory: it never raises and never performs I/O. Each
section reports its own issues; only the basic information, fields and
operations sections decide whether a configuration may be saved.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from modal_builder.conditions import condition_problems
from modal_builder.models import (
    ARRAY_FIELD_TYPE,
    CONDITION_LOGIC_OPTIONS,
    FIELD_TYPES,
    OPERATION_TYPES,
    WEBHOOK_METHODS,
    EntityOperation,
    Field,
    ModalConfig,
    coerce_config,
    id_resolution_is_complete,
)

logger = logging.getLogger(__name__)

BASIC_INFO = "basic_info"
FIELDS = "fields"
STEPS = "steps"
OPERATIONS = "operations"
WEBHOOKS = "webhooks"
EMAILS = "emails"
STATUS_UPDATES = "status_updates"

CRITICAL_SECTIONS = (BASIC_INFO, FIELDS, OPERATIONS)
SECTION_ORDER = (BASIC_INFO, FIELDS, STEPS, OPERATIONS, WEBHOOKS, EMAILS, STATUS_UPDATES)
SECTION_LABELS: Dict[str, str] = {
    BASIC_INFO: "Basic information",
    FIELDS: "Fields",
    STEPS: "Steps",
    OPERATIONS: "Entity operations",
    WEBHOOKS: "Webhooks",
    EMAILS: "Email notifications",
    STATUS_UPDATES: "Status updates",
}
_DOCUMENT_KEYS: Dict[str, str] = {
    BASIC_INFO: "basicInfo",
    FIELDS: "fields",
    STEPS: "steps",
    OPERATIONS: "operations",
    WEBHOOKS: "webhooks",
    EMAILS: "emails",
    STATUS_UPDATES: "statusUpdates",
}


@dataclass
class FieldValidation:
    """Issues found on a single field."""

    field_id: str
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    exempt: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldId": self.field_id,
            "isValid": self.is_valid,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "exempt": self.exempt,
        }


@dataclass
class SectionResult:
    """Outcome for one section of the builder."""

    is_valid: bool
    issues: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"isValid": self.is_valid, "issues": list(self.issues)}
        payload.update(self.details)
        return payload


@dataclass
class ValidationResult:
    is_valid: bool
    critical_issues: bool
    total_issues: int
    sections: Dict[str, SectionResult]
    field_results: Dict[str, FieldValidation] = field(default_factory=dict)
    field_order: List[FieldValidation] = field(default_factory=list)

    def field_result_at(self, index: int) -> Optional[FieldValidation]:
        """Return the result for the field at ``index`` in the config's field order."""

        if 0 <= index < len(self.field_order):
            return self.field_order[index]
        return None

    def section(self, name: str) -> SectionResult:
        return self.sections[name]

    def issues_by_section(self) -> Dict[str, List[str]]:
        return {name: list(result.issues) for name, result in self.sections.items() if result.issues}

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase document consumed by the builder UI."""

        return {
            "isValid": self.is_valid,
            "criticalIssues": self.critical_issues,
            "totalIssues": self.total_issues,
            "sections": {
                _DOCUMENT_KEYS[name]: result.to_dict() for name, result in self.sections.items()
            },
        }


def _display_name(item: Field) -> str:
    label = item.label.strip()
    return label or item.id or "Untitled field"


def _is_extraction_exempt(item: Field) -> bool:
    """File fields driven by a complete extraction template skip field checks."""

    return (
        item.type == "file"
        and item.rag_config is not None
        and item.rag_config.enabled
        and item.template is not None
        and item.template.has_complete_extraction()
    )


def validate_field(item: Field, known_fields: List[str], duplicate_ids: Set[str]) -> FieldValidation:
    """Return the issues and advisory warnings for one field."""

    result = FieldValidation(field_id=item.id)
    if _is_extraction_exempt(item):
        result.exempt = True
        return result

    if not item.id:
        result.issues.append("Field is missing an id.")
    elif item.id in duplicate_ids:
        result.issues.append(f"Field id '{item.id}' is used more than once.")
    if not item.label.strip():
        result.issues.append("Label is required.")
    if item.type not in FIELD_TYPES and item.type != ARRAY_FIELD_TYPE:
        result.issues.append(f"Unsupported field type '{item.type}'.")
    if item.type == "select" and not item.options:
        result.issues.append("Dropdown must have at least one option.")
    if item.type == ARRAY_FIELD_TYPE and not (item.array_config or {}).get("itemType"):
        result.issues.append("Array fields must define an item type.")

    if item.mapping_type == "entity":
        if not item.target_entity.strip() or not item.target_attribute.strip():
            result.issues.append("Entity mapping needs a target entity and attribute.")
    elif item.mapping_type == "custom_json":
        if not item.custom_json_path.strip():
            result.issues.append("Custom JSON mapping needs a JSON path.")
    elif item.mapping_type != "none":
        result.issues.append(f"Unsupported mapping type '{item.mapping_type}'.")

    if item.validation is not None and item.validation.pattern:
        try:
            re.compile(str(item.validation.pattern))
        except re.error:
            result.issues.append("Validation pattern is not a valid regular expression.")

    for condition in item.conditions:
        result.issues.extend(condition_problems(condition, known_fields))

    if item.required:
        rule = item.validation.required if item.validation is not None else None
        if rule is None:
            result.warnings.append("Field is required but has no explicit required validation rule.")
        elif rule is False:
            result.warnings.append(
                "Field is marked required but its validation rules set required to false."
            )
    return result


def _validate_basic_info(config: ModalConfig) -> SectionResult:
    issues = []
    if not config.name.strip():
        issues.append("Modal name is required.")
    if not config.description.strip():
        issues.append("Modal description is required.")
    return SectionResult(is_valid=not issues, issues=issues)


def _validate_fields(
    config: ModalConfig,
) -> Tuple[SectionResult, Dict[str, FieldValidation], List[FieldValidation]]:
    known_fields = config.field_ids()
    counts = Counter(known_fields)
    duplicate_ids = {field_id for field_id, count in counts.items() if field_id and count > 1}

    field_results: Dict[str, FieldValidation] = {}
    field_order: List[FieldValidation] = []
    issues: List[str] = []
    warnings: List[str] = []
    if not config.fields:
        issues.append("Add at least one field.")
    for position, item in enumerate(config.fields, start=1):
        outcome = validate_field(item, known_fields, duplicate_ids)
        field_order.append(outcome)
        key = item.id or f"#{position}"
        if key in field_results:
            key = f"{key}#{position}"
        field_results[key] = outcome
        name = _display_name(item)
        issues.extend(f"{name}: {issue}" for issue in outcome.issues)
        warnings.extend(f"{name}: {warning}" for warning in outcome.warnings)

    section = SectionResult(
        is_valid=bool(config.fields) and not issues,
        issues=issues,
        details={"fieldCount": len(config.fields), "warnings": warnings},
    )
    return section, field_results, field_order


def _validate_steps(config: ModalConfig) -> SectionResult:
    if not config.steps:
        return SectionResult(is_valid=True, details={"stepCount": 0})

    step_ids = set(config.step_ids())
    issues: List[str] = []
    unassigned: List[str] = []
    for item in config.fields:
        if item.step_id is None:
            unassigned.append(item.id)
            issues.append(f"Field '{_display_name(item)}' is not assigned to a step.")
        elif item.step_id not in step_ids:
            unassigned.append(item.id)
            issues.append(
                f"Field '{_display_name(item)}' is assigned to missing step '{item.step_id}'."
            )

    populated = {item.step_id for item in config.fields if item.step_id}
    empty_steps: List[str] = []
    for position, step in enumerate(config.steps, start=1):
        title = step.title.strip() or f"Step {position}"
        if not step.title.strip():
            issues.append(f"{title} needs a title.")
        if step.id not in populated:
            empty_steps.append(step.id)
            issues.append(f"{title} has no fields.")

    return SectionResult(
        is_valid=not issues,
        issues=issues,
        details={
            "stepCount": len(config.steps),
            "unassignedFields": unassigned,
            "emptySteps": empty_steps,
        },
    )


def _operation_issues(operation: EntityOperation) -> List[str]:
    issues = []
    if not operation.entity.strip():
        issues.append("choose a target entity")
    if not operation.type:
        issues.append("choose an operation type")
    if not operation.mapping_pairs():
        issues.append("map at least one field")
    if operation.type == "update" and not id_resolution_is_complete(operation.id_resolution):
        issues.append("update operations need a record id from a field or a context path")
    return issues


def _operation_warnings(operation: EntityOperation, known_fields: List[str]) -> List[str]:
    warnings = []
    if operation.type and operation.type not in OPERATION_TYPES:
        warnings.append(f"unsupported operation type '{operation.type}'")
    for field_id, attribute in operation.mapping_pairs():
        if field_id not in known_fields:
            warnings.append(f"maps unknown field '{field_id}'")
        elif not attribute.strip():
            warnings.append(f"field '{field_id}' has no target attribute")
    if operation.condition_logic not in CONDITION_LOGIC_OPTIONS:
        warnings.append(f"unsupported condition logic '{operation.condition_logic}'")
    for condition in operation.conditions:
        warnings.extend(problem.rstrip(".") for problem in condition_problems(condition, known_fields))
    return warnings


def _has_template_operations(config: ModalConfig) -> bool:
    return any(
        item.type == "file" and item.template is not None and item.template.default_operations
        for item in config.fields
    )


def _validate_operations(config: ModalConfig) -> SectionResult:
    known_fields = config.field_ids()
    issues: List[str] = []
    warnings: List[str] = []
    if not config.entity_operations and not _has_template_operations(config):
        issues.append("Add at least one entity operation.")
    for position, operation in enumerate(config.entity_operations, start=1):
        label = operation.entity.strip() or f"#{position}"
        prefix = f"Operation {position} ({label})"
        issues.extend(f"{prefix}: {issue}." for issue in _operation_issues(operation))
        warnings.extend(f"{prefix}: {warning}." for warning in _operation_warnings(operation, known_fields))
    return SectionResult(
        is_valid=not issues,
        issues=issues,
        details={"operationCount": len(config.entity_operations), "warnings": warnings},
    )


def _validate_webhooks(config: ModalConfig) -> SectionResult:
    issues = []
    for position, webhook in enumerate(config.webhooks, start=1):
        if not webhook.enabled:
            continue
        if not webhook.url.strip():
            issues.append(f"Webhook {position} needs a URL.")
        if webhook.method not in WEBHOOK_METHODS:
            issues.append(f"Webhook {position} uses unsupported method '{webhook.method}'.")
    return SectionResult(is_valid=not issues, issues=issues)


def _validate_emails(config: ModalConfig) -> SectionResult:
    issues = []
    for position, email in enumerate(config.email_notifications, start=1):
        if not email.enabled:
            continue
        missing = [
            label
            for label, value in (("recipient", email.to), ("subject", email.subject), ("body", email.body))
            if not value.strip()
        ]
        if missing:
            issues.append(f"Email {position} is missing: {', '.join(missing)}.")
    return SectionResult(is_valid=not issues, issues=issues)


def _validate_status_updates(config: ModalConfig) -> SectionResult:
    issues = []
    for position, update in enumerate(config.status_updates, start=1):
        if not update.enabled:
            continue
        missing = [
            label
            for label, value in (
                ("entity", update.entity),
                ("target field", update.target_field),
                ("new value", update.new_value),
            )
            if not value.strip()
        ]
        if missing:
            issues.append(f"Status update {position} is missing: {', '.join(missing)}.")
    return SectionResult(is_valid=not issues, issues=issues)


def validate_config(config: Union[ModalConfig, Mapping[str, Any]]) -> ValidationResult:
    """Validate ``config`` and summarise the result per builder section."""

    config = coerce_config(config)
    fields_section, field_results, field_order = _validate_fields(config)
    sections = {
        BASIC_INFO: _validate_basic_info(config),
        FIELDS: fields_section,
        STEPS: _validate_steps(config),
        OPERATIONS: _validate_operations(config),
        WEBHOOKS: _validate_webhooks(config),
        EMAILS: _validate_emails(config),
        STATUS_UPDATES: _validate_status_updates(config),
    }
    is_valid = all(sections[name].is_valid for name in CRITICAL_SECTIONS)
    total_issues = sum(len(result.issues) for result in sections.values())
    logger.debug("Validated modal config %r: valid=%s issues=%d", config.name, is_valid, total_issues)
    return ValidationResult(
        is_valid=is_valid,
        critical_issues=not is_valid,
        total_issues=total_issues,
        sections=sections,
        field_results=field_results,
        field_order=field_order,
    )
