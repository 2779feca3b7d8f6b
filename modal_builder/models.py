"""Data model for modal configurations and their persisted JSON document."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

FIELD_TYPES: Tuple[str, ...] = (
    "text",
    "textarea",
    "number",
    "date",
    "select",
    "checkbox",
    "file",
    "richtext",
)
ARRAY_FIELD_TYPE = "array"
MAPPING_TYPES: Tuple[str, ...] = ("none", "entity", "custom_json")
OPERATION_TYPES: Tuple[str, ...] = ("create", "update")
CONDITION_LOGIC_OPTIONS: Tuple[str, ...] = ("and", "or")
WEBHOOK_METHODS: Tuple[str, ...] = ("POST", "PUT", "PATCH")
ID_RESOLUTION_METHODS: Tuple[str, ...] = ("field", "context")


class ConfigFormatError(ValueError):
    """Raised when a persisted modal configuration cannot be parsed."""


def _ensure_mapping(value: Any) -> Dict[str, Any]:
    """Return ``value`` as a dict if it is a mapping, otherwise an empty dict."""

    return dict(value) if isinstance(value, Mapping) else {}


def _ensure_list(value: Any) -> List[Any]:
    """Return ``value`` as a list if it is a list or tuple, otherwise an empty list."""

    return list(value) if isinstance(value, (list, tuple)) else []


def _text(value: Any) -> str:
    """Return ``value`` as a string without altering surrounding whitespace."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _optional_text(value: Any) -> Optional[str]:
    """Return ``value`` as a string, keeping ``None`` as ``None``."""

    return None if value is None else _text(value)


def _parse_items(raw: Any, parser: Any, kind: str) -> Tuple[Any, ...]:
    """Parse every mapping in ``raw`` with ``parser``, skipping malformed entries."""

    items = []
    for entry in _ensure_list(raw):
        if not isinstance(entry, Mapping):
            logger.warning("Skipping malformed %s entry: %r", kind, entry)
            continue
        items.append(parser(entry))
    return tuple(items)


def _extras(data: Mapping[str, Any], known: Iterable[str]) -> Dict[str, Any]:
    """Return keys of ``data`` that the model does not map to attributes."""

    known_keys = set(known)
    return {key: value for key, value in data.items() if key not in known_keys}


@dataclass(frozen=True)
class ConditionValue:
    """Tagged comparison operand of a condition."""

    kind: str
    value: Union[str, int, float, bool]

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["ConditionValue"]:
        """Build a tagged value from a JSON primitive."""

        if raw is None:
            return None
        if isinstance(raw, bool):
            return cls("bool", raw)
        if isinstance(raw, (int, float)):
            return cls("number", raw)
        if not isinstance(raw, str):
            logger.warning("Condition value %r is not a primitive; storing as text.", raw)
        return cls("string", _text(raw))

    def as_text(self) -> str:
        """Return the operand coerced to text the way the browser runtime does."""

        return to_display_text(self.value)

    def as_number(self) -> Optional[float]:
        """Return the operand as a number, or ``None`` if it is not numeric."""

        return to_number(self.value)


def to_display_text(value: Any) -> str:
    """Coerce ``value`` to text with browser-compatible formatting.

    Booleans render as ``true``/``false``, integral floats drop the fractional
    part and lists join their items with commas. Missing values render as an
    empty string.
    """

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_display_text(item) for item in value)
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float when it is a number or numeric text."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if number != number:  # NaN
            return None
        return number
    return None


@dataclass(frozen=True)
class Condition:
    """A single comparison against another field's current value."""

    id: str
    target_field_id: str
    operator: str = "equals"
    value: Optional[ConditionValue] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        target = data.get("targetFieldId")
        if target is None:
            target = data.get("field")
        return cls(
            id=_text(data.get("id")),
            target_field_id=_text(target),
            operator=_text(data.get("operator") or "equals"),
            value=ConditionValue.from_raw(data.get("value")),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "targetFieldId": self.target_field_id,
            "operator": self.operator,
        }
        if self.value is not None:
            payload["value"] = self.value.value
        return payload


@dataclass(frozen=True)
class ByField:
    """Record id taken from the submitted value of a form field."""

    field_id: str

    method = "field"


@dataclass(frozen=True)
class ByContext:
    """Record id taken from a dotted path into the modal's launch context."""

    context_path: str

    method = "context"


IdResolution = Union[ByField, ByContext]


def id_resolution_from_dict(data: Any) -> Optional[IdResolution]:
    """Parse an ``idResolution`` object into its tagged variant."""

    if not isinstance(data, Mapping):
        return None
    method = data.get("method")
    if method is None:
        if data.get("fieldId"):
            method = "field"
        elif data.get("contextPath"):
            method = "context"
    if method == "field":
        return ByField(_text(data.get("fieldId")))
    if method == "context":
        return ByContext(_text(data.get("contextPath")))
    logger.warning("Ignoring idResolution with unknown method %r.", method)
    return None


def id_resolution_to_dict(resolution: Optional[IdResolution]) -> Optional[Dict[str, Any]]:
    """Serialise an id resolution variant."""

    if isinstance(resolution, ByField):
        return {"method": "field", "fieldId": resolution.field_id}
    if isinstance(resolution, ByContext):
        return {"method": "context", "contextPath": resolution.context_path}
    return None


def id_resolution_is_complete(resolution: Optional[IdResolution]) -> bool:
    """Return ``True`` if the variant names a field or a context path."""

    if isinstance(resolution, ByField):
        return bool(resolution.field_id.strip())
    if isinstance(resolution, ByContext):
        return bool(resolution.context_path.strip())
    return False


@dataclass(frozen=True)
class FieldOption:
    id: str
    label: str
    value: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldOption":
        label = _text(data.get("label"))
        value = data.get("value")
        return cls(
            id=_text(data.get("id")),
            label=label,
            value=label if value is None else _text(value),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "value": self.value}


_VALIDATION_KEYS = {
    "required": "required",
    "minLength": "min_length",
    "maxLength": "max_length",
    "pattern": "pattern",
    "min": "min",
    "max": "max",
    "minDate": "min_date",
    "maxDate": "max_date",
    "errorMessage": "error_message",
}


@dataclass(frozen=True)
class ValidationRules:
    """Type-specific input rules attached to a field."""

    required: Optional[bool] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ValidationRules":
        values = {
            attribute: data.get(key)
            for key, attribute in _VALIDATION_KEYS.items()
            if data.get(key) not in (None, "")
        }
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key, attribute in _VALIDATION_KEYS.items():
            value = getattr(self, attribute)
            if value is not None:
                payload[key] = value
        return payload

    def has_rules(self) -> bool:
        """Return ``True`` if any rule besides the error message is set."""

        return any(
            getattr(self, attribute) is not None
            for attribute in _VALIDATION_KEYS.values()
            if attribute != "error_message"
        )


@dataclass(frozen=True)
class RagConfig:
    """Ingestion settings for file fields."""

    enabled: bool = False
    extract_data: bool = False
    target_schema: Any = None
    auto_ingest: bool = False
    ingestion_mode: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RagConfig":
        return cls(
            enabled=bool(data.get("enabled")),
            extract_data=bool(data.get("extractData")),
            target_schema=data.get("targetSchema"),
            auto_ingest=bool(data.get("autoIngest")),
            ingestion_mode=_text(data.get("ingestionMode")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "extractData": self.extract_data,
            "targetSchema": self.target_schema,
            "autoIngest": self.auto_ingest,
            "ingestionMode": self.ingestion_mode,
        }


@dataclass(frozen=True)
class FieldTemplate:
    """Extraction template bound to a file field."""

    id: str = ""
    name: str = ""
    extraction_enabled: bool = False
    extraction_fields_description: str = ""
    default_operations: Tuple["EntityOperation", ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldTemplate":
        return cls(
            id=_text(data.get("id")),
            name=_text(data.get("name")),
            extraction_enabled=bool(data.get("extraction_enabled")),
            extraction_fields_description=_text(data.get("extraction_fields_description")),
            default_operations=_parse_items(
                data.get("default_operations"), EntityOperation.from_dict, "template operation"
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "extraction_enabled": self.extraction_enabled,
            "extraction_fields_description": self.extraction_fields_description,
            "default_operations": [operation.to_dict() for operation in self.default_operations],
        }

    def has_complete_extraction(self) -> bool:
        return self.extraction_enabled and bool(self.extraction_fields_description.strip())


_FIELD_KEYS = (
    "id",
    "type",
    "label",
    "placeholder",
    "helpText",
    "required",
    "options",
    "conditions",
    "validation",
    "mappingType",
    "targetEntity",
    "targetAttribute",
    "customJsonPath",
    "stepId",
    "ragConfig",
    "arrayConfig",
    "template",
)


@dataclass(frozen=True)
class Field:
    """A single input of a modal configuration."""

    id: str
    type: str = "text"
    label: str = ""
    placeholder: str = ""
    help_text: str = ""
    required: bool = False
    options: Tuple[FieldOption, ...] = ()
    conditions: Tuple[Condition, ...] = ()
    validation: Optional[ValidationRules] = None
    mapping_type: str = "none"
    target_entity: str = ""
    target_attribute: str = ""
    custom_json_path: str = ""
    step_id: Optional[str] = None
    rag_config: Optional[RagConfig] = None
    array_config: Optional[Dict[str, Any]] = None
    template: Optional[FieldTemplate] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Field":
        validation = data.get("validation")
        rag_config = data.get("ragConfig")
        array_config = data.get("arrayConfig")
        template = data.get("template")
        return cls(
            id=_text(data.get("id")),
            type=_text(data.get("type") or "text"),
            label=_text(data.get("label")),
            placeholder=_text(data.get("placeholder")),
            help_text=_text(data.get("helpText")),
            required=bool(data.get("required")),
            options=_parse_items(data.get("options"), FieldOption.from_dict, "option"),
            conditions=_parse_items(data.get("conditions"), Condition.from_dict, "condition"),
            validation=ValidationRules.from_dict(validation) if isinstance(validation, Mapping) else None,
            mapping_type=_text(data.get("mappingType") or "none"),
            target_entity=_text(data.get("targetEntity")),
            target_attribute=_text(data.get("targetAttribute")),
            custom_json_path=_text(data.get("customJsonPath")),
            step_id=_optional_text(data.get("stepId")) or None,
            rag_config=RagConfig.from_dict(rag_config) if isinstance(rag_config, Mapping) else None,
            array_config=dict(array_config) if isinstance(array_config, Mapping) else None,
            template=FieldTemplate.from_dict(template) if isinstance(template, Mapping) else None,
            extras=_extras(data, _FIELD_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extras)
        payload.update(
            {
                "id": self.id,
                "type": self.type,
                "label": self.label,
                "placeholder": self.placeholder,
                "required": self.required,
                "helpText": self.help_text,
            }
        )
        if self.options:
            payload["options"] = [option.to_dict() for option in self.options]
        if self.conditions:
            payload["conditions"] = [condition.to_dict() for condition in self.conditions]
        if self.validation is not None:
            payload["validation"] = self.validation.to_dict()
        if self.mapping_type != "none":
            payload["mappingType"] = self.mapping_type
        if self.target_entity:
            payload["targetEntity"] = self.target_entity
        if self.target_attribute:
            payload["targetAttribute"] = self.target_attribute
        if self.custom_json_path:
            payload["customJsonPath"] = self.custom_json_path
        if self.step_id is not None:
            payload["stepId"] = self.step_id
        if self.rag_config is not None:
            payload["ragConfig"] = self.rag_config.to_dict()
        if self.array_config is not None:
            payload["arrayConfig"] = dict(self.array_config)
        if self.template is not None:
            payload["template"] = self.template.to_dict()
        return payload


@dataclass(frozen=True)
class Step:
    id: str
    title: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Step":
        return cls(
            id=_text(data.get("id")),
            title=_text(data.get("title")),
            description=_text(data.get("description")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "description": self.description}


def _freeze_mappings(raw: Any) -> Union[Dict[str, Any], Tuple[Dict[str, Any], ...]]:
    """Normalise ``fieldMappings`` into a dict or a tuple of dicts."""

    if isinstance(raw, Mapping):
        return dict(raw)
    return tuple(dict(item) for item in _ensure_list(raw) if isinstance(item, Mapping))


def iter_field_mappings(mappings: Any) -> List[Tuple[str, str]]:
    """Return ``(field_id, attribute)`` pairs from any supported mapping layout.

    Both ``{"f1": "name"}`` and ``{"fieldId": "f1", "attribute": "name"}``
    entries are understood, either on their own or inside a list.
    """

    entries = [mappings] if isinstance(mappings, Mapping) else _ensure_list(mappings)
    pairs: List[Tuple[str, str]] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        if "fieldId" in entry:
            attribute = entry.get("attribute", entry.get("targetAttribute"))
            pairs.append((_text(entry.get("fieldId")), _text(attribute)))
            continue
        for field_id, attribute in entry.items():
            pairs.append((_text(field_id), _text(attribute)))
    return pairs


_OPERATION_KEYS = (
    "id",
    "type",
    "entity",
    "fieldMappings",
    "fieldMapping",
    "conditions",
    "conditionLogic",
    "idResolution",
)


@dataclass(frozen=True)
class EntityOperation:
    """Submit-time instruction to create or update a backend record."""

    id: str
    type: str = "create"
    entity: str = ""
    field_mappings: Union[Dict[str, Any], Tuple[Dict[str, Any], ...]] = ()
    conditions: Tuple[Condition, ...] = ()
    condition_logic: str = "and"
    id_resolution: Optional[IdResolution] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EntityOperation":
        mappings = data.get("fieldMappings")
        if mappings is None:
            mappings = data.get("fieldMapping")
        return cls(
            id=_text(data.get("id")),
            type=_text(data.get("type")),
            entity=_text(data.get("entity")),
            field_mappings=_freeze_mappings(mappings),
            conditions=_parse_items(data.get("conditions"), Condition.from_dict, "condition"),
            condition_logic=_text(data.get("conditionLogic") or "and").lower(),
            id_resolution=id_resolution_from_dict(data.get("idResolution")),
            extras=_extras(data, _OPERATION_KEYS),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extras)
        if isinstance(self.field_mappings, Mapping):
            mappings: Any = dict(self.field_mappings)
        else:
            mappings = [dict(item) for item in self.field_mappings]
        payload.update(
            {
                "id": self.id,
                "type": self.type,
                "entity": self.entity,
                "fieldMappings": mappings,
                "conditions": [condition.to_dict() for condition in self.conditions],
                "conditionLogic": self.condition_logic,
            }
        )
        resolution = id_resolution_to_dict(self.id_resolution)
        if resolution is not None:
            payload["idResolution"] = resolution
        return payload

    def mapping_pairs(self) -> List[Tuple[str, str]]:
        return iter_field_mappings(self.field_mappings)


@dataclass(frozen=True)
class Webhook:
    id: str
    url: str = ""
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    include_form_data: bool = True
    include_context: bool = False
    custom_payload: Any = None
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Webhook":
        headers = _ensure_mapping(data.get("headers"))
        return cls(
            id=_text(data.get("id")),
            url=_text(data.get("url")),
            method=_text(data.get("method") or "POST").upper(),
            headers={_text(key): _text(value) for key, value in headers.items()},
            include_form_data=bool(data.get("includeFormData", True)),
            include_context=bool(data.get("includeContext")),
            custom_payload=data.get("customPayload"),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "includeFormData": self.include_form_data,
            "includeContext": self.include_context,
            "customPayload": self.custom_payload,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class EmailNotification:
    id: str
    to: str = ""
    from_name: str = ""
    subject: str = ""
    body: str = ""
    include_form_data: bool = False
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EmailNotification":
        return cls(
            id=_text(data.get("id")),
            to=_text(data.get("to")),
            from_name=_text(data.get("fromName")),
            subject=_text(data.get("subject")),
            body=_text(data.get("body")),
            include_form_data=bool(data.get("includeFormData")),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "to": self.to,
            "fromName": self.from_name,
            "subject": self.subject,
            "body": self.body,
            "includeFormData": self.include_form_data,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class StatusUpdate:
    id: str
    entity: str = ""
    target_field: str = ""
    new_value: str = ""
    id_resolution: Optional[IdResolution] = None
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StatusUpdate":
        return cls(
            id=_text(data.get("id")),
            entity=_text(data.get("entity")),
            target_field=_text(data.get("targetField")),
            new_value=_text(data.get("newValue")),
            id_resolution=id_resolution_from_dict(data.get("idResolution")),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "entity": self.entity,
            "targetField": self.target_field,
            "newValue": self.new_value,
            "enabled": self.enabled,
        }
        resolution = id_resolution_to_dict(self.id_resolution)
        if resolution is not None:
            payload["idResolution"] = resolution
        return payload


_CONFIG_KEYS = (
    "title",
    "name",
    "description",
    "fields",
    "steps",
    "entityOperations",
    "webhooks",
    "emailNotifications",
    "statusUpdates",
)


@dataclass(frozen=True)
class ModalConfig:
    """Root aggregate describing a dynamic form and its submit-time effects."""

    name: str = ""
    description: str = ""
    fields: Tuple[Field, ...] = ()
    steps: Tuple[Step, ...] = ()
    entity_operations: Tuple[EntityOperation, ...] = ()
    webhooks: Tuple[Webhook, ...] = ()
    email_notifications: Tuple[EmailNotification, ...] = ()
    status_updates: Tuple[StatusUpdate, ...] = ()
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ModalConfig":
        """Build a config from its persisted document.

        ``title`` holds the config name; ``name`` is accepted when ``title`` is
        absent. Keys the model does not know are kept in ``extras`` so they
        survive a save.
        """

        if not isinstance(data, Mapping):
            raise ConfigFormatError("Modal configuration must be a JSON object.")
        name = data.get("title")
        if name is None:
            name = data.get("name")
        return cls(
            name=_text(name),
            description=_text(data.get("description")),
            fields=_parse_items(data.get("fields"), Field.from_dict, "field"),
            steps=_parse_items(data.get("steps"), Step.from_dict, "step"),
            entity_operations=_parse_items(
                data.get("entityOperations"), EntityOperation.from_dict, "entity operation"
            ),
            webhooks=_parse_items(data.get("webhooks"), Webhook.from_dict, "webhook"),
            email_notifications=_parse_items(
                data.get("emailNotifications"), EmailNotification.from_dict, "email notification"
            ),
            status_updates=_parse_items(data.get("statusUpdates"), StatusUpdate.from_dict, "status update"),
            extras=_extras(data, _CONFIG_KEYS),
        )

    @classmethod
    def from_json(cls, raw: str) -> "ModalConfig":
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigFormatError(f"Modal configuration is not valid JSON: {exc.msg}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extras)
        payload.update(
            {
                "title": self.name,
                "description": self.description,
                "fields": [item.to_dict() for item in self.fields],
                "steps": [item.to_dict() for item in self.steps],
                "entityOperations": [item.to_dict() for item in self.entity_operations],
                "webhooks": [item.to_dict() for item in self.webhooks],
                "emailNotifications": [item.to_dict() for item in self.email_notifications],
                "statusUpdates": [item.to_dict() for item in self.status_updates],
            }
        )
        return payload

    def to_json(self, *, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def field_by_id(self, field_id: str) -> Optional[Field]:
        """Return the field identified by ``field_id`` if present."""

        return next((item for item in self.fields if item.id == field_id), None)

    def field_ids(self) -> List[str]:
        return [item.id for item in self.fields]

    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]


def coerce_config(config: Union[ModalConfig, Mapping[str, Any]]) -> ModalConfig:
    """Return ``config`` as a :class:`ModalConfig`, parsing raw documents."""

    if isinstance(config, ModalConfig):
        return config
    return ModalConfig.from_dict(config)
