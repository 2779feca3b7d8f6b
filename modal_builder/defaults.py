"""Default values shared between the builder and the live preview."""

from __future__ import annotations

import uuid
from typing import Dict

from modal_builder.models import (
    EmailNotification,
    EntityOperation,
    Field,
    FieldOption,
    ModalConfig,
    StatusUpdate,
    Step,
    Webhook,
)

DEFAULT_MODAL_NAME = "Untitled modal"
DEFAULT_SUBMIT_LABEL = "Submit"
DEFAULT_NEXT_LABEL = "Next"
DEFAULT_BACK_LABEL = "Back"
DEFAULT_SUBMIT_SUCCESS_MESSAGE = "Submission captured. Review the planned actions below."
UNSELECTED_LABEL = "— Select an option —"

FIELD_TYPE_LABELS: Dict[str, str] = {
    "text": "Short text",
    "textarea": "Long text",
    "number": "Number",
    "date": "Date",
    "select": "Dropdown",
    "checkbox": "Checkbox",
    "file": "File upload",
    "richtext": "Rich text",
}


def new_id(prefix: str) -> str:
    """Return a short random identifier such as ``field_1a2b3c4d``."""

    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def new_field(field_type: str = "text", label: str = "") -> Field:
    """Return a blank field of ``field_type`` ready to be added to a config."""

    options = ()
    if field_type == "select":
        options = (FieldOption(id=new_id("opt"), label="Option 1", value="option_1"),)
    return Field(
        id=new_id("field"),
        type=field_type,
        label=label or FIELD_TYPE_LABELS.get(field_type, "New field"),
        options=options,
    )


def new_step(title: str = "") -> Step:
    return Step(id=new_id("step"), title=title or "New step")


def new_operation(entity: str = "", operation_type: str = "create") -> EntityOperation:
    return EntityOperation(id=new_id("op"), type=operation_type, entity=entity)


def new_webhook() -> Webhook:
    return Webhook(id=new_id("hook"))


def new_email() -> EmailNotification:
    return EmailNotification(id=new_id("email"), subject="New form submission")


def new_status_update() -> StatusUpdate:
    return StatusUpdate(id=new_id("status"))


def new_config(name: str = DEFAULT_MODAL_NAME) -> ModalConfig:
    """Return the starting configuration shown when a new modal is created."""

    return ModalConfig(name=name)
