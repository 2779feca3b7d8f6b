"""Library helpers for the modal configuration builder."""

from .conditions import (  # noqa: F401
    UnknownOperatorPolicy,
    evaluate_condition,
    evaluate_conditions,
    evaluate_operation_conditions,
)
from .models import ConfigFormatError, ModalConfig  # noqa: F401
from .validation import ValidationResult, validate_config  # noqa: F401
from .visibility import visible_fields  # noqa: F401
