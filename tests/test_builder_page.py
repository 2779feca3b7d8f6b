"""Tests for helpers on the modal builder page."""

from __future__ import annotations

import importlib.util
from datetime import date
from pathlib import Path
import sys

import pytest
import streamlit as st

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from modal_builder.config_updates import ConfigHistory  # noqa: E402
from modal_builder.models import ByContext, ByField, ConditionValue, FieldOption, ModalConfig, ValidationRules  # noqa: E402

MODULE_PATH = REPO_ROOT / "pages" / "01_Modal_Builder.py"
SPEC = importlib.util.spec_from_file_location("builder_module", MODULE_PATH)
if SPEC is None or SPEC.loader is None:  # pragma: no cover - defensive
    raise RuntimeError("Could not load builder module for testing.")
BUILDER = importlib.util.module_from_spec(SPEC)
SPEC.loader.exec_module(BUILDER)


def _clear_session_state() -> None:
    """Remove all keys from Streamlit's session state."""

    for key in list(st.session_state.keys()):
        del st.session_state[key]


@pytest.mark.parametrize(
    "raw, operator, expected",
    [
        ("anything", "is_empty", None),
        ("3", "greater_than", ConditionValue("number", 3)),
        (" 2.5 ", "less_than", ConditionValue("number", 2.5)),
        ("TRUE", "equals", ConditionValue("bool", True)),
        ("yes please", "equals", ConditionValue("string", "yes please")),
        ("", "equals", ConditionValue("string", "")),
    ],
)
def test_parse_condition_value(raw, operator, expected) -> None:
    assert BUILDER.parse_condition_value(raw, operator) == expected


def test_options_text_keeps_existing_ids() -> None:
    existing = (FieldOption(id="keep", label="Yes", value="yes"), FieldOption(id="drop", label="No", value="no"))

    text = BUILDER.options_to_text(existing + (FieldOption(id="same", label="Maybe", value="Maybe"),))
    assert text == "Yes | yes\nNo | no\nMaybe"

    parsed = BUILDER.parse_options("Yes | yes\n\nLater | later\n", existing)
    assert [(option.label, option.value) for option in parsed] == [("Yes", "yes"), ("Later", "later")]
    assert parsed[0].id == "keep"
    assert parsed[1].id.startswith("opt_")


def test_mappings_text_round_trip() -> None:
    mappings = [{"f1": "name"}, {"fieldId": "f2", "attribute": "age"}]

    text = BUILDER.mappings_to_text(mappings)

    assert text == "f1 = name\nf2 = age"
    assert BUILDER.parse_mappings(text + "\nno separator\n = orphan") == {"f1": "name", "f2": "age"}


def test_parse_json_text() -> None:
    assert BUILDER.parse_json_text("") == (None, None)
    assert BUILDER.parse_json_text('{"a": 1}') == ({"a": 1}, None)
    assert BUILDER.parse_json_text("[1]", expected=(dict, list)) == ([1], None)

    value, error = BUILDER.parse_json_text("[1]")
    assert value is None
    assert error == "Expected a JSON object."

    value, error = BUILDER.parse_json_text("{oops")
    assert value is None
    assert error.startswith("Invalid JSON:")


def test_build_resolution() -> None:
    assert BUILDER.build_resolution("field", "f1") == ByField("f1")
    assert BUILDER.build_resolution("context", " record.id ") == ByContext("record.id")
    assert BUILDER.build_resolution("none", "ignored") is None


def test_build_rules_only_keeps_rules_for_the_field_type() -> None:
    inputs = {
        "min_length": 2,
        "max_length": None,
        "pattern": "^a",
        "min": 1,
        "max": 5,
        "min_date": date(2024, 1, 1),
        "error_message": "Nope",
    }

    assert BUILDER.build_rules("text", inputs) == ValidationRules(min_length=2, pattern="^a", error_message="Nope")
    assert BUILDER.build_rules("number", inputs) == ValidationRules(min=1.0, max=5.0, error_message="Nope")
    assert BUILDER.build_rules("date", inputs) == ValidationRules(min_date="2024-01-01", error_message="Nope")
    assert BUILDER.build_rules("checkbox", inputs) is None
    assert BUILDER.build_rules("checkbox", {"required": False}) == ValidationRules(required=False)


def test_commit_keeps_history_unchanged_on_error(monkeypatch) -> None:
    _clear_session_state()
    messages = []
    monkeypatch.setattr(BUILDER.st, "error", messages.append)
    history = ConfigHistory(ModalConfig(name="Demo"))

    assert BUILDER.commit("demo", history, {"type": "set_basic_info", "name": "Renamed"}) is True
    assert st.session_state[BUILDER.HISTORY_STATE_KEY]["demo"].present.name == "Renamed"

    stored = st.session_state[BUILDER.HISTORY_STATE_KEY]["demo"]
    failed = BUILDER.commit(
        "demo",
        stored,
        {"type": "set_basic_info", "name": "Half"},
        {"type": "remove_field", "field_id": "ghost"},
    )

    assert failed is False
    assert st.session_state[BUILDER.HISTORY_STATE_KEY]["demo"] is stored
    assert messages == ["Unknown field 'ghost'."]
