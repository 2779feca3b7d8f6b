"""Tests for the home screen summary table."""

from __future__ import annotations

from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import Home  # noqa: E402
from modal_builder.models import ModalConfig  # noqa: E402

INTAKE = {
    "title": "Intake",
    "description": "Collect info",
    "fields": [{"id": "f1", "type": "text", "label": "Name"}],
    "entityOperations": [{"id": "op1", "type": "create", "entity": "Proposal", "fieldMappings": {"f1": "name"}}],
}


def test_summary_rows_report_status() -> None:
    configs = {
        "intake": ModalConfig.from_dict(INTAKE),
        "draft": ModalConfig(name="", description="d"),
        "almost": ModalConfig.from_dict(dict(INTAKE, description="")),
    }

    rows = {row["Config key"]: row for row in Home.config_summary_rows(configs)}

    assert rows["intake"] == {
        "Config key": "intake",
        "Name": "Intake",
        "Fields": 1,
        "Steps": 0,
        "Operations": 1,
        "Status": "Ready",
    }
    assert rows["draft"]["Name"] == "—"
    assert rows["draft"]["Status"] == "3 issues"
    assert rows["almost"]["Status"] == "1 issue"


def test_summary_rows_cover_table_columns() -> None:
    rows = Home.config_summary_rows({"intake": ModalConfig.from_dict(INTAKE)})

    assert tuple(rows[0]) == Home.TABLE_COLUMNS
