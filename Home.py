"""Streamlit home screen listing stored modal configurations."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd
import streamlit as st

from modal_builder.config_store import load_local_configs
from modal_builder.models import ModalConfig
from modal_builder.ui_theme import apply_app_theme, page_header
from modal_builder.validation import validate_config

SELECTED_CONFIG_STATE_KEY = "selected_config_key"
NEW_CONFIG_STATE_KEY = "create_new_config"
BUILDER_HISTORY_STATE_KEY = "builder_history"
BUILDER_PAGE = "pages/01_Modal_Builder.py"
PREVIEW_PAGE = "pages/02_Live_Preview.py"
TABLE_COLUMNS = ("Config key", "Name", "Fields", "Steps", "Operations", "Status")


# The builder and preview pages import ``load_configs`` from this module.
@st.cache_data(show_spinner=False)
def load_configs() -> Tuple[Dict[str, ModalConfig], Dict[str, Path], Dict[str, str]]:
    """Load every locally stored modal configuration."""

    return load_local_configs()


def config_summary_rows(configs: Mapping[str, ModalConfig]) -> List[Dict[str, Any]]:
    """Return one table row per config with its validation status."""

    rows: List[Dict[str, Any]] = []
    for config_key, config in configs.items():
        result = validate_config(config)
        if result.is_valid:
            status = "Ready"
        else:
            noun = "issue" if result.total_issues == 1 else "issues"
            status = f"{result.total_issues} {noun}"
        rows.append(
            {
                "Config key": config_key,
                "Name": config.name or "—",
                "Fields": len(config.fields),
                "Steps": len(config.steps),
                "Operations": len(config.entity_operations),
                "Status": status,
            }
        )
    return rows


def _switch_to(page: str, config_key: Optional[str], label: str) -> None:
    """Navigate to ``page`` with ``config_key`` selected."""

    st.session_state[SELECTED_CONFIG_STATE_KEY] = config_key
    if hasattr(st, "switch_page"):
        try:
            st.switch_page(page)
        except Exception:  # pragma: no cover - streamlit navigation fallback
            st.info(f"Use the navigation menu to open the {label} page.")
    else:
        st.info(f"Use the navigation menu to open the {label} page.")


def main() -> None:
    """Render the home screen."""

    apply_app_theme(page_title="Modal builder", page_icon="🧩")
    page_header(
        "Modal builder",
        "Design dynamic forms, check them for problems, and preview them live.",
        icon="🧩",
    )

    configs, _, errors = load_configs()
    for config_key, message in errors.items():
        st.warning(f"Skipping invalid modal config '{config_key}': {message}")

    rows = config_summary_rows(configs)
    ready = sum(1 for row in rows if row["Status"] == "Ready")

    metric_col1, metric_col2, metric_col3 = st.columns(3)
    metric_col1.metric("Modal configurations", len(rows) or "0")
    metric_col2.metric("Ready to publish", ready or "0")
    metric_col3.metric("Need attention", (len(rows) - ready) or "0")

    st.markdown("---")

    if st.button("Create a modal", type="primary"):
        st.session_state[NEW_CONFIG_STATE_KEY] = True
        _switch_to(BUILDER_PAGE, None, "Modal Builder")

    if not rows:
        st.info("No modal configurations stored yet. Create one to get started.")
        st.page_link(BUILDER_PAGE, label="Open the builder", icon="🛠️")
        return

    table_df = pd.DataFrame(rows, columns=list(TABLE_COLUMNS))
    table_df.insert(0, "Select", False)
    selected_key = st.session_state.get(SELECTED_CONFIG_STATE_KEY)
    if selected_key:
        table_df.loc[table_df["Config key"] == selected_key, "Select"] = True

    edited_df = st.data_editor(
        table_df,
        hide_index=True,
        width="stretch",
        num_rows="fixed",
        key="home_configs_table",
        column_config={
            "Select": st.column_config.CheckboxColumn(
                "Select",
                help="Choose a modal before opening it.",
            ),
            **{column: st.column_config.Column(column, disabled=True) for column in TABLE_COLUMNS},
        },
    )

    selected_rows = edited_df.loc[edited_df["Select"].astype(bool)]
    candidate: Optional[str] = None
    if len(selected_rows) > 1:
        st.warning("Select only one modal at a time.")
    elif len(selected_rows) == 1:
        candidate = str(selected_rows.iloc[0]["Config key"])
        st.session_state[SELECTED_CONFIG_STATE_KEY] = candidate

    edit_col, preview_col = st.columns(2)
    with edit_col:
        if st.button("Edit in builder", disabled=candidate is None, use_container_width=True):
            _switch_to(BUILDER_PAGE, candidate, "Modal Builder")
    with preview_col:
        if st.button("Open live preview", disabled=candidate is None, use_container_width=True):
            _switch_to(PREVIEW_PAGE, candidate, "Live Preview")


if __name__ == "__main__":
    main()
