"""Shared styling for the modal builder pages."""

from __future__ import annotations

from html import escape
from typing import Any, Iterable, Optional

import streamlit as st


_THEME_CSS = """
<style>
:root {
    --app-accent: #2563EB;
    --app-accent-soft: #E0EAFF;
    --app-surface: rgba(255, 255, 255, 0.94);
    --app-border: rgba(37, 99, 235, 0.2);
    --app-shadow: 0 14px 32px rgba(15, 23, 42, 0.07);
    --app-text: #1F2933;
    --app-muted: #52606D;
    --app-success: #059669;
    --app-error: #DC2626;
}

html, body {
    font-family: "Inter", "Segoe UI", system-ui, -apple-system, sans-serif;
    color: var(--app-text);
}

[data-testid="stAppViewContainer"] {
    background: linear-gradient(180deg, #F5F8FF 0%, #FFFFFF 60%);
}

.block-container {
    padding-top: 2rem;
    padding-bottom: 3rem;
}

.app-header {
    display: flex;
    align-items: center;
    gap: 1.25rem;
    padding: 1.5rem 1.75rem;
    background: var(--app-surface);
    border-radius: 1.25rem;
    border: 1px solid var(--app-border);
    box-shadow: var(--app-shadow);
    margin-bottom: 1.5rem;
}

.app-header__icon {
    font-size: 2.4rem;
    line-height: 1;
}

.app-header__title {
    margin: 0;
    font-size: 2rem;
    font-weight: 700;
}

.app-header__subtitle {
    margin: 0.25rem 0 0 0;
    color: var(--app-muted);
}

.app-badge {
    display: inline-block;
    padding: 0.15rem 0.65rem;
    border-radius: 999px;
    font-size: 0.8rem;
    font-weight: 600;
}

.app-badge--ok {
    background: rgba(5, 150, 105, 0.12);
    color: var(--app-success);
}

.app-badge--error {
    background: rgba(220, 38, 38, 0.12);
    color: var(--app-error);
}

.app-issues {
    margin: 0.25rem 0 0.75rem 1.1rem;
    color: var(--app-muted);
}
</style>
"""


def apply_app_theme(page_title: str, page_icon: Optional[str] = None) -> None:
    """Set up consistent page configuration and inject the shared CSS theme."""

    st.set_page_config(
        page_title=page_title,
        page_icon=page_icon,
        layout="wide",
        initial_sidebar_state="expanded",
    )
    st.markdown(_THEME_CSS, unsafe_allow_html=True)


def page_header(
    title: str,
    subtitle: Optional[str] = None,
    icon: Optional[str] = None,
    *,
    container: Optional[Any] = None,
) -> None:
    """Render a header with a title, subtitle, and optional icon."""

    icon_markup = f"<span class='app-header__icon'>{icon}</span>" if icon else ""
    subtitle_markup = (
        f"<p class='app-header__subtitle'>{escape(subtitle)}</p>" if subtitle else ""
    )
    target = container.markdown if container is not None else st.markdown
    target(
        f"""
        <div class="app-header">
            {icon_markup}
            <div>
                <h1 class="app-header__title">{escape(title)}</h1>
                {subtitle_markup}
            </div>
        </div>
        """,
        unsafe_allow_html=True,
    )


def badge_markup(label: str, ok: bool) -> str:
    modifier = "ok" if ok else "error"
    return f"<span class='app-badge app-badge--{modifier}'>{escape(label)}</span>"


def render_issue_list(issues: Iterable[str], *, container: Optional[Any] = None) -> None:
    """Render ``issues`` as a compact bullet list; nothing is drawn when empty."""

    items = "".join(f"<li>{escape(issue)}</li>" for issue in issues)
    if not items:
        return
    target = container.markdown if container is not None else st.markdown
    target(f"<ul class='app-issues'>{items}</ul>", unsafe_allow_html=True)
