"""Application settings read from Streamlit secrets."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import streamlit as st

from modal_builder.conditions import DEFAULT_UNKNOWN_OPERATOR_POLICY, UnknownOperatorPolicy
from modal_builder.github_backend import DEFAULT_API_URL


DEFAULT_REMOTE_PATH = "modal_configs/{config_key}/modal_config.json"


def _secret(name: str, default: Any = None) -> Any:
    """Return a top-level secret, or ``default`` when no secrets file exists."""

    try:
        return st.secrets.get(name, default)  # type: ignore[arg-type]
    except FileNotFoundError:
        return default


def _secrets_dict(name: str) -> Dict[str, Any]:
    """Return a mapping stored under ``name`` in Streamlit secrets."""

    value = _secret(name, {})
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def github_settings() -> Optional[Dict[str, Any]]:
    """Return GitHub configuration from Streamlit secrets if available.

    The ``[github]`` table is preferred; flat ``github_*`` keys are used for
    anything it leaves out. ``None`` means publishing is not configured.
    """

    secrets = _secrets_dict("github")
    token = secrets.get("token")
    repo = secrets.get("repo")
    path = secrets.get("path", DEFAULT_REMOTE_PATH)
    branch = secrets.get("branch", "main")
    api_url = secrets.get("api_url", DEFAULT_API_URL)

    if not (token and repo):
        token = _secret("github_token", token)
        repo = _secret("github_repo", repo)
        path = _secret("github_file_path", path)
        branch = _secret("github_branch", branch)
        api_url = _secret("github_api_url", api_url)

    if not (token and repo and path):
        return None

    return {
        "token": str(token),
        "repo": str(repo),
        "path": str(path),
        "branch": str(branch or "main"),
        "api_url": str(api_url or DEFAULT_API_URL),
    }


def preview_settings() -> Dict[str, Any]:
    return _secrets_dict("preview")


def unknown_operator_policy() -> UnknownOperatorPolicy:
    """Return the configured policy for operators the evaluator does not know."""

    return UnknownOperatorPolicy.parse(
        preview_settings().get("unknown_operator"), DEFAULT_UNKNOWN_OPERATOR_POLICY
    )


def log_level() -> str:
    """Return the ``log_level`` secret used by the app entrypoint, ``INFO`` by default."""

    return str(_secret("log_level", "INFO") or "INFO").upper()
