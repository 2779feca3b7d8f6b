"""Tests for the GitHub Contents API backend."""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Optional

import pytest
import requests

from modal_builder import github_backend
from modal_builder.github_backend import GitHubBackend, PublishConflictError
from modal_builder.models import ConfigFormatError, ModalConfig


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload: Optional[Dict[str, Any]] = None) -> None:
        self.status_code = status_code
        self._payload = payload or {}

    def json(self) -> Dict[str, Any]:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def _encoded(document: Any) -> str:
    return base64.b64encode(json.dumps(document).encode("utf-8")).decode("utf-8")


def _backend() -> GitHubBackend:
    return GitHubBackend(token="t0k", repo="acme/forms", path="modal_configs/intake/modal_config.json")


def _patch(monkeypatch, get_response: _FakeResponse, put_response: Optional[_FakeResponse] = None) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []

    def fake_get(url, **kwargs):
        calls.append({"method": "GET", "url": url, **kwargs})
        return get_response

    def fake_put(url, **kwargs):
        calls.append({"method": "PUT", "url": url, **kwargs})
        return put_response or _FakeResponse(201, {"content": {"sha": "new-sha"}})

    monkeypatch.setattr(github_backend.requests, "get", fake_get)
    monkeypatch.setattr(github_backend.requests, "put", fake_put)
    return calls


def test_requests_target_the_contents_api(monkeypatch) -> None:
    calls = _patch(monkeypatch, _FakeResponse(200, {"sha": "abc"}))

    assert _backend().get_file_sha() == "abc"

    call = calls[0]
    assert call["url"] == "https://api.github.com/repos/acme/forms/contents/modal_configs/intake/modal_config.json"
    assert call["params"] == {"ref": "main"}
    assert call["headers"]["Authorization"] == "Bearer t0k"
    assert call["timeout"] == 10


def test_missing_file_has_no_sha(monkeypatch) -> None:
    _patch(monkeypatch, _FakeResponse(404))

    backend = _backend()

    assert backend.get_file_sha() is None
    with pytest.raises(FileNotFoundError):
        backend.read_json()


def test_read_config_decodes_content(monkeypatch) -> None:
    _patch(monkeypatch, _FakeResponse(200, {"sha": "abc", "content": _encoded({"title": "Intake"})}))

    config, sha = _backend().read_config()

    assert config.name == "Intake"
    assert sha == "abc"


def test_read_json_rejects_bad_payloads(monkeypatch) -> None:
    _patch(monkeypatch, _FakeResponse(200, {"encoding": "none", "content": "x"}))
    with pytest.raises(ValueError):
        _backend().read_json()

    _patch(monkeypatch, _FakeResponse(200, {"content": base64.b64encode(b"{oops").decode("utf-8")}))
    with pytest.raises(ConfigFormatError):
        _backend().read_json()


def test_server_errors_propagate(monkeypatch) -> None:
    _patch(monkeypatch, _FakeResponse(500))

    with pytest.raises(requests.HTTPError):
        _backend().get_file_sha()


def test_publish_writes_with_current_sha(monkeypatch) -> None:
    calls = _patch(monkeypatch, _FakeResponse(200, {"sha": "abc"}))

    new_sha = _backend().publish_config(ModalConfig(name="Intake"), expected_sha="abc")

    assert new_sha == "new-sha"
    put = calls[-1]
    assert put["method"] == "PUT"
    assert put["json"]["sha"] == "abc"
    assert put["json"]["branch"] == "main"
    assert put["json"]["message"] == "chore: publish modal configuration Intake"
    written = json.loads(base64.b64decode(put["json"]["content"]).decode("utf-8"))
    assert written["title"] == "Intake"


def test_first_publish_creates_the_file(monkeypatch) -> None:
    calls = _patch(monkeypatch, _FakeResponse(404))

    _backend().publish_config(ModalConfig(name="Intake"), expected_sha=None, message="add intake")

    put = calls[-1]
    assert "sha" not in put["json"]
    assert put["json"]["message"] == "add intake"


def test_publish_detects_upstream_changes(monkeypatch) -> None:
    calls = _patch(monkeypatch, _FakeResponse(200, {"sha": "someone-else"}))

    with pytest.raises(PublishConflictError):
        _backend().publish_config(ModalConfig(name="Intake"), expected_sha="abc")

    assert all(call["method"] == "GET" for call in calls)
