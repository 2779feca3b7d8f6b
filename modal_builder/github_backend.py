"""Storage of modal configurations through GitHub's Contents API."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests

from modal_builder.models import ConfigFormatError, ModalConfig

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


class PublishConflictError(RuntimeError):
    """Raised when the remote file changed since it was loaded."""


@dataclass
class GitHubBackend:
    """GitHub Contents API wrapper for reading and writing one JSON file."""

    token: str
    repo: str
    path: str
    branch: str = "main"
    api_url: str = DEFAULT_API_URL
    timeout: int = 10

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
        }

    def _url(self) -> str:
        return f"{self.api_url.rstrip('/')}/repos/{self.repo}/contents/{self.path}"

    def _fetch(self) -> Optional[Dict[str, Any]]:
        """Return the Contents API payload, or ``None`` if the file is missing."""

        response = requests.get(
            self._url(),
            headers=self._headers(),
            params={"ref": self.branch},
            timeout=self.timeout,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def get_file_sha(self) -> Optional[str]:
        """Retrieve the SHA of the target file if it exists."""

        payload = self._fetch()
        if payload is None:
            return None
        return payload.get("sha")

    def read_json(self) -> Tuple[Dict[str, Any], Optional[str]]:
        """Return the decoded JSON document and its SHA."""

        payload = self._fetch()
        if payload is None:
            raise FileNotFoundError(f"{self.path} does not exist on {self.repo}@{self.branch}.")
        encoding = payload.get("encoding", "base64")
        if encoding != "base64":
            raise ValueError(f"Unsupported encoding: {encoding}")
        decoded = base64.b64decode(payload.get("content", "")).decode("utf-8")
        try:
            document = json.loads(decoded)
        except json.JSONDecodeError as exc:
            raise ConfigFormatError(f"{self.path} is not valid JSON: {exc.msg}") from exc
        return document, payload.get("sha")

    def write_json(self, data: Dict[str, Any], message: str, *, sha: Optional[str] = None) -> Dict[str, Any]:
        """Create or replace the file; ``sha`` must match the current file when it exists."""

        payload: Dict[str, Any] = {
            "message": message,
            "branch": self.branch,
            "content": base64.b64encode(json.dumps(data, indent=2).encode("utf-8")).decode("utf-8"),
        }
        if sha:
            payload["sha"] = sha

        response = requests.put(
            self._url(),
            headers=self._headers(),
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def read_config(self) -> Tuple[ModalConfig, Optional[str]]:
        document, sha = self.read_json()
        return ModalConfig.from_dict(document), sha

    def publish_config(
        self,
        config: ModalConfig,
        *,
        expected_sha: Optional[str],
        message: Optional[str] = None,
    ) -> Optional[str]:
        """Write ``config`` unless someone else changed the file first.

        ``expected_sha`` is the SHA seen when the config was loaded (``None``
        for a config that has never been published). Returns the new SHA.
        """

        latest_sha = self.get_file_sha()
        if expected_sha is not None and latest_sha != expected_sha:
            raise PublishConflictError("Modal configuration changed upstream; reload and retry.")
        response = self.write_json(
            config.to_dict(),
            message or f"chore: publish modal configuration {config.name}",
            sha=latest_sha,
        )
        published_sha = None
        if isinstance(response, dict):
            published_sha = (response.get("content") or {}).get("sha")
        logger.info("Published modal config %r to %s/%s", config.name, self.repo, self.path)
        return published_sha or latest_sha
