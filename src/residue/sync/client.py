"""HTTP client for the remote session service."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from .. import __version__
from ..result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

API_PREFIX = "/api"

_version_warned = False


class UploadLocations(BaseModel):
    """Two one-time upload URLs issued for a session."""

    url: str
    key: str | None = Field(default=None, validation_alias=AliasChoices("key", "r2_key"))
    search_url: str
    search_key: str | None = Field(
        default=None, validation_alias=AliasChoices("search_key", "search_r2_key")
    )


class FilePayload(BaseModel):
    path: str
    change_type: str
    lines_added: int
    lines_deleted: int


class CommitPayload(BaseModel):
    sha: str
    org: str
    repo: str
    message: str
    author: str
    committed_at: int
    branch: str
    files: list[FilePayload] = Field(default_factory=list)


class SessionPayload(BaseModel):
    id: str
    agent: str
    agent_version: str
    status: str
    data_path: str | None = None
    first_message: str | None = None
    session_name: str | None = None


def _check_version(response: httpx.Response) -> None:
    global _version_warned
    if _version_warned:
        return
    remote_version = response.headers.get("X-Version")
    if remote_version and remote_version != __version__:
        _version_warned = True
        logger.warning(
            "Version mismatch: CLI is %s, worker is %s. Update both to the same version.",
            __version__,
            remote_version,
        )


class RemoteClient:
    """Talks to the worker API and to one-time upload locations."""

    def __init__(
        self,
        worker_url: str,
        token: str,
        *,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._worker_url = worker_url.rstrip("/")
        self._token = token
        self._client = httpx.Client(transport=transport, timeout=timeout)

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _worker_post(self, path: str, payload: dict[str, Any], *, action: str) -> Result[httpx.Response]:
        try:
            response = self._client.post(
                f"{self._worker_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except httpx.HTTPError as exc:
            return Err(ErrorKind.NETWORK_ERROR, f"{action}: {exc}")
        _check_version(response)
        if response.is_error:
            return Err(ErrorKind.NETWORK_ERROR, f"{action}: HTTP {response.status_code}")
        return Ok(response)

    def request_upload_urls(self, session_id: str) -> Result[UploadLocations]:
        result = self._worker_post(
            f"{API_PREFIX}/sessions/upload-url",
            {"session_id": session_id},
            action="Failed to get upload URL",
        )
        if not result.ok:
            return result
        try:
            return Ok(UploadLocations.model_validate(result.value.json()))
        except (ValueError, ValidationError) as exc:
            return Err(ErrorKind.NETWORK_ERROR, f"Failed to get upload URL: invalid response ({exc})")

    def upload(self, url: str, body: str | bytes, *, content_type: str) -> Result[None]:
        """PUT ``body`` to a one-time upload location (no credential attached)."""

        try:
            response = self._client.put(url, content=body, headers={"Content-Type": content_type})
        except httpx.HTTPError as exc:
            return Err(ErrorKind.NETWORK_ERROR, f"Upload failed: {exc}")
        if response.is_error:
            return Err(ErrorKind.NETWORK_ERROR, f"Upload failed: HTTP {response.status_code}")
        return Ok(None)

    def post_session(self, session: SessionPayload, commits: list[CommitPayload]) -> Result[None]:
        result = self._worker_post(
            f"{API_PREFIX}/sessions",
            {
                "session": session.model_dump(mode="json"),
                "commits": [commit.model_dump(mode="json") for commit in commits],
            },
            action="Failed to post session metadata",
        )
        if not result.ok:
            return result
        return Ok(None)


__all__ = [
    "CommitPayload",
    "FilePayload",
    "RemoteClient",
    "SessionPayload",
    "UploadLocations",
]
