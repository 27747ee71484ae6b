"""Data models for the local session queue."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class SessionStatus(str, Enum):
    OPEN = "open"
    ENDED = "ended"


class CommitRef(BaseModel):
    """A commit made while a session was open."""

    sha: str = Field(..., description="Full commit SHA.")
    branch: str = Field(default="unknown", description="Branch checked out at commit time.")

    @field_validator("sha")
    @classmethod
    def _normalize_sha(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Commit sha must not be empty")
        return normalized


class TrackedSession(BaseModel):
    """A locally queued agent conversation awaiting relay."""

    id: str = Field(..., description="Stable identifier, unique within a queue.")
    agent: str = Field(..., description="Agent name, e.g. claude-code.")
    agent_version: str = Field(default="unknown")
    status: SessionStatus = Field(default=SessionStatus.OPEN)
    data_path: str = Field(..., description="Absolute path to the raw transcript.")
    commits: list[CommitRef] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Session id must not be empty")
        return normalized

    @field_validator("commits", mode="before")
    @classmethod
    def _upgrade_legacy_commits(cls, value: Any):  # type: ignore[override]
        # Older queue documents stored bare SHAs.
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [
                {"sha": item, "branch": "unknown"} if isinstance(item, str) else item
                for item in value
            ]
        raise TypeError("commits must be a list")

    @property
    def is_open(self) -> bool:
        return self.status is SessionStatus.OPEN

    def has_commit(self, sha: str) -> bool:
        return any(ref.sha == sha for ref in self.commits)

    def add_commit(self, ref: CommitRef) -> bool:
        """Append ``ref`` unless its SHA is already linked. Returns True when appended."""

        if self.has_commit(ref.sha):
            return False
        self.commits.append(ref)
        return True


__all__ = ["CommitRef", "SessionStatus", "TrackedSession"]
