"""Turns an agent's session start/end hook notifications into queue mutations."""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .agents import UNKNOWN_VERSION
from .queue import QueueError, QueueStore, SessionStatus, TrackedSession, residue_dir
from .result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

START_EVENT = "SessionStart"
END_EVENT = "SessionEnd"
NEW_SESSION_REASON = "startup"


class HookEvent(BaseModel):
    """Payload an agent writes to the hook's stdin."""

    model_config = ConfigDict(extra="allow")

    session_id: str = Field(..., min_length=1)
    hook_event_name: str
    transcript_path: str | None = None
    cwd: str | None = None
    source: str | None = None


def parse_hook_event(raw: str) -> Result[HookEvent]:
    try:
        return Ok(HookEvent.model_validate(json.loads(raw)))
    except ValueError as exc:
        # ValidationError subclasses ValueError.
        return Err(ErrorKind.PARSE_ERROR, f"Failed to parse hook input JSON: {exc}")


def derive_session_id(data_path: str) -> str:
    """Deterministic UUID-shaped id for a transcript path."""

    digest = hashlib.sha256(data_path.encode("utf-8")).hexdigest()
    return "-".join(
        [digest[0:8], digest[8:12], digest[12:16], digest[16:20], digest[20:32]]
    )


class CorrelationStore:
    """One ``<external id>.state`` file per open external session, holding the internal id."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @classmethod
    def for_project(cls, project_root: Path) -> "CorrelationStore":
        return cls(residue_dir(project_root) / "hooks")

    def _path(self, external_id: str) -> Path:
        # External ids come from the agent; keep them inside the directory.
        safe = external_id.replace("/", "_").replace("\\", "_")
        return self._directory / f"{safe}.state"

    def write(self, external_id: str, session_id: str) -> Result[None]:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            self._path(external_id).write_text(session_id, encoding="utf-8")
        except OSError as exc:
            return Err(ErrorKind.IO_ERROR, f"Failed to write hook state file: {exc}")
        return Ok(None)

    def read(self, external_id: str) -> Result[str | None]:
        """Return the correlated internal id, or ``None`` when the session was never tracked."""

        try:
            content = self._path(external_id).read_text(encoding="utf-8")
        except FileNotFoundError:
            return Ok(None)
        except (OSError, UnicodeDecodeError) as exc:
            return Err(ErrorKind.IO_ERROR, f"Failed to read hook state file: {exc}")
        return Ok(content.strip() or None)

    def delete(self, external_id: str) -> Result[None]:
        try:
            self._path(external_id).unlink(missing_ok=True)
        except OSError as exc:
            return Err(ErrorKind.IO_ERROR, f"Failed to remove hook state file: {exc}")
        return Ok(None)


class LifecycleAdapter:
    """Applies start/end hook events to the queue of one project."""

    def __init__(
        self,
        store: QueueStore,
        correlations: CorrelationStore,
        *,
        agent: str = "claude-code",
        version_probe: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._correlations = correlations
        self._agent = agent
        self._version_probe = version_probe or (lambda: UNKNOWN_VERSION)

    def handle(self, event: HookEvent) -> Result[None]:
        if event.hook_event_name == START_EVENT:
            return self.on_start(event)
        if event.hook_event_name == END_EVENT:
            return self.on_end(event)
        logger.debug("Ignoring hook event %s", event.hook_event_name)
        return Ok(None)

    def on_start(self, event: HookEvent) -> Result[None]:
        if event.source != NEW_SESSION_REASON or not event.transcript_path:
            return Ok(None)

        session_id = derive_session_id(event.transcript_path)
        try:
            with self._store.lock:
                existing = self._store.get(session_id)
                if existing is None:
                    self._store.add(
                        TrackedSession(
                            id=session_id,
                            agent=self._agent,
                            agent_version=UNKNOWN_VERSION,
                            status=SessionStatus.OPEN,
                            data_path=event.transcript_path,
                        )
                    )
                elif existing.status is SessionStatus.ENDED:
                    self._store.update(session_id, status=SessionStatus.OPEN)
                    logger.debug("Reopened session %s", session_id)
        except QueueError as exc:
            return Err.from_exception(exc)

        if existing is None:
            self._record_version(session_id)

        written = self._correlations.write(event.session_id, session_id)
        if not written.ok:
            return written

        logger.debug("Session started for %s", self._agent, extra={"session_id": session_id})
        return Ok(None)

    def _record_version(self, session_id: str) -> None:
        version = self._version_probe()
        if version == UNKNOWN_VERSION:
            return
        try:
            self._store.update(session_id, agent_version=version)
        except QueueError as exc:
            logger.warning("Failed to record agent version for %s: %s", session_id, exc)

    def on_end(self, event: HookEvent) -> Result[None]:
        correlated = self._correlations.read(event.session_id)
        if not correlated.ok:
            return correlated
        session_id = correlated.value
        if session_id is None:
            return Ok(None)

        try:
            with self._store.lock:
                if self._store.get(session_id) is not None:
                    self._store.update(session_id, status=SessionStatus.ENDED)
        except QueueError as exc:
            return Err.from_exception(exc)

        removed = self._correlations.delete(event.session_id)
        if not removed.ok:
            return removed

        logger.debug("Session %s ended", session_id)
        return Ok(None)


__all__ = [
    "CorrelationStore",
    "HookEvent",
    "LifecycleAdapter",
    "derive_session_id",
    "parse_hook_event",
]
