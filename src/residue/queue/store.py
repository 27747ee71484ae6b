"""File-backed queue of tracked sessions for one repository."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable

from filelock import FileLock, Timeout
from pydantic import TypeAdapter, ValidationError

from ..result import ErrorKind
from .models import TrackedSession

logger = logging.getLogger(__name__)

RESIDUE_DIRNAME = ".residue"
QUEUE_FILENAME = "pending.json"

_SESSIONS = TypeAdapter(list[TrackedSession])
# Ids are immutable once queued.
_UPDATABLE_FIELDS = frozenset(TrackedSession.model_fields) - {"id"}


class QueueError(RuntimeError):
    """Base class for queue store failures."""

    kind = ErrorKind.IO_ERROR


class DuplicateSessionError(QueueError):
    """Raised when adding a session whose id is already queued."""

    kind = ErrorKind.DUPLICATE_ID


class SessionNotFoundError(QueueError):
    """Raised when updating a session that is not queued."""

    kind = ErrorKind.NOT_FOUND


class QueueIOError(QueueError):
    """Raised when the backing document cannot be read, parsed or written."""

    kind = ErrorKind.IO_ERROR


class InvalidUpdateError(QueueError, ValueError):
    """Raised when an update names a field that cannot be changed."""

    kind = ErrorKind.PARSE_ERROR


def residue_dir(project_root: Path) -> Path:
    return Path(project_root) / RESIDUE_DIRNAME


class QueueStore:
    """Ordered collection of :class:`TrackedSession` persisted as one JSON document.

    Each mutation is a read-modify-write performed under an advisory file
    lock. The lock is re-entrant for the same store instance, so callers may
    hold ``store.lock`` across several operations to make them atomic.
    """

    def __init__(self, path: Path, *, lock_timeout: float = 10.0) -> None:
        self._path = Path(path)
        self._lock = FileLock(str(self._path) + ".lock", timeout=lock_timeout)

    @classmethod
    def for_project(cls, project_root: Path, *, lock_timeout: float = 10.0) -> "QueueStore":
        return cls(residue_dir(project_root) / QUEUE_FILENAME, lock_timeout=lock_timeout)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock(self) -> "_QueueLock":
        return _QueueLock(self._lock, self._path)

    def list(self) -> list[TrackedSession]:
        """Return all queued sessions in order; empty when no document exists yet."""

        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as exc:
            raise QueueIOError(f"Failed to read pending queue {self._path}: {exc}") from exc

        if not text.strip():
            return []
        try:
            return _SESSIONS.validate_python(json.loads(text))
        except (ValueError, ValidationError) as exc:
            raise QueueIOError(f"Failed to parse pending queue {self._path}: {exc}") from exc

    def get(self, session_id: str) -> TrackedSession | None:
        for session in self.list():
            if session.id == session_id:
                return session
        return None

    def add(self, session: TrackedSession) -> None:
        with self.lock:
            sessions = self.list()
            if any(existing.id == session.id for existing in sessions):
                raise DuplicateSessionError(f"Session already queued: {session.id}")
            sessions.append(session)
            self._write(sessions)

    def update(self, session_id: str, **fields: Any) -> TrackedSession:
        """Merge ``fields`` into the queued session and return the updated record."""

        rejected = sorted(name for name in fields if name not in _UPDATABLE_FIELDS)
        if rejected:
            raise InvalidUpdateError(f"Cannot update session field(s): {', '.join(rejected)}")

        with self.lock:
            sessions = self.list()
            for index, session in enumerate(sessions):
                if session.id != session_id:
                    continue
                merged = TrackedSession.model_validate(
                    {**session.model_dump(mode="json"), **_jsonable(fields)}
                )
                sessions[index] = merged
                self._write(sessions)
                return merged
        raise SessionNotFoundError(f"Session not found: {session_id}")

    def replace(self, sessions: Iterable[TrackedSession]) -> None:
        with self.lock:
            self._write(list(sessions))

    def _write(self, sessions: list[TrackedSession]) -> None:
        payload = json.dumps(
            [session.model_dump(mode="json") for session in sessions], indent=2
        )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                suffix=".tmp", prefix=self._path.stem + "_", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(temp_path, self._path)
            except BaseException:
                Path(temp_path).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise QueueIOError(f"Failed to write pending queue {self._path}: {exc}") from exc
        logger.debug("Wrote pending queue", extra={"path": str(self._path), "count": len(sessions)})


class _QueueLock:
    """Context manager around the store's file lock that reports timeouts as queue errors."""

    def __init__(self, lock: FileLock, path: Path) -> None:
        self._lock = lock
        self._path = path

    def __enter__(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._lock.acquire()
        except Timeout as exc:
            raise QueueIOError(f"Timed out waiting for lock on {self._path}") from exc
        except OSError as exc:
            raise QueueIOError(f"Failed to lock pending queue {self._path}: {exc}") from exc

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


def _jsonable(fields: dict[str, Any]) -> dict[str, Any]:
    converted: dict[str, Any] = {}
    for key, value in fields.items():
        if hasattr(value, "model_dump"):
            converted[key] = value.model_dump(mode="json")
        elif isinstance(value, list):
            converted[key] = [
                item.model_dump(mode="json") if hasattr(item, "model_dump") else item
                for item in value
            ]
        elif hasattr(value, "value") and not isinstance(value, (str, int, float, bool)):
            converted[key] = value.value
        else:
            converted[key] = value
    return converted


__all__ = [
    "DuplicateSessionError",
    "InvalidUpdateError",
    "QUEUE_FILENAME",
    "QueueError",
    "QueueIOError",
    "QueueStore",
    "SessionNotFoundError",
    "residue_dir",
]
