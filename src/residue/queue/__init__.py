"""Local queue of tracked agent sessions."""

from .models import CommitRef, SessionStatus, TrackedSession
from .store import (
    DuplicateSessionError,
    InvalidUpdateError,
    QueueError,
    QueueIOError,
    QueueStore,
    SessionNotFoundError,
    residue_dir,
)

__all__ = [
    "CommitRef",
    "DuplicateSessionError",
    "InvalidUpdateError",
    "QueueError",
    "QueueIOError",
    "QueueStore",
    "SessionNotFoundError",
    "SessionStatus",
    "TrackedSession",
    "residue_dir",
]
