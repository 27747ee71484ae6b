"""Relay of queued sessions to the remote service."""

from .client import CommitPayload, RemoteClient, SessionPayload, UploadLocations
from .engine import (
    STALE_AFTER_SECONDS,
    SyncEngine,
    SyncReport,
    merge_concurrent_writes,
    reap_stale_sessions,
)

__all__ = [
    "CommitPayload",
    "RemoteClient",
    "STALE_AFTER_SECONDS",
    "SessionPayload",
    "SyncEngine",
    "SyncReport",
    "UploadLocations",
    "merge_concurrent_writes",
    "reap_stale_sessions",
]
