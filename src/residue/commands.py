"""Explicit session commands and commit linking."""

from __future__ import annotations

import logging
import uuid

from .git import GitRepository
from .queue import CommitRef, QueueError, QueueStore, SessionStatus, TrackedSession
from .result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)


def start_session(
    store: QueueStore,
    *,
    agent: str,
    data_path: str,
    agent_version: str = "unknown",
) -> Result[str]:
    """Queue a fresh open session under a new random id and return the id."""

    session_id = str(uuid.uuid4())
    try:
        store.add(
            TrackedSession(
                id=session_id,
                agent=agent,
                agent_version=agent_version,
                status=SessionStatus.OPEN,
                data_path=data_path,
            )
        )
    except QueueError as exc:
        return Err.from_exception(exc)
    return Ok(session_id)


def end_session(store: QueueStore, session_id: str) -> Result[None]:
    try:
        with store.lock:
            if store.get(session_id) is None:
                return Err(ErrorKind.NOT_FOUND, f"Session not found: {session_id}")
            store.update(session_id, status=SessionStatus.ENDED)
    except QueueError as exc:
        return Err.from_exception(exc)
    return Ok(None)


def clear_sessions(store: QueueStore, session_id: str | None = None) -> Result[list[str]]:
    """Drop one queued session, or all of them. Returns the removed ids.

    An unknown ``session_id`` or an empty queue removes nothing and is not an error.
    """

    try:
        with store.lock:
            sessions = store.list()
            if session_id is None:
                removed = [session.id for session in sessions]
                remaining: list[TrackedSession] = []
            else:
                removed = [session.id for session in sessions if session.id == session_id]
                remaining = [session for session in sessions if session.id != session_id]
            if removed:
                store.replace(remaining)
    except QueueError as exc:
        return Err.from_exception(exc)
    return Ok(removed)


def should_tag(session: TrackedSession) -> bool:
    """Open sessions always take the new commit; ended ones only if they have none yet."""

    if session.status is SessionStatus.OPEN:
        return True
    return not session.commits


def capture_commit(store: QueueStore, git: GitRepository) -> Result[list[str]]:
    """Link HEAD to the queued sessions that may have produced it.

    Returns the ids of the sessions that were tagged.
    """

    sha = git.current_sha()
    if not sha.ok:
        return sha
    branch = git.current_branch()
    if not branch.ok:
        return branch

    ref = CommitRef(sha=sha.value, branch=branch.value)
    tagged: list[str] = []
    try:
        with store.lock:
            sessions = store.list()
            for session in sessions:
                if should_tag(session) and session.add_commit(ref):
                    tagged.append(session.id)
            if tagged:
                store.replace(sessions)
    except QueueError as exc:
        return Err.from_exception(exc)

    logger.debug("Tagged %d session(s) with %s", len(tagged), ref.sha)
    return Ok(tagged)


__all__ = [
    "capture_commit",
    "clear_sessions",
    "end_session",
    "should_tag",
    "start_session",
]
