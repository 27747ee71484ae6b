"""One relay pass over the local session queue."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from ..config import RemoteConfig, ResidueSettings, get_settings, resolve_remote_config
from ..extractors import SearchMetadata, build_session_search_text, extract_enrichment
from ..git import GitRepository, RepoIdentity
from ..queue import QueueError, QueueStore, SessionStatus, TrackedSession
from ..result import Err, ErrorKind, Ok, Result
from .client import CommitPayload, FilePayload, RemoteClient, SessionPayload

logger = logging.getLogger(__name__)

STALE_AFTER_SECONDS = 30 * 60


@dataclass(slots=True)
class SyncReport:
    """Outcome of a completed pass. Per-session failures are reported, never raised."""

    synced: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    remaining: int = 0


def reap_stale_sessions(
    sessions: list[TrackedSession],
    *,
    now: float,
    stale_after: float = STALE_AFTER_SECONDS,
) -> list[str]:
    """Mark open sessions ended when their transcript is gone or unmodified for too long.

    Returns the ids that were flipped. Ended sessions are never touched and
    nothing is removed.
    """

    flipped: list[str] = []
    for session in sessions:
        if session.status is not SessionStatus.OPEN:
            continue
        try:
            mtime = os.stat(session.data_path).st_mtime
        except OSError:
            session.status = SessionStatus.ENDED
            flipped.append(session.id)
            logger.debug("Auto-closed session %s (data file not accessible)", session.id)
            continue
        idle = now - mtime
        if idle > stale_after:
            session.status = SessionStatus.ENDED
            flipped.append(session.id)
            logger.debug(
                "Auto-closed stale session %s (data file unchanged for %dm)",
                session.id,
                round(idle / 60),
            )
    return flipped


def read_transcript(data_path: str) -> Result[str | None]:
    """Read a raw transcript; ``Ok(None)`` means the file is confirmed absent."""

    try:
        return Ok(Path(data_path).read_text(encoding="utf-8", errors="replace"))
    except FileNotFoundError:
        return Ok(None)
    except OSError as exc:
        return Err(ErrorKind.IO_ERROR, f"Failed to read session data {data_path}: {exc}")


def build_commit_payloads(
    session: TrackedSession, identity: RepoIdentity, git: GitRepository
) -> list[CommitPayload]:
    commits: list[CommitPayload] = []
    for ref in session.commits:
        meta = git.commit_meta(ref.sha)
        if not meta.ok:
            logger.warning("Skipping commit %s of session %s: %s", ref.sha, session.id, meta.detail)
            continue
        files = git.commit_files(ref.sha)
        if not files.ok:
            logger.debug("No file list for commit %s: %s", ref.sha, files.detail)
        commits.append(
            CommitPayload(
                sha=ref.sha,
                org=identity.org,
                repo=identity.repo,
                message=meta.value.message,
                author=meta.value.author,
                committed_at=meta.value.committed_at,
                branch=ref.branch,
                files=[
                    FilePayload(
                        path=change.path,
                        change_type=change.change_type,
                        lines_added=change.lines_added,
                        lines_deleted=change.lines_deleted,
                    )
                    for change in (files.value if files.ok else [])
                ],
            )
        )
    return commits


def merge_concurrent_writes(
    before: dict[str, SessionStatus],
    remaining: list[TrackedSession],
    current: list[TrackedSession],
) -> list[TrackedSession]:
    """Fold writes made to the queue during a pass into the pass's result.

    ``before`` maps each id loaded at the start of the pass to its status at
    that time. Sessions added meanwhile are kept, commits appended meanwhile
    are merged, and a status changed on disk meanwhile wins over reaping.
    """

    latest_by_id = {session.id: session for session in current}
    merged: list[TrackedSession] = []
    for session in remaining:
        latest = latest_by_id.get(session.id)
        if latest is not None:
            for ref in latest.commits:
                session.add_commit(ref)
            if latest.status is not before.get(session.id):
                session.status = latest.status
            if session.agent_version == "unknown":
                session.agent_version = latest.agent_version
        merged.append(session)
    merged.extend(session for session in current if session.id not in before)
    return merged


class SyncEngine:
    """Relays queued sessions that have commits to the remote service."""

    def __init__(
        self,
        *,
        settings: ResidueSettings | None = None,
        git: GitRepository | None = None,
        client_factory: Callable[[RemoteConfig], RemoteClient] | None = None,
        clock: Callable[[], float] | None = None,
        stale_after: float = STALE_AFTER_SECONDS,
    ) -> None:
        self._settings = settings
        self._git = git or GitRepository()
        self._client_factory = client_factory or (
            lambda remote: RemoteClient(remote.worker_url, remote.token)
        )
        self._clock = clock or time.time
        self._stale_after = stale_after

    def run(self, *, remote_url: str | None = None) -> Result[SyncReport]:
        remote = resolve_remote_config(self._settings)
        if not remote.ok:
            return remote

        root = self._git.project_root()
        if not root.ok:
            return root
        settings = self._settings or get_settings()
        store = QueueStore.for_project(root.value, lock_timeout=settings.lock_timeout)

        try:
            sessions = store.list()
        except QueueError as exc:
            return Err.from_exception(exc)
        if not sessions:
            return Ok(SyncReport())

        before = {session.id: session.status for session in sessions}
        reap_stale_sessions(sessions, now=self._clock(), stale_after=self._stale_after)

        identity = self._git.resolve_identity(remote_url)
        if not identity.ok:
            return identity

        report = SyncReport()
        remaining: list[TrackedSession] = []
        with self._client_factory(remote.value) as client:
            for session in sessions:
                if self._relay(session, client=client, identity=identity.value, report=report):
                    remaining.append(session)

        try:
            with store.lock:
                merged = merge_concurrent_writes(before, remaining, store.list())
                store.replace(merged)
        except QueueError as exc:
            return Err.from_exception(exc)

        report.remaining = len(merged)
        return Ok(report)

    def _relay(
        self,
        session: TrackedSession,
        *,
        client: RemoteClient,
        identity: RepoIdentity,
        report: SyncReport,
    ) -> bool:
        """Relay one session. Returns True when it stays queued."""

        if not session.commits:
            return True

        data = read_transcript(session.data_path)
        if not data.ok:
            logger.warning("Keeping session %s: %s", session.id, data.detail)
            report.failed.append(session.id)
            return True
        raw = data.value
        if raw is None:
            logger.warning(
                "Dropping session %s: data file missing at %s", session.id, session.data_path
            )
            report.dropped.append(session.id)
            return False

        commits = build_commit_payloads(session, identity, self._git)

        locations = client.request_upload_urls(session.id)
        if not locations.ok:
            logger.warning("Keeping session %s: %s", session.id, locations.detail)
            report.failed.append(session.id)
            return True

        uploaded = client.upload(locations.value.url, raw, content_type="application/json")
        if not uploaded.ok:
            logger.warning("Keeping session %s: %s", session.id, uploaded.detail)
            report.failed.append(session.id)
            return True

        enrichment = extract_enrichment(session.agent, raw)
        changed_files = sorted({change.path for commit in commits for change in commit.files})
        search_text = build_session_search_text(
            SearchMetadata(
                session_id=session.id,
                agent=session.agent,
                commits=[ref.sha for ref in session.commits],
                branch=session.commits[-1].branch,
                repo=str(identity),
                data_path=session.data_path,
                first_message=enrichment.first_message,
                session_name=enrichment.session_name,
            ),
            raw,
            changed_files,
        )
        if search_text:
            searched = client.upload(
                locations.value.search_url, search_text, content_type="text/plain"
            )
            if not searched.ok:
                logger.warning("Search text upload failed for session %s: %s", session.id, searched.detail)

        posted = client.post_session(
            SessionPayload(
                id=session.id,
                agent=session.agent,
                agent_version=session.agent_version,
                status=session.status.value,
                data_path=session.data_path,
                first_message=enrichment.first_message,
                session_name=enrichment.session_name,
            ),
            commits,
        )
        if not posted.ok:
            logger.warning("Keeping session %s: %s", session.id, posted.detail)
            report.failed.append(session.id)
            return True

        report.synced.append(session.id)
        logger.info("Synced session %s", session.id)
        return session.status is SessionStatus.OPEN


__all__ = [
    "STALE_AFTER_SECONDS",
    "SyncEngine",
    "SyncReport",
    "build_commit_payloads",
    "merge_concurrent_writes",
    "read_transcript",
    "reap_stale_sessions",
]
