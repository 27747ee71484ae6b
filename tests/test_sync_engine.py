from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Callable

import httpx

from residue.config import ResidueSettings
from residue.git import CommitMeta, FileChange, RepoIdentity
from residue.queue import CommitRef, QueueStore, SessionStatus, TrackedSession
from residue.result import Err, ErrorKind, Ok
from residue.sync import RemoteClient, SyncEngine, merge_concurrent_writes, reap_stale_sessions

NOW = 1_700_000_000.0


class StubGit:
    def __init__(self, root: Path, *, identity=None, broken_meta: set[str] | None = None) -> None:
        self.root = root
        self.identity = identity or Ok(RepoIdentity(org="my-org", repo="my-repo"))
        self.broken_meta = broken_meta or set()
        self.identity_overrides: list[str | None] = []

    def project_root(self):
        return Ok(self.root)

    def resolve_identity(self, override=None):
        self.identity_overrides.append(override)
        return self.identity

    def commit_meta(self, sha: str):
        if sha in self.broken_meta:
            return Err(ErrorKind.GIT_ERROR, f"bad object {sha}")
        return Ok(CommitMeta(message=f"commit {sha}", author="Test", committed_at=1700000000))

    def commit_files(self, sha: str):
        return Ok([FileChange(path="src/app.py", change_type="M", lines_added=3, lines_deleted=1)])


class Recorder:
    """Mock worker plus upload target. Overrides are keyed by exact URL path."""

    def __init__(self, overrides: dict[str, Callable[[httpx.Request], httpx.Response]] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.overrides = overrides or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        override = self.overrides.get(request.url.path)
        if override is not None:
            return override(request)
        if request.url.path == "/api/sessions/upload-url":
            session_id = json.loads(request.content)["session_id"]
            return httpx.Response(
                200,
                json={
                    "url": f"http://uploads.test/sessions/{session_id}.json",
                    "r2_key": f"sessions/{session_id}.json",
                    "search_url": f"http://uploads.test/search/{session_id}.txt",
                    "search_r2_key": f"search/{session_id}.txt",
                },
            )
        if request.url.path == "/api/sessions":
            return httpx.Response(200, json={"ok": True})
        if request.url.host == "uploads.test":
            return httpx.Response(200)
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [f"{request.method} {request.url.path}" for request in self.requests]


def make_engine(root: Path, recorder: Recorder, **git_kwargs) -> tuple[SyncEngine, StubGit]:
    git = StubGit(root, **git_kwargs)
    engine = SyncEngine(
        settings=ResidueSettings(worker_url="http://worker.test", token="my-token"),
        git=git,
        client_factory=lambda remote: RemoteClient(
            remote.worker_url, remote.token, transport=httpx.MockTransport(recorder)
        ),
        clock=lambda: NOW,
    )
    return engine, git


def write_transcript(path: Path, *, age_seconds: float = 0) -> str:
    lines = [
        {"type": "user", "message": {"role": "user", "content": "Fix the login bug"}},
        {"type": "progress", "slug": "fix-login-bug"},
        {
            "type": "assistant",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "thinking", "thinking": "hmm"},
                    {"type": "text", "text": "Looking at auth.py"},
                    {"type": "tool_use", "name": "Read", "input": {"file_path": "src/auth.py"}},
                ],
            },
        },
    ]
    path.write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")
    os.utime(path, (NOW - age_seconds, NOW - age_seconds))
    return str(path)


def session(session_id: str, data_path: str, *, status=SessionStatus.OPEN, commits=("abc",)) -> TrackedSession:
    return TrackedSession(
        id=session_id,
        agent="claude-code",
        agent_version="2.0.0",
        status=status,
        data_path=data_path,
        commits=[CommitRef(sha=sha, branch="main") for sha in commits],
    )


def test_missing_config_aborts_pass(tmp_path: Path) -> None:
    engine = SyncEngine(settings=ResidueSettings(), git=StubGit(tmp_path))
    result = engine.run()
    assert result.kind is ErrorKind.CONFIG_MISSING


def test_empty_queue_is_noop(tmp_path: Path) -> None:
    recorder = Recorder()
    engine, _ = make_engine(tmp_path, recorder)

    result = engine.run()

    assert result.ok
    assert recorder.requests == []
    assert not (tmp_path / ".residue" / "pending.json").exists()


def test_ended_session_is_relayed_and_removed(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace([session("c", data_path, status=SessionStatus.ENDED)])
    recorder = Recorder()
    engine, _ = make_engine(tmp_path, recorder)

    result = engine.run()

    assert result.ok
    assert result.value.synced == ["c"]
    assert store.list() == []
    assert recorder.paths() == [
        "POST /api/sessions/upload-url",
        "PUT /sessions/c.json",
        "PUT /search/c.txt",
        "POST /api/sessions",
    ]

    upload_url_request, raw_put, search_put, metadata = recorder.requests
    assert upload_url_request.headers["Authorization"] == "Bearer my-token"
    assert "Authorization" not in raw_put.headers
    assert raw_put.headers["Content-Type"] == "application/json"
    assert raw_put.content.decode("utf-8") == Path(data_path).read_text(encoding="utf-8")
    assert search_put.headers["Content-Type"] == "text/plain"
    search_text = search_put.content.decode("utf-8")
    assert "Session: c" in search_text
    assert "Repo: my-org/my-repo" in search_text
    assert "[human] Fix the login bug" in search_text
    assert "[tool] Read src/auth.py" in search_text
    assert "[files] src/app.py" in search_text
    assert "hmm" not in search_text

    body = json.loads(metadata.content)
    assert body["session"]["id"] == "c"
    assert body["session"]["status"] == "ended"
    assert body["session"]["first_message"] == "Fix the login bug"
    assert body["session"]["session_name"] == "fix-login-bug"
    assert "data" not in body["session"]
    assert body["commits"][0]["org"] == "my-org"
    assert body["commits"][0]["repo"] == "my-repo"
    assert body["commits"][0]["files"][0]["path"] == "src/app.py"


def test_open_session_is_relayed_and_kept(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace([session("o", data_path)])
    engine, _ = make_engine(tmp_path, Recorder())

    result = engine.run()

    assert result.value.synced == ["o"]
    sessions = store.list()
    assert [s.id for s in sessions] == ["o"]
    assert sessions[0].status is SessionStatus.OPEN


def test_session_without_commits_is_untouched(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    original = session("idle", data_path, commits=())
    store.replace([original])
    recorder = Recorder()
    engine, _ = make_engine(tmp_path, recorder)

    assert engine.run().ok

    assert store.list() == [original]
    assert recorder.requests == []


def test_stale_session_without_commits_is_ended_but_kept(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "x.log", age_seconds=31 * 60)
    store = QueueStore.for_project(tmp_path)
    store.replace([session("a", data_path, commits=())])
    engine, _ = make_engine(tmp_path, Recorder())

    assert engine.run().ok

    sessions = store.list()
    assert [s.id for s in sessions] == ["a"]
    assert sessions[0].status is SessionStatus.ENDED


def test_missing_transcript_drops_session(tmp_path: Path) -> None:
    store = QueueStore.for_project(tmp_path)
    store.replace([session("gone", str(tmp_path / "missing.jsonl"), status=SessionStatus.ENDED)])
    recorder = Recorder()
    engine, _ = make_engine(tmp_path, recorder)

    result = engine.run()

    assert result.value.dropped == ["gone"]
    assert store.list() == []
    assert recorder.requests == []


def test_upload_url_failure_keeps_session(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    original = session("b", data_path, status=SessionStatus.ENDED)
    store.replace([original])
    recorder = Recorder({"/api/sessions/upload-url": lambda r: httpx.Response(500)})
    engine, _ = make_engine(tmp_path, recorder)

    result = engine.run()

    assert result.ok
    assert result.value.failed == ["b"]
    assert store.list() == [original]
    assert recorder.paths() == ["POST /api/sessions/upload-url"]


def test_raw_upload_failure_keeps_session(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace([session("b", data_path, status=SessionStatus.ENDED)])
    recorder = Recorder({"/sessions/b.json": lambda r: httpx.Response(403)})
    engine, _ = make_engine(tmp_path, recorder)

    assert engine.run().ok

    assert [s.id for s in store.list()] == ["b"]
    assert "POST /api/sessions" not in recorder.paths()


def test_search_upload_failure_does_not_requeue(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace([session("c", data_path, status=SessionStatus.ENDED)])
    recorder = Recorder({"/search/c.txt": lambda r: httpx.Response(500)})
    engine, _ = make_engine(tmp_path, recorder)

    result = engine.run()

    assert result.value.synced == ["c"]
    assert store.list() == []


def test_metadata_failure_keeps_session(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace([session("c", data_path, status=SessionStatus.ENDED)])

    recorder = Recorder({"/api/sessions": lambda r: httpx.Response(500)})
    engine, _ = make_engine(tmp_path, recorder)

    result = engine.run()

    assert result.value.failed == ["c"]
    assert [s.id for s in store.list()] == ["c"]


def test_network_error_is_isolated_per_session(tmp_path: Path) -> None:
    first = write_transcript(tmp_path / "one.jsonl")
    second = write_transcript(tmp_path / "two.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace(
        [
            session("one", first, status=SessionStatus.ENDED),
            session("two", second, status=SessionStatus.ENDED),
        ]
    )

    def connect_error(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    recorder = Recorder({"/sessions/one.json": connect_error})
    engine, _ = make_engine(tmp_path, recorder)

    result = engine.run()

    assert result.value.failed == ["one"]
    assert result.value.synced == ["two"]
    assert [s.id for s in store.list()] == ["one"]


def test_broken_commit_is_skipped(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace([session("c", data_path, status=SessionStatus.ENDED, commits=("bad", "good"))])
    recorder = Recorder()
    engine, _ = make_engine(tmp_path, recorder, broken_meta={"bad"})

    assert engine.run().ok

    body = json.loads(recorder.requests[-1].content)
    assert [commit["sha"] for commit in body["commits"]] == ["good"]


def test_identity_failure_aborts_pass(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    original = session("c", data_path, status=SessionStatus.ENDED)
    store.replace([original])
    recorder = Recorder()
    engine, _ = make_engine(
        tmp_path, recorder, identity=Err(ErrorKind.GIT_ERROR, "no origin remote")
    )

    result = engine.run(remote_url="not a url")

    assert result.kind is ErrorKind.GIT_ERROR
    assert recorder.requests == []
    assert store.list() == [original]


def test_remote_url_override_is_forwarded(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    QueueStore.for_project(tmp_path).replace([session("c", data_path)])
    engine, git = make_engine(tmp_path, Recorder())

    engine.run(remote_url="git@github.com:other/thing.git")

    assert git.identity_overrides == ["git@github.com:other/thing.git"]


def test_sessions_added_during_pass_are_preserved(tmp_path: Path) -> None:
    data_path = write_transcript(tmp_path / "t.jsonl")
    store = QueueStore.for_project(tmp_path)
    store.replace([session("c", data_path, status=SessionStatus.ENDED)])

    def add_concurrently(request: httpx.Request) -> httpx.Response:
        store.add(session("late", data_path, commits=()))
        return httpx.Response(200, json={"ok": True})

    engine, _ = make_engine(tmp_path, Recorder({"/api/sessions": add_concurrently}))

    assert engine.run().ok
    assert [s.id for s in store.list()] == ["late"]


def test_reap_stale_sessions(tmp_path: Path) -> None:
    now = time.time()
    fresh = TrackedSession(id="fresh", agent="x", data_path=write_transcript(tmp_path / "fresh.jsonl"))
    os.utime(fresh.data_path, (now - 60, now - 60))
    stale = TrackedSession(id="stale", agent="x", data_path=write_transcript(tmp_path / "stale.jsonl"))
    os.utime(stale.data_path, (now - 31 * 60, now - 31 * 60))
    gone = TrackedSession(id="gone", agent="x", data_path=str(tmp_path / "missing.jsonl"))
    ended = TrackedSession(
        id="ended", agent="x", data_path=str(tmp_path / "missing.jsonl"), status=SessionStatus.ENDED
    )

    flipped = reap_stale_sessions([fresh, stale, gone, ended], now=now)

    assert flipped == ["stale", "gone"]
    assert fresh.status is SessionStatus.OPEN
    assert ended.status is SessionStatus.ENDED


def test_merge_concurrent_writes() -> None:
    before = {"kept": SessionStatus.OPEN, "reaped": SessionStatus.OPEN, "relayed": SessionStatus.ENDED}
    kept = TrackedSession(id="kept", agent="x", data_path="a", commits=[CommitRef(sha="1")])
    reaped = TrackedSession(id="reaped", agent="x", data_path="b", status=SessionStatus.ENDED)

    current = [
        TrackedSession(
            id="kept", agent="x", data_path="a", commits=[CommitRef(sha="1"), CommitRef(sha="2")]
        ),
        TrackedSession(id="reaped", agent="x", data_path="b"),
        TrackedSession(id="relayed", agent="x", data_path="c", status=SessionStatus.ENDED),
        TrackedSession(id="new", agent="x", data_path="d"),
    ]

    merged = merge_concurrent_writes(before, [kept, reaped], current)

    assert [s.id for s in merged] == ["kept", "reaped", "new"]
    assert [ref.sha for ref in merged[0].commits] == ["1", "2"]
    assert merged[1].status is SessionStatus.ENDED


def test_status_written_during_pass_wins_over_reaping() -> None:
    before = {"s": SessionStatus.ENDED}
    reaped = TrackedSession(id="s", agent="x", data_path="a", status=SessionStatus.ENDED)
    current = [TrackedSession(id="s", agent="x", data_path="a", status=SessionStatus.OPEN)]

    merged = merge_concurrent_writes(before, [reaped], current)

    assert merged[0].status is SessionStatus.OPEN
