"""Command line entry point for Residue."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from .agents import detect_version
from .commands import capture_commit, clear_sessions, end_session, start_session
from .config import ResidueSettings, get_settings, write_config
from .git import GitRepository
from .install import init_repository, setup_claude_code
from .lifecycle import CorrelationStore, LifecycleAdapter, parse_hook_event
from .queue import QueueError, QueueStore
from .result import Err, Ok, Result
from .sync import SyncEngine

logger = logging.getLogger("residue")


def configure_logging(level: str) -> None:
    """Send all diagnostics to stderr; stdout carries machine-readable output only."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _settings() -> ResidueSettings:
    try:
        return get_settings()
    except (ValidationError, ValueError) as exc:
        logger.warning("Ignoring invalid configuration: %s", exc)
        return ResidueSettings.model_construct()


def _project_store(git: GitRepository, settings: ResidueSettings) -> Result[tuple[Path, QueueStore]]:
    root = git.project_root()
    if not root.ok:
        return root
    return Ok((root.value, QueueStore.for_project(root.value, lock_timeout=settings.lock_timeout)))


def _finish(result: Result, *, hook: bool = False) -> int:
    """Map a command result to an exit code; hook commands never fail their host."""

    if result.ok:
        return 0
    if hook:
        logger.warning("%s", result.detail)
        return 0
    logger.error("%s", result.detail)
    return 1


def cmd_login(args: argparse.Namespace) -> int:
    result = write_config(args.url, args.token)
    if result.ok:
        logger.info("Logged in to %s", args.url.rstrip("/"))
    return _finish(result)


def cmd_init(args: argparse.Namespace) -> int:
    git = GitRepository()
    root = git.project_root()
    if not root.ok:
        return _finish(root)
    git_dir = git.git_dir()
    if not git_dir.ok:
        return _finish(git_dir)
    result = init_repository(root.value, git_dir.value)
    if result.ok:
        for message in result.value:
            logger.info("%s", message)
    return _finish(result)


def cmd_setup(args: argparse.Namespace) -> int:
    root = GitRepository().project_root()
    if not root.ok:
        return _finish(root)
    result = setup_claude_code(root.value)
    if result.ok:
        if result.value:
            logger.info("Configured residue hooks in .claude/settings.json")
        else:
            logger.info("residue hooks already configured in .claude/settings.json")
    return _finish(result)


def cmd_session_start(args: argparse.Namespace) -> int:
    project = _project_store(GitRepository(), _settings())
    if not project.ok:
        return _finish(project)
    _, store = project.value
    result = start_session(
        store, agent=args.agent, data_path=args.data, agent_version=args.agent_version
    )
    if result.ok:
        # Only the id goes to stdout so wrapping scripts can capture it.
        sys.stdout.write(result.value)
        sys.stdout.flush()
        logger.info("Session started for %s", args.agent)
    return _finish(result)


def cmd_session_end(args: argparse.Namespace) -> int:
    project = _project_store(GitRepository(), _settings())
    if not project.ok:
        return _finish(project)
    _, store = project.value
    result = end_session(store, args.id)
    if result.ok:
        logger.info("Session %s ended", args.id)
    return _finish(result)


def cmd_clear(args: argparse.Namespace) -> int:
    project = _project_store(GitRepository(), _settings())
    if not project.ok:
        return _finish(project)
    _, store = project.value
    result = clear_sessions(store, args.id)
    if result.ok:
        if args.id and not result.value:
            logger.info("Session %s not found in pending queue.", args.id)
        elif not result.value:
            logger.info("No pending sessions to clear.")
        elif args.id:
            logger.info("Cleared session %s.", args.id)
        else:
            logger.info("Cleared %d pending session(s).", len(result.value))
    return _finish(result)


def cmd_capture(args: argparse.Namespace) -> int:
    git = GitRepository()
    project = _project_store(git, _settings())
    if not project.ok:
        return _finish(project, hook=True)
    _, store = project.value
    return _finish(capture_commit(store, git), hook=True)


def cmd_hook(args: argparse.Namespace) -> int:
    event = parse_hook_event(sys.stdin.read())
    if not event.ok:
        return _finish(event, hook=True)

    settings = _settings()
    project = _project_store(GitRepository(event.value.cwd), settings)
    if not project.ok:
        return _finish(project, hook=True)
    root, store = project.value
    adapter = LifecycleAdapter(
        store,
        CorrelationStore.for_project(root),
        agent=args.agent,
        version_probe=lambda: detect_version(command=settings.agent_command),
    )
    return _finish(adapter.handle(event.value), hook=True)


def _run_sync(args: argparse.Namespace) -> Result:
    result = SyncEngine().run(remote_url=getattr(args, "remote_url", None))
    if result.ok:
        report = result.value
        logger.debug(
            "Sync finished",
            extra={
                "synced": len(report.synced),
                "dropped": len(report.dropped),
                "failed": len(report.failed),
                "remaining": report.remaining,
            },
        )
    return result


def cmd_sync(args: argparse.Namespace) -> int:
    return _finish(_run_sync(args), hook=True)


def cmd_push(args: argparse.Namespace) -> int:
    return _finish(_run_sync(args))


def cmd_status(args: argparse.Namespace) -> int:
    project = _project_store(GitRepository(), _settings())
    if not project.ok:
        return _finish(project)
    _, store = project.value
    try:
        sessions = store.list()
    except QueueError as exc:
        return _finish(Err.from_exception(exc))

    if args.json:
        print(json.dumps([session.model_dump(mode="json") for session in sessions], indent=2))
    else:
        for session in sessions:
            print(
                f"{session.id} [{session.status.value}] {session.agent} "
                f"commits={len(session.commits)} -> {session.data_path}"
            )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="residue",
        description="Capture AI agent conversations linked to git commits.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Save worker URL and auth token")
    login.add_argument("--url", required=True, help="Worker base URL")
    login.add_argument("--token", required=True, help="Auth token")
    login.set_defaults(handler=cmd_login)

    init = subparsers.add_parser("init", help="Install git hooks in the current repo")
    init.set_defaults(handler=cmd_init)

    setup = subparsers.add_parser("setup", help="Configure agent hooks")
    setup.add_argument("agent", choices=["claude-code"])
    setup.set_defaults(handler=cmd_setup)

    start = subparsers.add_parser("session-start", help="Start tracking an agent session")
    start.add_argument("--agent", required=True, help="Agent name, e.g. claude-code")
    start.add_argument("--data", required=True, help="Path to the agent's transcript file")
    start.add_argument("--agent-version", default="unknown", help="Agent version")
    start.set_defaults(handler=cmd_session_start)

    end = subparsers.add_parser("session-end", help="Mark an agent session as ended")
    end.add_argument("--id", required=True, help="Session id returned by session-start")
    end.set_defaults(handler=cmd_session_end)

    capture = subparsers.add_parser("capture", help="Tag pending sessions with the current commit")
    capture.set_defaults(handler=cmd_capture)

    hook = subparsers.add_parser("hook", help="Handle an agent lifecycle hook event on stdin")
    hook.add_argument("agent", choices=["claude-code"])
    hook.set_defaults(handler=cmd_hook)

    sync = subparsers.add_parser("sync", help="Upload pending sessions to the worker")
    sync.add_argument("--remote-url", default=None, help="Remote URL used to resolve org/repo")
    sync.set_defaults(handler=cmd_sync)

    push = subparsers.add_parser("push", help="Upload pending sessions (manual trigger)")
    push.add_argument("--remote-url", default=None, help="Remote URL used to resolve org/repo")
    push.set_defaults(handler=cmd_push)

    clear = subparsers.add_parser("clear", help="Remove queued sessions without uploading them")
    clear.add_argument("--id", default=None, help="Only remove this session")
    clear.set_defaults(handler=cmd_clear)

    status = subparsers.add_parser("status", help="List locally queued sessions")
    status.add_argument("--json", action="store_true", help="Emit JSON")
    status.set_defaults(handler=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(_settings().log_level)
    handler: Callable[[argparse.Namespace], int] = args.handler
    exit_code = handler(args)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
