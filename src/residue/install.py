"""Installs the git and agent hooks that feed the queue."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .queue import residue_dir
from .result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

POST_COMMIT_LINE = "residue capture >/dev/null 2>&1"
PRE_PUSH_LINE = 'residue sync --remote-url "$2"'
CLAUDE_HOOK_COMMAND = "residue hook claude-code"
GITIGNORE_ENTRY = ".residue/"


def install_git_hook(hooks_dir: Path, filename: str, line: str) -> Result[str]:
    """Create ``filename`` or append ``line`` to it. Returns a short status message."""

    hooks_dir = Path(hooks_dir)
    hook_path = hooks_dir / filename
    try:
        hooks_dir.mkdir(parents=True, exist_ok=True)
        if hook_path.exists():
            content = hook_path.read_text(encoding="utf-8")
            if line in content:
                return Ok(f"{filename}: already installed")
            hook_path.write_text(content.rstrip() + "\n" + line + "\n", encoding="utf-8")
            status = f"{filename}: appended"
        else:
            hook_path.write_text(f"#!/bin/sh\n{line}\n", encoding="utf-8")
            status = f"{filename}: created"
        hook_path.chmod(0o755)
    except OSError as exc:
        return Err(ErrorKind.IO_ERROR, f"Failed to install hook {filename}: {exc}")
    return Ok(status)


def ensure_gitignore(project_root: Path) -> Result[bool]:
    """Ignore the local state directory. Returns True when ``.gitignore`` changed."""

    path = Path(project_root) / ".gitignore"
    try:
        content = path.read_text(encoding="utf-8") if path.exists() else ""
        if ".residue" in content:
            return Ok(False)
        prefix = content if not content or content.endswith("\n") else content + "\n"
        path.write_text(prefix + GITIGNORE_ENTRY + "\n", encoding="utf-8")
    except OSError as exc:
        return Err(ErrorKind.IO_ERROR, f"Failed to update .gitignore: {exc}")
    return Ok(True)


def init_repository(project_root: Path, git_dir: Path) -> Result[list[str]]:
    messages: list[str] = []
    hooks_dir = Path(git_dir) / "hooks"
    for filename, line in (("post-commit", POST_COMMIT_LINE), ("pre-push", PRE_PUSH_LINE)):
        installed = install_git_hook(hooks_dir, filename, line)
        if not installed.ok:
            return installed
        messages.append(installed.value)

    try:
        residue_dir(project_root).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        return Err(ErrorKind.IO_ERROR, f"Failed to create .residue directory: {exc}")

    ignored = ensure_gitignore(project_root)
    if not ignored.ok:
        return ignored
    if ignored.value:
        messages.append(".gitignore: added .residue/")
    return Ok(messages)


def _has_residue_hook(entries: list[dict[str, Any]]) -> bool:
    return any(
        hook.get("command") == CLAUDE_HOOK_COMMAND
        for entry in entries
        for hook in entry.get("hooks", [])
    )


def setup_claude_code(project_root: Path) -> Result[bool]:
    """Register the lifecycle hook in ``.claude/settings.json``. Returns True when changed."""

    settings_path = Path(project_root) / ".claude" / "settings.json"
    settings: dict[str, Any] = {}
    try:
        if settings_path.exists():
            settings = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        return Err(ErrorKind.PARSE_ERROR, f"Failed to read {settings_path}: {exc}")

    hooks = settings.setdefault("hooks", {})
    changed = False
    for event_name, matcher in (("SessionStart", "startup"), ("SessionEnd", "")):
        entries = hooks.setdefault(event_name, [])
        if _has_residue_hook(entries):
            continue
        entries.append(
            {
                "matcher": matcher,
                "hooks": [{"type": "command", "command": CLAUDE_HOOK_COMMAND, "timeout": 10}],
            }
        )
        changed = True

    if not changed:
        return Ok(False)
    try:
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        settings_path.write_text(json.dumps(settings, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        return Err(ErrorKind.IO_ERROR, f"Failed to write {settings_path}: {exc}")
    return Ok(True)


__all__ = [
    "CLAUDE_HOOK_COMMAND",
    "POST_COMMIT_LINE",
    "PRE_PUSH_LINE",
    "ensure_gitignore",
    "init_repository",
    "install_git_hook",
    "setup_claude_code",
]
