"""Environment helpers for the subprocesses residue spawns."""

from __future__ import annotations

import os
from typing import Mapping

_INTERPRETER_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# Exported by git to hook processes; they pin commands to the hooked repository.
_GIT_CONTEXT_VARS = {
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_PREFIX",
    "GIT_COMMON_DIR",
}


def sanitize_environment(
    additional: Mapping[str, str] | None = None, *, drop_git_context: bool = False
) -> dict[str, str]:
    """Return a copy of the environment without interpreter overrides.

    With ``drop_git_context`` the repository variables git exports to hooks
    are removed too, so a child ``git`` resolves the repository from its cwd.
    """

    blocked = _INTERPRETER_VARS | _GIT_CONTEXT_VARS if drop_git_context else _INTERPRETER_VARS
    env = {key: value for key, value in os.environ.items() if key not in blocked}
    if additional:
        env.update(additional)
    return env
