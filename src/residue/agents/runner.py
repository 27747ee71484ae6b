"""Async runner for agent CLIs, used to detect the installed agent version."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .utils import sanitize_environment

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"


class AgentRunnerError(RuntimeError):
    """Base class for agent runner errors."""


class AgentNotFoundError(AgentRunnerError):
    """Raised when the agent executable cannot be located."""


@dataclass(slots=True)
class AgentExecutionResult:
    """Holds the outcome of an agent CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class AgentRunner:
    """Execute an agent CLI asynchronously."""

    def __init__(self, command: str = "claude", executable: Path | None = None) -> None:
        self._command = command
        self._executable_path = self._resolve_executable(command, executable)

    @staticmethod
    def _resolve_executable(command: str, explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentNotFoundError(f"Agent executable not found at {candidate}")

        binary = shutil.which(command)
        if binary is None:
            raise AgentNotFoundError(f"'{command}' executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> AgentExecutionResult:
        return await self._invoke("--version")

    async def _invoke(self, *args: str) -> AgentExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return AgentExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeAgentRunner(AgentRunner):
    """Test double that simulates agent CLI responses."""

    def __init__(self, responses: Iterable[AgentExecutionResult] | None = None) -> None:  # type: ignore[override]
        self._command = "fake-agent"
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-agent")

    async def _invoke(self, *args: str) -> AgentExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return AgentExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def detect_version(runner: AgentRunner | None = None, *, command: str = "claude") -> str:
    """Return the agent's reported version, or ``"unknown"`` when it cannot be determined."""

    try:
        runner = runner or AgentRunner(command)
        result = _run_sync(runner.version())
    except (AgentNotFoundError, OSError) as exc:
        logger.debug("Agent version detection failed: %s", exc)
        return UNKNOWN_VERSION

    if not result.ok:
        logger.debug("Agent version command exited with %s", result.returncode)
        return UNKNOWN_VERSION
    return result.stdout.strip() or UNKNOWN_VERSION
