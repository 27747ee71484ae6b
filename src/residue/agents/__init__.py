"""Agent CLI orchestration utilities."""

from .runner import (
    UNKNOWN_VERSION,
    AgentExecutionResult,
    AgentNotFoundError,
    AgentRunner,
    AgentRunnerError,
    FakeAgentRunner,
    detect_version,
)

__all__ = [
    "UNKNOWN_VERSION",
    "AgentExecutionResult",
    "AgentNotFoundError",
    "AgentRunner",
    "AgentRunnerError",
    "FakeAgentRunner",
    "detect_version",
]
