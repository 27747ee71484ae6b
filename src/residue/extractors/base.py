"""Shared types and helpers for transcript extractors."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator, Literal, Protocol

SearchRole = Literal["human", "assistant", "tool", "files"]

FIRST_MESSAGE_LIMIT = 200
COMMAND_PREVIEW_LIMIT = 120


@dataclass(slots=True)
class SearchLine:
    role: SearchRole
    text: str


@dataclass(slots=True)
class Enrichment:
    """Human-facing fields derived from a transcript."""

    first_message: str | None = None
    session_name: str | None = None


class TranscriptExtractor(Protocol):
    """Agent-specific reader for raw transcript text."""

    def search_lines(self, raw: str) -> list[SearchLine]:
        ...

    def first_message(self, raw: str) -> str | None:
        ...

    def session_name(self, raw: str) -> str | None:
        ...


def iter_jsonl(raw: str) -> Iterator[dict[str, Any]]:
    """Yield JSON objects from a JSONL document, skipping malformed lines."""

    for line in raw.split("\n"):
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            continue
        if isinstance(entry, dict):
            yield entry


def text_blocks(content: Any) -> str:
    """Join the ``text`` blocks of a message content value."""

    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    return "\n".join(
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
    ).strip()


def summarize_tool_input(name: str, tool_input: dict[str, Any] | None) -> str:
    """Produce a one-line summary of a tool invocation."""

    if not tool_input:
        return name

    for key in ("path", "file_path", "filePath", "filename"):
        value = tool_input.get(key)
        if isinstance(value, str):
            return f"{name} {value}"

    for key in ("command", "cmd"):
        value = tool_input.get(key)
        if isinstance(value, str):
            if len(value) > COMMAND_PREVIEW_LIMIT:
                value = value[:COMMAND_PREVIEW_LIMIT] + "..."
            return f"{name} {value}"

    for key in ("query", "search", "pattern"):
        value = tool_input.get(key)
        if isinstance(value, str):
            return f"{name} {value}"

    return name


__all__ = [
    "Enrichment",
    "FIRST_MESSAGE_LIMIT",
    "SearchLine",
    "TranscriptExtractor",
    "iter_jsonl",
    "summarize_tool_input",
    "text_blocks",
]
