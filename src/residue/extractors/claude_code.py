"""Claude Code transcript extractor.

Claude Code writes one JSON entry per line. Only user prompts, assistant
text and tool invocations are kept for search; thinking blocks, tool output
and token metadata are skipped.
"""

from __future__ import annotations

from typing import Any

from .base import FIRST_MESSAGE_LIMIT, SearchLine, iter_jsonl, summarize_tool_input, text_blocks


def _user_text(entry: dict[str, Any]) -> str:
    content = (entry.get("message") or {}).get("content")
    if isinstance(content, list) and any(
        isinstance(block, dict) and block.get("type") == "tool_result" for block in content
    ):
        return ""
    return text_blocks(content)


def _is_conversation(entry: dict[str, Any]) -> bool:
    return not entry.get("isMeta") and not entry.get("isSidechain")


class ClaudeCodeExtractor:
    def search_lines(self, raw: str) -> list[SearchLine]:
        lines: list[SearchLine] = []
        for entry in iter_jsonl(raw):
            if not _is_conversation(entry):
                continue

            if entry.get("type") == "user":
                text = _user_text(entry)
                if text:
                    lines.append(SearchLine(role="human", text=text))
            elif entry.get("type") == "assistant":
                content = (entry.get("message") or {}).get("content")
                if not isinstance(content, list):
                    continue
                for block in content:
                    if not isinstance(block, dict):
                        continue
                    if block.get("type") == "text" and block.get("text"):
                        text = block["text"].strip()
                        if text:
                            lines.append(SearchLine(role="assistant", text=text))
                    elif block.get("type") == "tool_use" and block.get("name"):
                        lines.append(
                            SearchLine(
                                role="tool",
                                text=summarize_tool_input(block["name"], block.get("input")),
                            )
                        )
        return lines

    def first_message(self, raw: str) -> str | None:
        for entry in iter_jsonl(raw):
            if not _is_conversation(entry) or entry.get("type") != "user":
                continue
            text = _user_text(entry)
            if text:
                return text[:FIRST_MESSAGE_LIMIT]
        return None

    def session_name(self, raw: str) -> str | None:
        # The session slug is carried on progress entries.
        for entry in iter_jsonl(raw):
            if entry.get("type") == "progress" and isinstance(entry.get("slug"), str):
                return entry["slug"]
        return None
