"""Pi transcript extractor."""

from __future__ import annotations

from typing import Any

from .base import FIRST_MESSAGE_LIMIT, SearchLine, iter_jsonl, summarize_tool_input, text_blocks


def _messages(raw: str):
    for entry in iter_jsonl(raw):
        if entry.get("type") != "message":
            continue
        message = entry.get("message")
        if isinstance(message, dict):
            yield message


class PiExtractor:
    def search_lines(self, raw: str) -> list[SearchLine]:
        lines: list[SearchLine] = []
        for message in _messages(raw):
            role = message.get("role")
            content: Any = message.get("content")
            if role == "user":
                text = text_blocks(content)
                if text:
                    lines.append(SearchLine(role="human", text=text))
            elif role == "assistant":
                if isinstance(content, str):
                    if content.strip():
                        lines.append(SearchLine(role="assistant", text=content.strip()))
                    continue
                for block in content or []:
                    if not isinstance(block, dict):
                        continue
                    if block.get("type") == "text" and block.get("text"):
                        text = block["text"].strip()
                        if text:
                            lines.append(SearchLine(role="assistant", text=text))
                    elif block.get("type") == "toolCall" and block.get("name"):
                        lines.append(
                            SearchLine(
                                role="tool",
                                text=summarize_tool_input(block["name"], block.get("arguments")),
                            )
                        )
        return lines

    def first_message(self, raw: str) -> str | None:
        for message in _messages(raw):
            if message.get("role") != "user":
                continue
            text = text_blocks(message.get("content"))
            if text:
                return text[:FIRST_MESSAGE_LIMIT]
        return None

    def session_name(self, raw: str) -> str | None:
        for entry in iter_jsonl(raw):
            if entry.get("type") != "custom" or entry.get("customType") != "session-name":
                continue
            data = entry.get("data")
            if isinstance(data, dict) and isinstance(data.get("name"), str):
                return data["name"]
        return None
