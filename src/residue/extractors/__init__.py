"""Agent-specific transcript extractors used for enrichment and search text."""

from __future__ import annotations

from dataclasses import dataclass, field

from .base import Enrichment, SearchLine, TranscriptExtractor, summarize_tool_input
from .claude_code import ClaudeCodeExtractor
from .pi import PiExtractor

_EXTRACTORS: dict[str, TranscriptExtractor] = {
    "claude-code": ClaudeCodeExtractor(),
    "pi": PiExtractor(),
}


def get_extractor(agent: str) -> TranscriptExtractor | None:
    """Return the extractor registered for ``agent``, or ``None``."""

    return _EXTRACTORS.get(agent)


def extract_enrichment(agent: str, raw: str) -> Enrichment:
    extractor = get_extractor(agent)
    if extractor is None:
        return Enrichment()
    return Enrichment(
        first_message=extractor.first_message(raw),
        session_name=extractor.session_name(raw),
    )


@dataclass(slots=True)
class SearchMetadata:
    session_id: str
    agent: str
    commits: list[str] = field(default_factory=list)
    branch: str = ""
    repo: str = ""
    data_path: str | None = None
    first_message: str | None = None
    session_name: str | None = None


def build_search_text(metadata: SearchMetadata, lines: list[SearchLine]) -> str:
    """Render the search document: a metadata header, a blank line, then ``[role] text`` lines."""

    header = [
        f"Session: {metadata.session_id}",
        f"Agent: {metadata.agent}",
        f"Commits: {', '.join(metadata.commits)}" if metadata.commits else None,
        f"Branch: {metadata.branch}" if metadata.branch else None,
        f"Repo: {metadata.repo}" if metadata.repo else None,
        f"DataPath: {metadata.data_path}" if metadata.data_path else None,
        f"SessionName: {metadata.session_name}" if metadata.session_name else None,
        f"FirstMessage: {metadata.first_message}" if metadata.first_message else None,
    ]
    body = "\n".join(f"[{line.role}] {line.text}" for line in lines)
    return "\n".join(item for item in header if item) + "\n\n" + body + "\n"


def build_session_search_text(
    metadata: SearchMetadata, raw: str, changed_files: list[str]
) -> str | None:
    """Return the search document for a transcript, or ``None`` when nothing is extractable."""

    extractor = get_extractor(metadata.agent)
    if extractor is None:
        return None
    lines = extractor.search_lines(raw)
    if not lines:
        return None
    if changed_files:
        lines.append(SearchLine(role="files", text=" ".join(changed_files)))
    return build_search_text(metadata, lines)


__all__ = [
    "ClaudeCodeExtractor",
    "Enrichment",
    "PiExtractor",
    "SearchLine",
    "SearchMetadata",
    "TranscriptExtractor",
    "build_search_text",
    "build_session_search_text",
    "extract_enrichment",
    "get_extractor",
    "summarize_tool_input",
]
