"""Auxiliary sections appended to a compaction summary."""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from contextguard.compaction.estimator import message_text
from contextguard.compaction.types import FileOperations

MAX_TOOL_FAILURES = 8
MAX_TOOL_FAILURE_CHARS = 240
MAX_MEMORY_CHARS = 400

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ToolFailure:
    """A failed tool call found in the compacted range."""
    tool_call_id: str
    tool_name: str
    summary: str
    meta: str | None = None


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[: max(0, max_chars - 3)]}..."


def _format_failure_meta(details: Any) -> str | None:
    """Render status/exit code from tool result details."""
    if not isinstance(details, dict):
        return None
    parts = []
    status = details.get("status")
    if isinstance(status, str):
        parts.append(f"status={status}")
    exit_code = details.get("exit_code", details.get("exitCode"))
    if isinstance(exit_code, int) and not isinstance(exit_code, bool):
        parts.append(f"exitCode={exit_code}")
    return " ".join(parts) or None


def collect_tool_failures(messages: list[dict[str, Any]]) -> list[ToolFailure]:
    """
    Collect failed tool results, one per tool call id, in transcript order.

    Args:
        messages: Messages being compacted (history plus turn prefix).

    Returns:
        List of ToolFailure entries.
    """
    failures: list[ToolFailure] = []
    seen: set[str] = set()

    for message in messages:
        if not isinstance(message, dict) or message.get("role") != "tool":
            continue
        if message.get("is_error") is not True:
            continue
        tool_call_id = message.get("tool_call_id")
        if not isinstance(tool_call_id, str) or not tool_call_id or tool_call_id in seen:
            continue
        seen.add(tool_call_id)

        name = message.get("name")
        tool_name = name if isinstance(name, str) and name.strip() else "tool"
        meta = _format_failure_meta(message.get("details"))
        normalized = _WHITESPACE_RE.sub(" ", message_text(message)).strip()
        summary = _truncate(
            normalized or ("failed" if meta else "failed (no output)"),
            MAX_TOOL_FAILURE_CHARS,
        )
        failures.append(ToolFailure(tool_call_id, tool_name, summary, meta))

    return failures


def format_tool_failures_section(failures: list[ToolFailure]) -> str:
    """Render failures as a '## Tool Failures' section, or "" when there are none."""
    if not failures:
        return ""
    lines = []
    for failure in failures[:MAX_TOOL_FAILURES]:
        meta = f" ({failure.meta})" if failure.meta else ""
        lines.append(f"- {failure.tool_name}{meta}: {failure.summary}")
    if len(failures) > MAX_TOOL_FAILURES:
        lines.append(f"- ...and {len(failures) - MAX_TOOL_FAILURES} more")
    return "\n\n## Tool Failures\n" + "\n".join(lines)


def compute_file_lists(file_ops: FileOperations) -> tuple[list[str], list[str]]:
    """Split tracked files into (read-only, modified), both sorted."""
    modified = set(file_ops.edited) | set(file_ops.written)
    read_files = sorted(f for f in file_ops.read if f not in modified)
    return read_files, sorted(modified)


def format_file_operations(read_files: list[str], modified_files: list[str]) -> str:
    """Render file lists as tagged blocks, or "" when both are empty."""
    sections = []
    if read_files:
        sections.append("<read-files>\n" + "\n".join(read_files) + "\n</read-files>")
    if modified_files:
        sections.append(
            "<modified-files>\n" + "\n".join(modified_files) + "\n</modified-files>"
        )
    if not sections:
        return ""
    return "\n\n" + "\n\n".join(sections)


def _memory_date(created_at: Any) -> str:
    if not isinstance(created_at, str) or not created_at:
        return "unknown"
    try:
        return datetime.fromisoformat(created_at.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return created_at[:10]


def format_memories_section(memories: list[dict[str, Any]]) -> str:
    """Render retrieved memories as a tagged block, or "" when there are none."""
    if not memories:
        return ""
    lines = [
        f"- ({_memory_date(m.get('created_at'))}) "
        f"{str(m.get('content', ''))[:MAX_MEMORY_CHARS]}"
        for m in memories
    ]
    return "\n\n<retrieved-memories>\n" + "\n".join(lines) + "\n</retrieved-memories>"
