"""Transcript loading and compaction preparation."""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from contextguard.compaction.estimator import estimate_message_tokens, estimate_messages_tokens
from contextguard.compaction.types import (
    DEFAULT_RESERVE_TOKENS,
    CompactionPreparation,
    FileOperations,
)

# Tool names whose "path" argument is tracked for the file lists
READ_TOOLS = {"read_file"}
EDIT_TOOLS = {"edit_file"}
WRITE_TOOLS = {"write_file"}


def load_transcript(path: Path) -> list[dict[str, Any]]:
    """
    Load messages from a JSONL transcript.

    Metadata lines (``{"_type": "metadata"}``) are skipped, as are corrupt lines.

    Args:
        path: Transcript file.

    Returns:
        List of message dicts in file order.
    """
    messages: list[dict[str, Any]] = []
    corrupt_lines = 0

    with open(path, encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                corrupt_lines += 1
                if corrupt_lines <= 3:
                    logger.warning(f"Skipped corrupt line {line_num} in {path}")
                continue
            if not isinstance(data, dict) or data.get("_type") == "metadata":
                continue
            messages.append(data)

    if corrupt_lines:
        logger.warning(f"{path}: loaded with {corrupt_lines} corrupt line(s) skipped")
    return messages


def collect_file_operations(messages: list[dict[str, Any]]) -> FileOperations:
    """Gather file paths from file tool calls made by the assistant."""
    ops = FileOperations()
    for msg in messages:
        if msg.get("role") != "assistant":
            continue
        for tc in msg.get("tool_calls") or []:
            func = (tc.get("function") if isinstance(tc, dict) else None) or {}
            if not isinstance(func, dict):
                continue
            name = func.get("name")
            try:
                args = json.loads(func.get("arguments") or "{}")
            except (json.JSONDecodeError, TypeError):
                continue
            path = args.get("path") if isinstance(args, dict) else None
            if not isinstance(path, str) or not path:
                continue
            if name in READ_TOOLS:
                ops.read.add(path)
            elif name in EDIT_TOOLS:
                ops.edited.add(path)
            elif name in WRITE_TOOLS:
                ops.written.add(path)
    return ops


def prepare_compaction(
    messages: list[dict[str, Any]],
    keep_recent_tokens: int,
    previous_summary: str | None = None,
    reserve_tokens: int = DEFAULT_RESERVE_TOKENS,
) -> CompactionPreparation | None:
    """
    Decide which messages to summarize and which to keep verbatim.

    The newest messages worth keep_recent_tokens are kept. If the cut falls
    inside a turn, the turn's head becomes the turn prefix and the cycle is
    marked as a split turn.

    Returns:
        CompactionPreparation, or None when nothing would be compacted.
    """
    kept_tokens = 0
    cut = len(messages)
    while cut > 0 and kept_tokens < keep_recent_tokens:
        cut -= 1
        kept_tokens += estimate_message_tokens(messages[cut])

    if cut <= 0:
        return None

    history = messages[:cut]
    turn_prefix: list[dict[str, Any]] = []
    if messages[cut].get("role") != "user":
        turn_start = next(
            (i for i in range(cut - 1, -1, -1) if messages[i].get("role") == "user"),
            None,
        )
        if turn_start is not None:
            history = messages[:turn_start]
            turn_prefix = messages[turn_start:cut]

    compacted = [*history, *turn_prefix]
    return CompactionPreparation(
        messages_to_summarize=history,
        turn_prefix_messages=turn_prefix,
        is_split_turn=bool(turn_prefix),
        first_kept_entry_id=str(messages[cut].get("id", cut)),
        tokens_before=estimate_messages_tokens(messages),
        previous_summary=previous_summary,
        file_ops=collect_file_operations(compacted),
        reserve_tokens=reserve_tokens,
    )
