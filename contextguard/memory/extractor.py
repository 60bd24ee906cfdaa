"""Heuristic extraction of work-in-progress from a transcript."""

import os
import re
import socket
from typing import Any

from contextguard.compaction.estimator import message_text
from contextguard.memory.types import WorkInProgress

MAX_PROGRESS = 5
MAX_PENDING = 3
MAX_COMMANDS = 5
MAX_DECISIONS = 3
MAX_ERRORS = 3

_PROGRESS_PATTERNS = [
    re.compile(
        r"(?:created?|set up|configured?|installed?|deployed?|built|wrote|updated?|fixed|added)"
        r"\s+([^.!?\n]{10,80})",
        re.IGNORECASE,
    ),
    re.compile(r"(?:✅|done|complete|finished|success)\s*:?\s*([^.!?\n]{10,80})", re.IGNORECASE),
]

_PENDING_PATTERNS = [
    re.compile(r"(?:need to|should|will|must|todo|pending|next)\s+([^.!?\n]{10,80})", re.IGNORECASE),
    re.compile(r"(?:⚠️|waiting|blocked)\s*:?\s*([^.!?\n]{10,80})", re.IGNORECASE),
]

_COMMAND_PATTERNS = [
    re.compile(r"```(?:bash|sh|shell)?\s*\n([^`]+)\n```", re.IGNORECASE),
    re.compile(r"\$\s+([a-z][^\n]{5,80})", re.IGNORECASE),
    re.compile(r"(?:run|ran|execute[d]?|running)\s+[`\"]([^`\"\n]{5,80})[`\"]", re.IGNORECASE),
    re.compile(r"(?:systemctl|curl|ssh|npm|pip|apt|brew|docker|git)\s+[^\n]{5,60}", re.IGNORECASE),
]

_DECISION_PATTERNS = [
    re.compile(
        r"(?:decided?|chose?|choosing|picked|selected?|opting?)\s+(?:to\s+)?([^.!?\n]{10,100})",
        re.IGNORECASE,
    ),
    re.compile(r"(?:because|since|reason)\s+([^.!?\n]{10,100})", re.IGNORECASE),
    re.compile(r"(?:instead of|rather than)\s+([^.!?\n]{10,80})", re.IGNORECASE),
]

_ERROR_PATTERNS = [
    re.compile(
        r"(?:error|failed?|failure|issue|problem|bug|broken|crash)\s*:?\s*([^.!?\n]{10,100})",
        re.IGNORECASE,
    ),
    re.compile(r"(?:❌|⚠️)\s*([^.!?\n]{10,100})"),
    re.compile(r"(?:doesn't|didn't|won't|can't|cannot)\s+([^.!?\n]{10,80})", re.IGNORECASE),
]

_CONTEXT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("url", re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)),
    ("password", re.compile(r"(?:password|pass|pwd)\s*[:=]\s*[\"']?([^\s\"']{4,})", re.IGNORECASE)),
    ("username", re.compile(r"(?:user(?:name)?)\s*[:=]\s*[\"']?([^\s\"']+)", re.IGNORECASE)),
    ("ip", re.compile(r"\b(\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}(?::\d+)?)\b")),
]

# Hostname fragments -> agent id
_HOST_AGENT_IDS = [
    (("swarm-host",), "max"),
    (("code-embed", "jetson"), "g"),
    (("macbook", "mbp"), "nix"),
    (("prod",), "percy"),
]
DEFAULT_AGENT_ID = "damon"


def resolve_agent_id(configured: str | None = None) -> str:
    """Pick the agent id: configuration, then SWARM_AGENT_ID, then hostname."""
    if configured:
        return configured
    env_id = os.getenv("SWARM_AGENT_ID")
    if env_id:
        return env_id
    hostname = (os.getenv("HOSTNAME") or socket.gethostname() or "").lower()
    for fragments, agent_id in _HOST_AGENT_IDS:
        if any(fragment in hostname for fragment in fragments):
            return agent_id
    return DEFAULT_AGENT_ID


def _collect(
    patterns: list[re.Pattern[str]],
    text: str,
    seen: set[str],
    out: list[str],
    limit: int,
    max_chars: int,
) -> list[str]:
    """Append new, de-duplicated first-group matches to out; returns the items added."""
    added = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            if len(out) >= limit:
                return added
            item = (match.group(1) or "").strip()
            if len(item) <= 10 or item.lower() in seen:
                continue
            seen.add(item.lower())
            out.append(item[:max_chars])
            added.append(item[:max_chars])
    return added


def _collect_commands(text: str, seen: set[str], out: list[str]) -> None:
    for pattern in _COMMAND_PATTERNS:
        for match in pattern.finditer(text):
            if len(out) >= MAX_COMMANDS:
                return
            command = (match.group(1) if pattern.groups else match.group(0)).strip()
            if len(command) <= 5 or command.lower() in seen:
                continue
            seen.add(command.lower())
            # Keep only the first line of multi-line code blocks
            out.append(command.split("\n")[0][:100])


def extract_work_in_progress(
    messages: list[dict[str, Any]],
    modified_files: list[str] | None = None,
) -> WorkInProgress | None:
    """
    Build a WorkInProgress snapshot from the messages about to be compacted.

    The task is the last user message longer than 20 characters; the other
    fields come from pattern matches over assistant messages.

    Returns:
        WorkInProgress, or None if there is no task or nothing worth storing.
    """
    task = ""
    for msg in reversed(messages):
        if isinstance(msg, dict) and msg.get("role") == "user":
            text = message_text(msg)
            if len(text) > 20:
                task = text[:200]
                break
    if not task:
        return None

    wip = WorkInProgress(task=task)
    seen_progress: set[str] = set()
    seen_pending: set[str] = set()
    seen_commands: set[str] = set()
    seen_decisions: set[str] = set()
    seen_errors: set[str] = set()

    for msg in messages:
        if not isinstance(msg, dict) or msg.get("role") != "assistant":
            continue
        text = message_text(msg)
        if not text:
            continue

        _collect(_PROGRESS_PATTERNS, text, seen_progress, wip.progress, MAX_PROGRESS, 100)
        pending = _collect(_PENDING_PATTERNS, text, seen_pending, wip.pending, MAX_PENDING, 100)
        wip.next_steps.extend(pending)
        _collect_commands(text, seen_commands, wip.commands_run)
        _collect(_DECISION_PATTERNS, text, seen_decisions, wip.decisions, MAX_DECISIONS, 150)
        _collect(_ERROR_PATTERNS, text, seen_errors, wip.error_states, MAX_ERRORS, 100)

        for key, pattern in _CONTEXT_PATTERNS:
            if key in wip.context:
                continue
            match = pattern.search(text)
            if not match:
                continue
            value = match.group(1) if pattern.groups else match.group(0)
            if key == "password":
                # Never store a credential verbatim
                wip.context[key] = f"{value[:4]}..."
            else:
                wip.context[key] = value[:50]

    if modified_files:
        wip.files_modified = list(modified_files[:10])
        wip.progress.append(f"Modified: {', '.join(modified_files[:3])}")

    if not wip.has_content():
        return None
    return wip


def extract_memory_query(messages: list[dict[str, Any]]) -> str:
    """Build a retrieval query from the text of the last ten messages."""
    parts = []
    for msg in messages[-10:]:
        if isinstance(msg, dict) and isinstance(msg.get("content"), str):
            parts.append(msg["content"][:300])
    return " ".join(parts)[:1000]
