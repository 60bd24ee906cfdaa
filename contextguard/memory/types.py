"""Types for the long-term memory integration."""

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field


class MemoryConfig(BaseModel):
    """Long-term memory service configuration."""
    enabled: bool = False
    api_url: str = "http://localhost:8000"
    api_key: str = ""
    agent_id: str = ""  # Falls back to SWARM_AGENT_ID / hostname
    query_limit: int = 3
    min_similarity: float = 0.7
    request_timeout_seconds: float = 5.0
    extract_enabled: bool = True
    extract_every_n_turns: int = Field(default=3, ge=1)
    extract_timeout_seconds: float = 25.0
    max_buffer_messages: int = 30


@dataclass
class WorkInProgress:
    """Snapshot of the task in flight, stored before history is compacted."""

    task: str
    progress: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    context: dict[str, str] = field(default_factory=dict)
    files_modified: list[str] = field(default_factory=list)
    commands_run: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    error_states: list[str] = field(default_factory=list)

    def has_content(self) -> bool:
        return any((
            self.progress,
            self.pending,
            self.context,
            self.files_modified,
            self.commands_run,
            self.decisions,
            self.next_steps,
            self.error_states,
        ))

    def to_content(self) -> str:
        """One-line description used as the memory's searchable text."""
        lines = [f"[COMPACTION WIP] Task: {self.task}"]
        if self.progress:
            lines.append(f"Progress: {'; '.join(self.progress)}")
        if self.pending:
            lines.append(f"Pending: {'; '.join(self.pending)}")
        if self.context:
            lines.append("Context: " + ", ".join(f"{k}={v}" for k, v in self.context.items()))
        return " | ".join(lines)

    def to_payload(self, agent_id: str) -> dict[str, Any]:
        """Build the /memory/store request body; empty granular fields are omitted."""
        payload: dict[str, Any] = {
            "agent_id": agent_id,
            "content": self.to_content(),
            "tags": ["compaction", "wip", "auto"],
        }
        for key in ("files_modified", "commands_run", "decisions", "next_steps", "error_states"):
            values = getattr(self, key)
            if values:
                payload[key] = list(values)
        return payload


@dataclass
class BufferedMessage:
    role: str
    text: str


@dataclass
class SessionMemoryState:
    """
    Per-session bookkeeping for continuous memory extraction.

    One instance per conversation session; never shared between sessions.
    """

    max_messages: int = 30
    turn_count: int = 0
    last_extracted_turn: int = -1
    extracting: bool = False
    buffer: deque[BufferedMessage] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.buffer = deque(self.buffer, maxlen=self.max_messages)

    def record(self, role: str, text: str) -> None:
        self.buffer.append(BufferedMessage(role=role, text=text))

    def transcript(self, last: int = 20, max_chars: int = 600) -> str:
        """Render the most recent buffered messages for the /extract endpoint."""
        recent = list(self.buffer)[-last:]
        return "\n\n".join(f"{m.role}: {m.text[:max_chars]}" for m in recent)
