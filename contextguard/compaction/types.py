"""Types for compaction system."""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field


# Constants
BASE_CHUNK_RATIO = 0.4
MIN_CHUNK_RATIO = 0.15
SAFETY_MARGIN = 0.9  # Applied to every derived ceiling to absorb estimation error

DEFAULT_PARTS = 2
DEFAULT_CONTEXT_TOKENS = 128_000
DEFAULT_RESERVE_TOKENS = 20_000
DEFAULT_MAX_HISTORY_SHARE = 0.5

FALLBACK_SUMMARY = (
    "Summary unavailable due to context limits. Older messages were truncated."
)

TURN_PREFIX_INSTRUCTIONS = (
    "This summary covers the prefix of a split turn. Focus on the original request,"
    " early progress, and any details needed to understand the retained suffix."
)

SPLIT_TURN_SEPARATOR = "\n\n---\n\n**Turn Context (split turn):**\n\n"


class CompactionConfig(BaseModel):
    """Context compaction configuration."""
    reserve_tokens_floor: int = Field(default=DEFAULT_RESERVE_TOKENS, ge=1)
    max_history_share: float = Field(default=DEFAULT_MAX_HISTORY_SHARE, ge=0.1, le=0.9)
    context_window: int | None = None  # Overrides model lookup when set
    parts: int = Field(default=DEFAULT_PARTS, ge=1)
    call_timeout_seconds: float = 60.0
    fallback_summary: str = FALLBACK_SUMMARY
    turn_prefix_instructions: str = TURN_PREFIX_INSTRUCTIONS


@dataclass(frozen=True)
class CompactionBudget:
    """Token budget for a single compaction cycle."""

    context_window_tokens: int
    reserve_tokens: int
    max_history_share: float
    safety_margin: float = SAFETY_MARGIN

    @property
    def max_history_tokens(self) -> int:
        """Tokens that new (not yet summarized) content may occupy."""
        return int(self.context_window_tokens * self.max_history_share * self.safety_margin)


@dataclass
class PruneResult:
    """Outcome of dropping old chunks to fit the history budget."""

    messages: list[dict[str, Any]]
    dropped_messages_list: list[dict[str, Any]] = field(default_factory=list)
    dropped_chunks: int = 0
    dropped_messages: int = 0
    dropped_tokens: int = 0
    kept_tokens: int = 0
    budget_tokens: int = 0


@dataclass
class FileOperations:
    """Files touched during the compacted range, as tracked by the caller."""

    read: set[str] = field(default_factory=set)
    edited: set[str] = field(default_factory=set)
    written: set[str] = field(default_factory=set)


@dataclass
class CompactionPreparation:
    """
    Everything the calling session hands to one compaction cycle.

    The message lists are borrowed for the duration of the cycle and never
    mutated.
    """

    messages_to_summarize: list[dict[str, Any]]
    turn_prefix_messages: list[dict[str, Any]] = field(default_factory=list)
    is_split_turn: bool = False
    first_kept_entry_id: str | None = None
    tokens_before: int | None = None
    previous_summary: str | None = None
    file_ops: FileOperations = field(default_factory=FileOperations)
    reserve_tokens: int = DEFAULT_RESERVE_TOKENS


@dataclass
class CompactionDetails:
    """File lists passed through to the caller unchanged."""

    read_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)


@dataclass
class SummaryArtifact:
    """Result of a compaction cycle."""

    summary: str
    first_kept_entry_id: str | None
    tokens_before: int | None
    details: CompactionDetails = field(default_factory=CompactionDetails)
    fallback: bool = False
    dropped_chunks: int = 0
    dropped_messages: int = 0
