"""Compaction system for context management."""

from contextguard.compaction.estimator import (
    estimate_tokens,
    estimate_message_tokens,
    estimate_messages_tokens,
)
from contextguard.compaction.context_window import resolve_context_window_tokens
from contextguard.compaction.errors import (
    CompactionError,
    CompactionCancelledError,
    ModelCallFailedError,
)
from contextguard.compaction.summarizer import summarize_in_stages
from contextguard.compaction.pruning import (
    compute_adaptive_chunk_ratio,
    compute_max_history_tokens,
    is_oversized_for_summary,
    prune_history_for_context_share,
    split_messages_by_token_share,
    chunk_messages_by_max_tokens,
)
from contextguard.compaction.service import CompactionService
from contextguard.compaction.types import (
    BASE_CHUNK_RATIO,
    MIN_CHUNK_RATIO,
    SAFETY_MARGIN,
    CompactionBudget,
    CompactionConfig,
    CompactionDetails,
    CompactionPreparation,
    FileOperations,
    PruneResult,
    SummaryArtifact,
)

__all__ = [
    # Estimator
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    # Context window
    "resolve_context_window_tokens",
    # Errors
    "CompactionError",
    "CompactionCancelledError",
    "ModelCallFailedError",
    # Summarizer
    "summarize_in_stages",
    # Pruning
    "compute_adaptive_chunk_ratio",
    "compute_max_history_tokens",
    "is_oversized_for_summary",
    "prune_history_for_context_share",
    "split_messages_by_token_share",
    "chunk_messages_by_max_tokens",
    # Service
    "CompactionService",
    # Types
    "BASE_CHUNK_RATIO",
    "MIN_CHUNK_RATIO",
    "SAFETY_MARGIN",
    "CompactionBudget",
    "CompactionConfig",
    "CompactionDetails",
    "CompactionPreparation",
    "FileOperations",
    "PruneResult",
    "SummaryArtifact",
]
