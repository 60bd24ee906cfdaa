"""Compaction service for managing context compression."""

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger

from contextguard.compaction.context_window import resolve_context_window_tokens
from contextguard.compaction.errors import CompactionCancelledError
from contextguard.compaction.estimator import estimate_messages_tokens
from contextguard.compaction.pruning import (
    compute_adaptive_chunk_ratio,
    prune_history_for_context_share,
)
from contextguard.compaction.sections import (
    collect_tool_failures,
    compute_file_lists,
    format_file_operations,
    format_tool_failures_section,
)
from contextguard.compaction.summarizer import summarize_in_stages
from contextguard.compaction.types import (
    SPLIT_TURN_SEPARATOR,
    CompactionBudget,
    CompactionConfig,
    CompactionDetails,
    CompactionPreparation,
    SummaryArtifact,
)
from contextguard.providers.base import LLMProvider

if TYPE_CHECKING:
    from contextguard.memory.processor import MemoryProcessor

CredentialResolver = Callable[[str], "str | None | Awaitable[str | None]"]


class CompactionService:
    """
    Runs one compaction cycle per call to compact().

    Handles:
    - Pruning old history when new content would starve the history budget
    - Separate summarization of anything pruned away
    - Staged summarization of the retained history and split-turn prefix
    - A fallback summary whenever summarization cannot complete

    Holds no per-cycle or per-session state; concurrent cycles for different
    sessions may share one instance.
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None,
        config: CompactionConfig | None = None,
        credential_resolver: CredentialResolver | None = None,
        memory: "MemoryProcessor | None" = None,
    ):
        """
        Initialize the compaction service.

        Args:
            provider: LLM provider for summarization.
            model: Model to use for summarization (None disables summarization).
            config: Compaction configuration.
            credential_resolver: Returns the API key for a model; a missing
                key routes the cycle to the fallback summary.
            memory: Optional memory processor for retrieved-memory notes.
        """
        self.provider = provider
        self.model = model
        self.config = config or CompactionConfig()
        self.credential_resolver = credential_resolver or (lambda _model: provider.api_key)
        self.memory = memory

    def should_compact(self, total_tokens: int, context_window: int | None = None) -> bool:
        """
        Check if compaction should be triggered.

        Args:
            total_tokens: Current total tokens in context.
            context_window: Window to compare against (resolved from the model if omitted).

        Returns:
            True if compaction is needed.
        """
        window = context_window or resolve_context_window_tokens(
            self.model, self.config.context_window
        )
        return total_tokens > window - self.config.reserve_tokens_floor

    async def _resolve_credential(self, model: str) -> str | None:
        key = self.credential_resolver(model)
        if inspect.isawaitable(key):
            key = await key
        return key or None

    def compute_budget(self, reserve_tokens: int) -> CompactionBudget:
        """Budget for one cycle; recomputed every time."""
        return CompactionBudget(
            context_window_tokens=resolve_context_window_tokens(
                self.model, self.config.context_window
            ),
            reserve_tokens=max(1, int(reserve_tokens)),
            max_history_share=self.config.max_history_share,
        )

    async def compact(
        self,
        preparation: CompactionPreparation,
        custom_instructions: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SummaryArtifact:
        """
        Compact messages by generating a summary.

        Never raises for summarization problems: any failure yields the
        fallback summary plus the auxiliary sections.

        Args:
            preparation: Messages and bookkeeping supplied by the session.
            custom_instructions: Optional custom instructions for summarization.
            cancel_event: Cancellation signal for every model call in the cycle.

        Returns:
            SummaryArtifact for the caller to replace the compacted range with.
        """
        turn_prefix = list(preparation.turn_prefix_messages or [])
        all_messages = [*preparation.messages_to_summarize, *turn_prefix]

        read_files, modified_files = compute_file_lists(preparation.file_ops)
        details = CompactionDetails(read_files=read_files, modified_files=modified_files)
        sections = (
            format_tool_failures_section(collect_tool_failures(all_messages))
            + format_file_operations(read_files, modified_files)
        )
        if self.memory is not None:
            try:
                sections += await self.memory.process(
                    all_messages, modified_files, cancel_event=cancel_event
                )
            except Exception as e:
                logger.warning(f"Compaction: memory enrichment failed: {e}")

        def fallback() -> SummaryArtifact:
            return SummaryArtifact(
                summary=f"{self.config.fallback_summary}{sections}",
                first_kept_entry_id=preparation.first_kept_entry_id,
                tokens_before=preparation.tokens_before,
                details=details,
                fallback=True,
            )

        if not self.model:
            logger.warning("Compaction: no summarization model configured, using fallback")
            return fallback()

        try:
            api_key = await self._resolve_credential(self.model)
        except Exception as e:
            logger.warning(f"Compaction: credential lookup for {self.model} failed: {e}")
            return fallback()
        if not api_key:
            logger.warning(f"Compaction: no credential for {self.model}, using fallback")
            return fallback()

        try:
            budget = self.compute_budget(preparation.reserve_tokens)
            context_window = budget.context_window_tokens
            messages_to_summarize = list(preparation.messages_to_summarize)
            dropped_summary: str | None = None
            dropped_chunks = 0
            dropped_messages = 0

            summarize_kwargs: dict[str, Any] = {
                "provider": self.provider,
                "model": self.model,
                "reserve_tokens": budget.reserve_tokens,
                "context_window": context_window,
                "api_key": api_key,
                "cancel_event": cancel_event,
                "call_timeout": self.config.call_timeout_seconds,
            }

            tokens_before = preparation.tokens_before
            if tokens_before is not None:
                summarizable_tokens = estimate_messages_tokens(all_messages)
                new_content_tokens = max(0, int(tokens_before - summarizable_tokens))
                logger.debug(
                    f"Compaction budget: window={context_window}, "
                    f"new content={new_content_tokens}, "
                    f"history budget={budget.max_history_tokens}"
                )

                if new_content_tokens > budget.max_history_tokens:
                    pruned = prune_history_for_context_share(
                        messages_to_summarize,
                        context_window,
                        budget.max_history_share,
                        parts=self.config.parts,
                    )
                    if pruned.dropped_chunks > 0:
                        new_content_ratio = new_content_tokens / context_window * 100
                        logger.warning(
                            f"Compaction safeguard: new content uses {new_content_ratio:.1f}% "
                            f"of context; dropped {pruned.dropped_chunks} older chunk(s) "
                            f"({pruned.dropped_messages} messages) to fit history budget"
                        )
                        messages_to_summarize = pruned.messages
                        dropped_chunks = pruned.dropped_chunks
                        dropped_messages = pruned.dropped_messages
                        dropped_summary = await self._summarize_dropped(
                            pruned.dropped_messages_list,
                            context_window,
                            custom_instructions,
                            preparation.previous_summary,
                            summarize_kwargs,
                        )

            # One chunk size for history and prefix so both pools are sized alike
            adaptive_ratio = compute_adaptive_chunk_ratio(
                [*messages_to_summarize, *turn_prefix],
                context_window,
            )
            max_chunk_tokens = max(1, int(context_window * adaptive_ratio))

            # Use dropped summary as previous summary if available
            effective_previous = dropped_summary or preparation.previous_summary

            summary = await summarize_in_stages(
                messages_to_summarize,
                max_chunk_tokens=max_chunk_tokens,
                custom_instructions=custom_instructions,
                previous_summary=effective_previous,
                **summarize_kwargs,
            )

            if preparation.is_split_turn and turn_prefix:
                prefix_summary = await summarize_in_stages(
                    turn_prefix,
                    max_chunk_tokens=max_chunk_tokens,
                    custom_instructions=self.config.turn_prefix_instructions,
                    previous_summary=None,
                    **summarize_kwargs,
                )
                summary = f"{summary}{SPLIT_TURN_SEPARATOR}{prefix_summary}"

        except Exception as e:
            logger.warning(f"Compaction summarization failed: {e}")
            return fallback()

        logger.info(
            f"Compaction complete: {len(all_messages)} messages -> "
            f"{len(summary)} chars of summary"
        )
        return SummaryArtifact(
            summary=f"{summary}{sections}",
            first_kept_entry_id=preparation.first_kept_entry_id,
            tokens_before=preparation.tokens_before,
            details=details,
            dropped_chunks=dropped_chunks,
            dropped_messages=dropped_messages,
        )

    async def _summarize_dropped(
        self,
        dropped: list[dict[str, Any]],
        context_window: int,
        custom_instructions: str | None,
        previous_summary: str | None,
        summarize_kwargs: dict[str, Any],
    ) -> str | None:
        """Summarize pruned history on its own; failures only cost that context."""
        if not dropped:
            return None
        try:
            dropped_ratio = compute_adaptive_chunk_ratio(dropped, context_window)
            return await summarize_in_stages(
                dropped,
                max_chunk_tokens=max(1, int(context_window * dropped_ratio)),
                custom_instructions=custom_instructions,
                previous_summary=previous_summary,
                **summarize_kwargs,
            )
        except CompactionCancelledError:
            raise
        except Exception as e:
            logger.warning(f"Compaction safeguard: failed to summarize dropped messages: {e}")
            return None
