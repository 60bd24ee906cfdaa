"""Memory hooks around compaction: WIP storage, retrieval, continuous extraction."""

import asyncio
from typing import Any, Awaitable

from loguru import logger

from contextguard.compaction.errors import CompactionCancelledError
from contextguard.compaction.estimator import message_text
from contextguard.compaction.sections import format_memories_section
from contextguard.compaction.summarizer import await_with_cancel
from contextguard.memory.client import MemoryClient
from contextguard.memory.extractor import (
    extract_memory_query,
    extract_work_in_progress,
    resolve_agent_id,
)
from contextguard.memory.types import MemoryConfig, SessionMemoryState


class BackgroundTasks:
    """
    Fire-and-forget tasks with their own timeout.

    Tasks are detached from whatever scheduled them: their outcome never
    reaches the caller, and cancelling the caller does not cancel them.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any], name: str, timeout: float) -> asyncio.Task:
        async def _run() -> None:
            try:
                await asyncio.wait_for(coro, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"[{name}] Background task timed out after {timeout}s")
            except Exception as e:
                logger.warning(f"[{name}] Background error: {e}")

        task = asyncio.create_task(_run(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all in-flight tasks (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class MemoryProcessor:
    """
    Memory enrichment for a compaction cycle.

    Stores a work-in-progress snapshot in the background and retrieves
    related memories to append to the summary.
    """

    def __init__(
        self,
        config: MemoryConfig,
        client: MemoryClient | None = None,
        background: BackgroundTasks | None = None,
    ):
        self.config = config
        self.client = client or MemoryClient(config)
        self.background = background or BackgroundTasks()
        self.agent_id = resolve_agent_id(config.agent_id)

    async def _store_wip(self, messages: list[dict[str, Any]], modified_files: list[str]) -> None:
        wip = extract_work_in_progress(messages, modified_files)
        if wip is None:
            return
        if await self.client.store(wip.to_payload(self.agent_id)):
            logger.info(f"[memory-store] Saved WIP memory for agent {self.agent_id}")

    async def process(
        self,
        messages: list[dict[str, Any]],
        modified_files: list[str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """
        Store WIP (detached) and return a retrieved-memories section.

        Args:
            messages: Messages about to be compacted.
            modified_files: Files modified in that range.
            cancel_event: Compaction cycle's cancellation signal; the
                memory query is abandoned as soon as it fires.

        Returns:
            Memories section text, or "" if disabled, empty, failed, or cancelled.
        """
        if not self.config.enabled:
            return ""

        self.background.spawn(
            self._store_wip(messages, list(modified_files or [])),
            name="memory-store",
            timeout=self.config.request_timeout_seconds,
        )

        query = extract_memory_query(messages)
        if not query:
            return ""
        try:
            memories = await await_with_cancel(self.client.query(query), cancel_event)
        except CompactionCancelledError:
            logger.info("[memory-retrieval] Cancelled, skipping memories")
            return ""
        if memories:
            logger.info(f"[memory-retrieval] Injecting {len(memories)} memories")
        return format_memories_section(memories)

    def store_summary(self, summary: str) -> None:
        """Publish a finished compaction summary in the background."""
        if not self.config.enabled or not summary:
            return
        self.background.spawn(
            self.client.store_summary(self.agent_id, summary),
            name="memory-summary",
            timeout=self.config.request_timeout_seconds,
        )


class MemoryExtractor:
    """
    Continuous memory extraction driven by per-session state.

    Every N turns the buffered transcript is sent to the service's
    /extract endpoint in the background.
    """

    def __init__(
        self,
        config: MemoryConfig,
        client: MemoryClient | None = None,
        background: BackgroundTasks | None = None,
    ):
        self.config = config
        self.client = client or MemoryClient(config)
        self.background = background or BackgroundTasks()
        self.agent_id = resolve_agent_id(config.agent_id)

    def new_state(self) -> SessionMemoryState:
        return SessionMemoryState(max_messages=self.config.max_buffer_messages)

    def on_input(self, state: SessionMemoryState, text: str) -> None:
        """Record a user message."""
        if text and len(text) > 5:
            state.record("Human", text)

    def on_turn_end(self, state: SessionMemoryState, message: dict[str, Any]) -> bool:
        """
        Record an assistant message and schedule extraction when due.

        Returns:
            True if an extraction was scheduled.
        """
        state.turn_count += 1
        text = message_text(message)
        if text:
            state.record("Assistant", text)

        if state.turn_count - state.last_extracted_turn < self.config.extract_every_n_turns:
            return False
        state.last_extracted_turn = state.turn_count

        if not (self.config.enabled and self.config.extract_enabled):
            return False
        if state.extracting or len(state.buffer) < 3:
            return False

        state.extracting = True
        self.background.spawn(
            self._extract(state),
            name="memory-extractor",
            timeout=self.config.extract_timeout_seconds,
        )
        return True

    async def _extract(self, state: SessionMemoryState) -> None:
        try:
            memory_id = await self.client.extract(state.transcript(), self.agent_id)
            if memory_id is not None:
                logger.info(
                    f"[memory-extractor] Stored extraction for {self.agent_id} "
                    f"(turn {state.turn_count}, id={memory_id})"
                )
        finally:
            state.extracting = False
