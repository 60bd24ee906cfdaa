"""Per-session compaction state."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from contextguard.compaction.estimator import message_text
from contextguard.compaction.service import CompactionService
from contextguard.compaction.types import CompactionPreparation, SummaryArtifact
from contextguard.memory.processor import MemoryExtractor
from contextguard.memory.types import SessionMemoryState
from contextguard.session.transcript import prepare_compaction


@dataclass
class CompactionSession:
    """
    State one conversation carries between compaction cycles.

    The previous summary is the only thing that crosses from one cycle to
    the next; memory bookkeeping lives here too so no two sessions share it.
    """

    key: str
    previous_summary: str | None = None
    compaction_count: int = 0
    memory_state: SessionMemoryState = field(default_factory=SessionMemoryState)

    def prepare(
        self,
        messages: list[dict[str, Any]],
        keep_recent_tokens: int,
        reserve_tokens: int,
    ) -> CompactionPreparation | None:
        """Build the next cycle's input, seeded with this session's previous summary."""
        return prepare_compaction(
            messages,
            keep_recent_tokens,
            previous_summary=self.previous_summary,
            reserve_tokens=reserve_tokens,
        )

    def observe(self, extractor: MemoryExtractor, message: dict[str, Any]) -> bool:
        """
        Feed one transcript message to continuous memory extraction.

        User messages are buffered; each assistant message ends a turn.

        Returns:
            True if the message scheduled a background extraction.
        """
        role = message.get("role")
        if role == "user":
            extractor.on_input(self.memory_state, message_text(message))
        elif role == "assistant":
            return extractor.on_turn_end(self.memory_state, message)
        return False

    def apply(self, artifact: SummaryArtifact) -> None:
        """Thread a finished cycle's summary into the next one."""
        self.previous_summary = artifact.summary
        self.compaction_count += 1

    async def compact(
        self,
        service: CompactionService,
        preparation: CompactionPreparation,
        custom_instructions: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SummaryArtifact:
        """Run one cycle and record its summary."""
        artifact = await service.compact(
            preparation,
            custom_instructions=custom_instructions,
            cancel_event=cancel_event,
        )
        self.apply(artifact)
        return artifact
