"""Long-term memory integration for compaction."""

from contextguard.memory.client import MemoryClient
from contextguard.memory.extractor import (
    extract_memory_query,
    extract_work_in_progress,
    resolve_agent_id,
)
from contextguard.memory.processor import BackgroundTasks, MemoryExtractor, MemoryProcessor
from contextguard.memory.types import MemoryConfig, SessionMemoryState, WorkInProgress

__all__ = [
    "MemoryClient",
    "MemoryProcessor",
    "MemoryExtractor",
    "BackgroundTasks",
    "MemoryConfig",
    "SessionMemoryState",
    "WorkInProgress",
    "extract_work_in_progress",
    "extract_memory_query",
    "resolve_agent_id",
]
