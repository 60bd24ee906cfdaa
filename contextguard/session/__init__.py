"""Session-side compaction helpers."""

from contextguard.session.state import CompactionSession
from contextguard.session.transcript import (
    collect_file_operations,
    load_transcript,
    prepare_compaction,
)

__all__ = [
    "CompactionSession",
    "collect_file_operations",
    "load_transcript",
    "prepare_compaction",
]
