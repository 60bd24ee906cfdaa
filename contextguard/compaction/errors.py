"""Exceptions raised by the compaction pipeline."""


class CompactionError(Exception):
    """Base class for compaction failures."""


class ModelCallFailedError(CompactionError):
    """A summarization call failed (transport, timeout, auth or provider error)."""

    def __init__(self, message: str, model: str | None = None):
        super().__init__(message)
        self.model = model


class CompactionCancelledError(CompactionError):
    """The cycle's cancellation signal fired while work was in flight."""
