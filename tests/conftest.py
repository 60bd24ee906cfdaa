"""Shared test configuration."""

import pytest

from contextguard.compaction import estimator


@pytest.fixture(autouse=True)
def heuristic_tokenizer(monkeypatch):
    """Use the 4-chars-per-token estimate so token arithmetic is exact and offline."""
    monkeypatch.setenv("CONTEXTGUARD_TOKENIZER", "heuristic")
    estimator.reset_encoder()
    yield
    estimator.reset_encoder()
