"""Tests for pruning, chunking and adaptive chunk sizing."""

import pytest

from contextguard.compaction.estimator import (
    MESSAGE_OVERHEAD_TOKENS,
    estimate_message_tokens,
    estimate_messages_tokens,
)
from contextguard.compaction.pruning import (
    chunk_messages_by_max_tokens,
    compute_adaptive_chunk_ratio,
    compute_max_history_tokens,
    is_oversized_for_summary,
    normalize_parts,
    prune_history_for_context_share,
    split_messages_by_token_share,
    truncate_message_to_tokens,
)
from contextguard.compaction.types import BASE_CHUNK_RATIO, MIN_CHUNK_RATIO


def text_message(tokens: int, role: str = "user", tag: str = "x") -> dict:
    """A message whose heuristic estimate is exactly `tokens`."""
    return {"role": role, "content": tag * ((tokens - MESSAGE_OVERHEAD_TOKENS) * 4)}


def numbered(count: int, tokens: int) -> list[dict]:
    return [{**text_message(tokens), "id": str(i)} for i in range(count)]


# ── Budget ──────────────────────────────────────────────────────────


class TestHistoryBudget:
    def test_safety_margin_applied(self):
        assert compute_max_history_tokens(10_000, 0.5) == 4500

    def test_rounds_down(self):
        assert compute_max_history_tokens(1_001, 0.5) == 450


# ── Splitting ───────────────────────────────────────────────────────


class TestSplitByTokenShare:
    def test_empty(self):
        assert split_messages_by_token_share([], 3) == []

    def test_single_part(self):
        messages = numbered(4, 100)
        assert split_messages_by_token_share(messages, 1) == [messages]

    def test_equal_shares(self):
        messages = numbered(12, 500)
        chunks = split_messages_by_token_share(messages, 3)
        assert [len(c) for c in chunks] == [4, 4, 4]

    def test_more_parts_than_messages(self):
        messages = numbered(2, 100)
        chunks = split_messages_by_token_share(messages, 5)
        assert len(chunks) == 2

    def test_normalize_parts(self):
        assert normalize_parts(0, 10) == 1
        assert normalize_parts(4, 10) == 4
        assert normalize_parts(4, 2) == 2


# ── Pruning ─────────────────────────────────────────────────────────


class TestPruneHistory:
    def test_drops_oldest_until_fit(self):
        # Budget 2700: one 2000-token group fits, two do not
        messages = numbered(3, 2000)
        result = prune_history_for_context_share(messages, 6000, 0.5, parts=3)

        assert result.budget_tokens == 2700
        assert result.dropped_chunks == 2
        assert result.dropped_messages == 2
        assert result.dropped_tokens == 4000
        assert result.kept_tokens == 2000
        assert [m["id"] for m in result.messages] == ["2"]
        assert [m["id"] for m in result.dropped_messages_list] == ["0", "1"]

    def test_drops_whole_groups(self):
        messages = numbered(12, 500)
        result = prune_history_for_context_share(messages, 6000, 0.5, parts=3)

        assert result.dropped_chunks == 2
        assert result.dropped_messages == 8
        assert [m["id"] for m in result.messages] == ["8", "9", "10", "11"]

    def test_nothing_dropped_when_fits(self):
        messages = numbered(4, 500)
        result = prune_history_for_context_share(messages, 10_000, 0.5)

        assert result.dropped_chunks == 0
        assert result.dropped_messages_list == []
        assert result.messages == messages
        assert result.kept_tokens == 2000

    def test_newest_group_kept_even_if_over_budget(self):
        messages = numbered(2, 5000)
        result = prune_history_for_context_share(messages, 1000, 0.5, parts=2)

        assert result.dropped_chunks == 1
        assert [m["id"] for m in result.messages] == ["1"]
        assert result.kept_tokens > result.budget_tokens

    def test_empty_history(self):
        result = prune_history_for_context_share([], 10_000)
        assert result.messages == []
        assert result.dropped_chunks == 0

    @pytest.mark.parametrize(
        "sizes,parts",
        [
            ([100, 3000, 50, 50, 2000, 700], 2),
            ([1000] * 9, 4),
            ([10, 20, 4000, 30], 3),
            ([5000], 2),
        ],
    )
    def test_kept_and_dropped_reconstruct_input(self, sizes, parts):
        messages = [{**text_message(s), "id": str(i)} for i, s in enumerate(sizes)]
        result = prune_history_for_context_share(messages, 4000, 0.5, parts=parts)

        assert result.dropped_messages_list + result.messages == messages
        assert result.dropped_messages == len(result.dropped_messages_list)
        assert result.kept_tokens == estimate_messages_tokens(result.messages)
        assert result.dropped_tokens == estimate_messages_tokens(result.dropped_messages_list)


# ── Chunking ────────────────────────────────────────────────────────


class TestChunkByMaxTokens:
    def test_respects_ceiling(self):
        messages = numbered(10, 300)
        chunks = chunk_messages_by_max_tokens(messages, 1000)

        assert [len(c) for c in chunks] == [3, 3, 3, 1]
        for chunk in chunks:
            assert estimate_messages_tokens(chunk) <= 1000

    def test_preserves_order(self):
        messages = numbered(7, 250)
        chunks = chunk_messages_by_max_tokens(messages, 600)
        assert [m for c in chunks for m in c] == messages

    def test_oversized_message_truncated_not_dropped(self):
        messages = [
            {**text_message(100), "id": "a"},
            {**text_message(5000, role="tool", tag="y"), "id": "big"},
            {**text_message(100), "id": "b"},
        ]
        chunks = chunk_messages_by_max_tokens(messages, 1000)
        flat = [m for c in chunks for m in c]

        assert [m["id"] for m in flat] == ["a", "big", "b"]
        big = flat[1]
        assert estimate_message_tokens(big) <= 1000
        assert "truncated from ~5000 tokens" in big["content"]
        assert big["role"] == "tool"
        # Input untouched
        assert len(messages[1]["content"]) == 4996 * 4

    def test_empty(self):
        assert chunk_messages_by_max_tokens([], 1000) == []


class TestOversized:
    def test_single_message(self):
        assert is_oversized_for_summary(text_message(1001), 1000)
        assert not is_oversized_for_summary(text_message(1000), 1000)

    def test_block_of_messages(self):
        block = [text_message(600), text_message(600)]
        assert is_oversized_for_summary(block, 1000)

    def test_truncate_drops_tool_calls(self):
        message = {
            "role": "assistant",
            "content": [{"type": "text", "text": "z" * 8000}],
            "tool_calls": [{"id": "1", "function": {"name": "exec", "arguments": "{}"}}],
        }
        truncated = truncate_message_to_tokens(message, 200)

        assert "tool_calls" not in truncated
        assert isinstance(truncated["content"], str)
        assert estimate_message_tokens(truncated) <= 200


# ── Adaptive chunk ratio ────────────────────────────────────────────


class TestAdaptiveChunkRatio:
    def test_empty(self):
        assert compute_adaptive_chunk_ratio([], 10_000) == BASE_CHUNK_RATIO

    def test_small_messages_use_base(self):
        assert compute_adaptive_chunk_ratio(numbered(20, 100), 10_000) == BASE_CHUNK_RATIO

    def test_large_messages_reduce_ratio(self):
        ratio = compute_adaptive_chunk_ratio(numbered(3, 1000), 10_000)
        assert ratio == pytest.approx(BASE_CHUNK_RATIO - 2 * 1000 / 0.9 / 10_000)

    def test_huge_messages_hit_floor(self):
        ratio = compute_adaptive_chunk_ratio(numbered(2, 100_000), 128_000)
        assert ratio == pytest.approx(MIN_CHUNK_RATIO)

    def test_bounded_and_deterministic(self):
        for tokens in (10, 500, 1500, 4000, 50_000):
            messages = numbered(5, tokens)
            first = compute_adaptive_chunk_ratio(messages, 20_000)
            assert MIN_CHUNK_RATIO <= first <= BASE_CHUNK_RATIO
            assert compute_adaptive_chunk_ratio(messages, 20_000) == first
