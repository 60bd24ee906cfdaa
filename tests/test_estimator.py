"""Tests for token estimation."""

import pytest
import tiktoken

from contextguard.compaction import estimator
from contextguard.compaction.estimator import (
    MESSAGE_OVERHEAD_TOKENS,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
    message_text,
    truncate_text_to_tokens,
)


def text_message(tokens: int, role: str = "user") -> dict:
    """A message whose heuristic estimate is exactly `tokens`."""
    return {"role": role, "content": "x" * ((tokens - MESSAGE_OVERHEAD_TOKENS) * 4)}


# ── estimate_tokens ─────────────────────────────────────────────────


class TestEstimateTokens:
    def test_empty(self):
        assert estimate_tokens("") == 0

    def test_heuristic_rounds_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_truncate_text(self):
        assert truncate_text_to_tokens("abcdefghij", 2) == "abcdefgh"
        assert truncate_text_to_tokens("abc", 10) == "abc"
        assert truncate_text_to_tokens("abc", 0) == ""


class TestDegradedTokenizer:
    def test_falls_back_when_encoding_unavailable(self, monkeypatch):
        def boom(name):
            raise RuntimeError("no network")

        monkeypatch.setenv("CONTEXTGUARD_TOKENIZER", "tiktoken")
        monkeypatch.setattr(tiktoken, "get_encoding", boom)
        estimator.reset_encoder()

        assert estimate_tokens("abcdefgh") == 2

    def test_failed_load_is_not_retried(self, monkeypatch):
        attempts = []

        def boom(name):
            attempts.append(name)
            raise RuntimeError("no network")

        monkeypatch.setenv("CONTEXTGUARD_TOKENIZER", "tiktoken")
        monkeypatch.setattr(tiktoken, "get_encoding", boom)
        estimator.reset_encoder()

        estimate_tokens("one")
        estimate_tokens("two")
        assert len(attempts) == 1


# ── estimate_message_tokens ─────────────────────────────────────────


class TestEstimateMessageTokens:
    def test_string_content(self):
        assert estimate_message_tokens({"role": "user", "content": "x" * 40}) == 14

    def test_empty_message_costs_overhead(self):
        assert estimate_message_tokens({"role": "assistant", "content": ""}) == MESSAGE_OVERHEAD_TOKENS

    def test_only_text_blocks_count(self):
        message = {
            "role": "user",
            "content": [
                {"type": "text", "text": "x" * 8},
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
                {"type": "text", "text": "y" * 4},
            ],
        }
        assert estimate_message_tokens(message) == MESSAGE_OVERHEAD_TOKENS + 3

    def test_tool_calls_count(self):
        message = {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {"id": "1", "function": {"name": "read", "arguments": '{"p":"a"}'}},
            ],
        }
        # overhead + name (1) + arguments (3) + call overhead (10)
        assert estimate_message_tokens(message) == MESSAGE_OVERHEAD_TOKENS + 1 + 3 + 10

    @pytest.mark.parametrize("function", [None, "read", {"name": None, "arguments": {"p": "a"}}])
    def test_malformed_tool_call_costs_overhead(self, function):
        message = {"role": "assistant", "content": "", "tool_calls": [{"id": "1", "function": function}]}
        assert estimate_message_tokens(message) == MESSAGE_OVERHEAD_TOKENS + 10

    @pytest.mark.parametrize("tool_calls", [None, "read", {"id": "1"}])
    def test_non_list_tool_calls_ignored(self, tool_calls):
        message = {"role": "assistant", "content": "", "tool_calls": tool_calls}
        assert estimate_message_tokens(message) == MESSAGE_OVERHEAD_TOKENS

    @pytest.mark.parametrize("text", [None, 42, ["x"]])
    def test_non_string_text_block(self, text):
        message = {"role": "user", "content": [{"type": "text", "text": text}, {"type": "text", "text": "y" * 4}]}
        assert estimate_message_tokens(message) == MESSAGE_OVERHEAD_TOKENS + 1

    def test_sum_over_messages(self):
        messages = [text_message(100), text_message(50)]
        assert estimate_messages_tokens(messages) == 150

    def test_monotonic(self):
        messages = []
        previous = estimate_messages_tokens(messages)
        for tokens in (4, 10, 300, 4):
            messages.append(text_message(tokens))
            current = estimate_messages_tokens(messages)
            assert current >= previous
            previous = current


class TestMessageText:
    def test_joins_text_blocks(self):
        message = {
            "role": "user",
            "content": [{"type": "text", "text": "a"}, {"type": "image"}, {"type": "text", "text": "b"}],
        }
        assert message_text(message) == "a\nb"

    def test_missing_content(self):
        assert message_text({"role": "user"}) == ""

    @pytest.mark.parametrize("content", [None, 42, {"text": "x"}])
    def test_unsupported_content(self, content):
        assert message_text({"role": "user", "content": content}) == ""
