"""Token estimation for messages."""

import math
import os
from typing import Any

import tiktoken
from loguru import logger

# Approximate overhead of role/formatting per message
MESSAGE_OVERHEAD_TOKENS = 4

# Heuristic used when the tokenizer cannot be loaded
CHARS_PER_TOKEN = 4

# Cache the encoder; False marks "unavailable, use heuristic"
_encoder: tiktoken.Encoding | None | bool = None


def _get_encoder() -> tiktoken.Encoding | None:
    """Get or create the tiktoken encoder, or None when degraded to the heuristic."""
    global _encoder
    if _encoder is None:
        if os.getenv("CONTEXTGUARD_TOKENIZER", "tiktoken").lower() == "heuristic":
            _encoder = False
        else:
            try:
                # cl100k_base is close enough for GPT-4 and Claude family models
                _encoder = tiktoken.get_encoding("cl100k_base")
            except Exception as e:
                logger.warning(
                    f"Tokenizer unavailable, estimating {CHARS_PER_TOKEN} chars/token: {e}"
                )
                _encoder = False
    return _encoder or None


def reset_encoder() -> None:
    """Forget the cached encoder so the next estimate re-reads the environment."""
    global _encoder
    _encoder = None


def estimate_tokens(text: str) -> int:
    """
    Estimate the number of tokens in a text string.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count.
    """
    if not text:
        return 0

    encoder = _get_encoder()
    if encoder is None:
        return math.ceil(len(text) / CHARS_PER_TOKEN)
    return len(encoder.encode(text, disallowed_special=()))


def truncate_text_to_tokens(text: str, max_tokens: int) -> str:
    """Cut text down to at most max_tokens tokens."""
    if max_tokens <= 0 or not text:
        return ""

    encoder = _get_encoder()
    if encoder is None:
        return text[: max_tokens * CHARS_PER_TOKEN]

    tokens = encoder.encode(text, disallowed_special=())
    if len(tokens) <= max_tokens:
        return text
    return encoder.decode(tokens[:max_tokens])


def message_text(message: dict[str, Any]) -> str:
    """Join the text parts of a message's content."""
    content = message.get("content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict)
            and part.get("type") == "text"
            and isinstance(part.get("text"), str)
        )
    return ""


def estimate_message_tokens(message: dict[str, Any]) -> int:
    """
    Estimate tokens for a single message.

    Only text content counts; images and other blocks still occupy a
    message slot but contribute nothing beyond the per-message overhead.

    Args:
        message: Message dict with role and content.

    Returns:
        Estimated token count.
    """
    tokens = MESSAGE_OVERHEAD_TOKENS

    content = message.get("content", "")
    if isinstance(content, str):
        tokens += estimate_tokens(content)
    elif isinstance(content, list):
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                text = part.get("text")
                if isinstance(text, str):
                    tokens += estimate_tokens(text)

    # Tool calls are serialized as text in the prompt
    tool_calls = message.get("tool_calls")
    if not isinstance(tool_calls, list):
        tool_calls = []
    for tc in tool_calls:
        if isinstance(tc, dict):
            func = tc.get("function") or {}
            if not isinstance(func, dict):
                func = {}
            name = func.get("name")
            if isinstance(name, str):
                tokens += estimate_tokens(name)
            arguments = func.get("arguments")
            if isinstance(arguments, str):
                tokens += estimate_tokens(arguments)
            tokens += 10  # Overhead

    return tokens


def estimate_messages_tokens(messages: list[dict[str, Any]]) -> int:
    """
    Estimate total tokens for a list of messages.

    Args:
        messages: List of message dicts.

    Returns:
        Total estimated token count.
    """
    return sum(estimate_message_tokens(msg) for msg in messages)
