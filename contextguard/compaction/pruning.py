"""Message pruning and chunking utilities."""

from typing import Any

from loguru import logger

from contextguard.compaction.estimator import (
    MESSAGE_OVERHEAD_TOKENS,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
    message_text,
    truncate_text_to_tokens,
)
from contextguard.compaction.types import (
    BASE_CHUNK_RATIO,
    MIN_CHUNK_RATIO,
    SAFETY_MARGIN,
    DEFAULT_PARTS,
    PruneResult,
)


def normalize_parts(parts: int, message_count: int) -> int:
    """Normalize parts count to valid range."""
    if parts <= 1:
        return 1
    return min(max(1, parts), max(1, message_count))


def compute_max_history_tokens(max_context_tokens: int, max_history_share: float) -> int:
    """Budget for history, with the safety margin applied."""
    return int(max_context_tokens * max_history_share * SAFETY_MARGIN)


def split_messages_by_token_share(
    messages: list[dict[str, Any]],
    parts: int = DEFAULT_PARTS,
) -> list[list[dict[str, Any]]]:
    """
    Split messages into contiguous groups of roughly equal token share.

    Args:
        messages: List of messages to split.
        parts: Number of parts to split into.

    Returns:
        List of message chunks, oldest first.
    """
    if not messages:
        return []

    normalized_parts = normalize_parts(parts, len(messages))
    if normalized_parts <= 1:
        return [list(messages)]

    total_tokens = estimate_messages_tokens(messages)
    target_tokens = total_tokens / normalized_parts
    chunks: list[list[dict[str, Any]]] = []
    current: list[dict[str, Any]] = []
    current_tokens = 0

    for message in messages:
        message_tokens = estimate_message_tokens(message)
        if (
            len(chunks) < normalized_parts - 1
            and current
            and current_tokens + message_tokens > target_tokens
        ):
            chunks.append(current)
            current = []
            current_tokens = 0

        current.append(message)
        current_tokens += message_tokens

    if current:
        chunks.append(current)

    return chunks


def is_oversized_for_summary(
    message: dict[str, Any] | list[dict[str, Any]],
    ceiling_tokens: int,
) -> bool:
    """
    Check whether a message (or an indivisible block of messages) alone
    exceeds a chunk ceiling.

    Such content can never be placed in a chunk as-is; callers must
    truncate or isolate it.

    Args:
        message: A message dict, or a list treated as one indivisible block.
        ceiling_tokens: Chunk ceiling in tokens.

    Returns:
        True if the content is oversized.
    """
    if isinstance(message, list):
        tokens = estimate_messages_tokens(message)
    else:
        tokens = estimate_message_tokens(message)
    return tokens > ceiling_tokens


def truncate_message_to_tokens(
    message: dict[str, Any],
    max_tokens: int,
) -> dict[str, Any]:
    """
    Return a copy of message whose text is cut to fit max_tokens.

    Content is flattened to a single string and tool calls are dropped;
    the copy is only ever used as summarization input.
    """
    original_tokens = estimate_message_tokens(message)
    marker = (
        f"\n\n[... truncated from ~{original_tokens} tokens to fit the summary budget]"
    )
    text = message_text(message)
    base = {k: v for k, v in message.items() if k not in ("content", "tool_calls")}

    budget = max_tokens - MESSAGE_OVERHEAD_TOKENS - estimate_tokens(marker)
    while True:
        truncated = {**base, "content": truncate_text_to_tokens(text, budget) + marker}
        excess = estimate_message_tokens(truncated) - max_tokens
        if excess <= 0 or budget <= 0:
            return truncated
        budget -= excess


def chunk_messages_by_max_tokens(
    messages: list[dict[str, Any]],
    max_tokens: int,
) -> list[list[dict[str, Any]]]:
    """
    Chunk messages by maximum token count per chunk.

    Splits only at message boundaries. A message that alone exceeds
    max_tokens is truncated to fit and placed in its own chunk.

    Args:
        messages: List of messages to chunk.
        max_tokens: Maximum tokens per chunk.

    Returns:
        List of message chunks, in original order.
    """
    if not messages:
        return []

    max_tokens = max(1, max_tokens)
    chunks: list[list[dict[str, Any]]] = []
    current_chunk: list[dict[str, Any]] = []
    current_tokens = 0

    for message in messages:
        if is_oversized_for_summary(message, max_tokens):
            logger.debug(
                f"Truncating oversized {message.get('role', 'message')} "
                f"(~{estimate_message_tokens(message)} tokens) to {max_tokens} tokens"
            )
            message = truncate_message_to_tokens(message, max_tokens)

        message_tokens = estimate_message_tokens(message)

        if current_chunk and current_tokens + message_tokens > max_tokens:
            chunks.append(current_chunk)
            current_chunk = []
            current_tokens = 0

        current_chunk.append(message)
        current_tokens += message_tokens

    if current_chunk:
        chunks.append(current_chunk)

    return chunks


def compute_adaptive_chunk_ratio(
    messages: list[dict[str, Any]],
    context_window: int,
) -> float:
    """
    Compute adaptive chunk ratio based on average message size.

    When messages are large, use smaller chunks so each chunk still holds
    several messages.

    Args:
        messages: List of messages.
        context_window: Context window size in tokens.

    Returns:
        Chunk ratio in [MIN_CHUNK_RATIO, BASE_CHUNK_RATIO].
    """
    if not messages:
        return BASE_CHUNK_RATIO

    total_tokens = estimate_messages_tokens(messages)
    avg_tokens = total_tokens / len(messages)

    # Inflate the average to cover estimation inaccuracy
    safe_avg_tokens = avg_tokens / SAFETY_MARGIN
    avg_ratio = safe_avg_tokens / max(1, context_window)

    # If average message is > 10% of context, reduce chunk ratio
    if avg_ratio > 0.1:
        reduction = min(avg_ratio * 2, BASE_CHUNK_RATIO - MIN_CHUNK_RATIO)
        return max(MIN_CHUNK_RATIO, BASE_CHUNK_RATIO - reduction)

    return BASE_CHUNK_RATIO


def prune_history_for_context_share(
    messages: list[dict[str, Any]],
    max_context_tokens: int,
    max_history_share: float = 0.5,
    parts: int = DEFAULT_PARTS,
) -> PruneResult:
    """
    Drop the oldest groups of history until the rest fits the history budget.

    The newest group is always kept, even when it alone exceeds the budget.

    Args:
        messages: List of messages to prune.
        max_context_tokens: Maximum context window tokens.
        max_history_share: Maximum share of context for history (0.1-0.9).
        parts: Number of groups to split the history into.

    Returns:
        PruneResult; kept + dropped messages reconstruct the input in order.
    """
    budget_tokens = compute_max_history_tokens(max_context_tokens, max_history_share)
    chunks = split_messages_by_token_share(messages, parts)
    chunk_tokens = [estimate_messages_tokens(chunk) for chunk in chunks]
    kept_tokens = sum(chunk_tokens)

    dropped_chunks = 0
    dropped_tokens = 0
    all_dropped_messages: list[dict[str, Any]] = []

    while dropped_chunks < len(chunks) - 1 and kept_tokens > budget_tokens:
        # Drop oldest chunk
        all_dropped_messages.extend(chunks[dropped_chunks])
        dropped_tokens += chunk_tokens[dropped_chunks]
        kept_tokens -= chunk_tokens[dropped_chunks]
        dropped_chunks += 1

    kept_messages = [msg for chunk in chunks[dropped_chunks:] for msg in chunk]

    return PruneResult(
        messages=kept_messages,
        dropped_messages_list=all_dropped_messages,
        dropped_chunks=dropped_chunks,
        dropped_messages=len(all_dropped_messages),
        dropped_tokens=dropped_tokens,
        kept_tokens=kept_tokens,
        budget_tokens=budget_tokens,
    )
