"""Message summarization for compaction."""

import asyncio
from typing import Any, Awaitable, TypeVar

from loguru import logger

from contextguard.compaction.errors import (
    CompactionCancelledError,
    CompactionError,
    ModelCallFailedError,
)
from contextguard.compaction.estimator import estimate_messages_tokens, message_text
from contextguard.compaction.pruning import chunk_messages_by_max_tokens
from contextguard.compaction.types import SAFETY_MARGIN
from contextguard.providers.base import LLMProvider

T = TypeVar("T")


SUMMARIZE_SYSTEM_PROMPT = """You are a conversation summarizer. Your task is to create a concise but comprehensive summary of the conversation history.

Focus on:
1. Key decisions made
2. Important information exchanged
3. Open questions or TODOs
4. Any constraints or requirements mentioned
5. Current state of any tasks being worked on

Keep the summary clear and actionable. Use bullet points where appropriate."""

SUMMARIZE_USER_PROMPT = """Please summarize the following conversation:

{conversation}

{custom_instructions}

Previous context (if any):
{previous_summary}

Provide a single updated summary that folds the previous context together with the new conversation."""


def format_conversation(messages: list[dict[str, Any]]) -> str:
    """Render messages as '[role]: text' blocks, skipping messages without text."""
    parts = []
    for msg in messages:
        text = message_text(msg)
        if text:
            parts.append(f"[{msg.get('role', 'unknown')}]: {text}")
    return "\n\n".join(parts)


async def await_with_cancel(
    awaitable: Awaitable[T],
    cancel_event: asyncio.Event | None = None,
    timeout: float | None = None,
) -> T:
    """
    Await a model call, racing it against a cancellation event and a timeout.

    The in-flight call is cancelled as soon as either fires.

    Raises:
        CompactionCancelledError: cancel_event was set first.
        ModelCallFailedError: the timeout elapsed first.
    """
    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CompactionCancelledError("Compaction cancelled before model call")

    call = asyncio.ensure_future(awaitable)
    waiters: set[asyncio.Future] = {call}
    cancel_wait: asyncio.Future | None = None
    if cancel_event is not None:
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_wait)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        if cancel_wait is not None and not cancel_wait.done():
            cancel_wait.cancel()
        if not call.done():
            call.cancel()

    if call in done:
        return call.result()
    if cancel_event is not None and cancel_event.is_set():
        raise CompactionCancelledError("Compaction cancelled during model call")
    raise ModelCallFailedError(f"Model call timed out after {timeout}s")


async def generate_summary(
    messages: list[dict[str, Any]],
    provider: LLMProvider,
    model: str,
    reserve_tokens: int,
    context_window: int,
    custom_instructions: str | None = None,
    previous_summary: str | None = None,
    api_key: str | None = None,
    cancel_event: asyncio.Event | None = None,
    call_timeout: float | None = None,
) -> str:
    """
    Generate a summary of one chunk using the LLM.

    Args:
        messages: Messages to summarize.
        provider: LLM provider.
        model: Model to use.
        reserve_tokens: Tokens to reserve for output.
        context_window: Context window size.
        custom_instructions: Optional custom instructions.
        previous_summary: Running summary of everything before this chunk.
        api_key: Credential for the call.
        cancel_event: Cycle-wide cancellation signal.
        call_timeout: Per-call timeout in seconds.

    Returns:
        Summary text.

    Raises:
        ModelCallFailedError: The call failed or returned nothing.
        CompactionCancelledError: cancel_event fired.
    """
    user_prompt = SUMMARIZE_USER_PROMPT.format(
        conversation=format_conversation(messages),
        custom_instructions=custom_instructions or "No additional instructions.",
        previous_summary=previous_summary or "No previous context.",
    )
    prompt = [
        {"role": "system", "content": SUMMARIZE_SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]

    # Never ask for more output than the window has left after the prompt
    headroom = context_window - estimate_messages_tokens(prompt)
    max_tokens = max(1, min(reserve_tokens, headroom))

    try:
        response = await await_with_cancel(
            provider.chat(
                messages=prompt,
                model=model,
                max_tokens=max_tokens,
                api_key=api_key,
            ),
            cancel_event=cancel_event,
            timeout=call_timeout,
        )
    except CompactionError:
        raise
    except Exception as e:
        raise ModelCallFailedError(str(e), model=model) from e

    if response.is_error:
        raise ModelCallFailedError(response.content or "Model call failed", model=model)

    summary = (response.content or "").strip()
    if not summary:
        raise ModelCallFailedError("Model returned an empty summary", model=model)
    return summary


async def summarize_in_stages(
    messages: list[dict[str, Any]],
    provider: LLMProvider,
    model: str,
    reserve_tokens: int,
    max_chunk_tokens: int,
    context_window: int,
    custom_instructions: str | None = None,
    previous_summary: str | None = None,
    api_key: str | None = None,
    cancel_event: asyncio.Event | None = None,
    call_timeout: float | None = None,
) -> str:
    """
    Summarize messages chunk by chunk, folding each chunk into a running summary.

    Chunk k is summarized with the running summary of chunks 1..k-1 (seeded
    with previous_summary) as prior context. Any failed call aborts the run;
    no partial summary is returned.

    Args:
        messages: Messages to summarize.
        provider: LLM provider.
        model: Model to use.
        reserve_tokens: Tokens to reserve for output.
        max_chunk_tokens: Maximum tokens per chunk.
        context_window: Context window size.
        custom_instructions: Optional custom instructions.
        previous_summary: Optional summary from an earlier cycle.
        api_key: Credential for the calls.
        cancel_event: Cancellation signal shared by every stage.
        call_timeout: Per-call timeout in seconds.

    Returns:
        Summary text; previous_summary (or "") when there is nothing to summarize.
    """
    if not messages:
        return previous_summary or ""

    ceiling = max(
        1,
        min(max_chunk_tokens, int((context_window - reserve_tokens) * SAFETY_MARGIN)),
    )
    chunks = chunk_messages_by_max_tokens(messages, ceiling)
    logger.debug(
        f"Summarizing {len(messages)} messages in {len(chunks)} stage(s) "
        f"(chunk ceiling {ceiling} tokens)"
    )

    summary = previous_summary
    for chunk in chunks:
        summary = await generate_summary(
            chunk,
            provider,
            model,
            reserve_tokens,
            context_window,
            custom_instructions,
            summary,
            api_key=api_key,
            cancel_event=cancel_event,
            call_timeout=call_timeout,
        )

    return summary or ""
