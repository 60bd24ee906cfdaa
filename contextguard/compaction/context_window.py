"""Context window lookup for summarization models."""

import litellm
from loguru import logger

from contextguard.compaction.types import DEFAULT_CONTEXT_TOKENS


# Known context windows by model family (matched against the bare model name)
KNOWN_CONTEXT_WINDOWS: dict[str, int] = {
    "claude-opus-4": 200_000,
    "claude-sonnet-4": 200_000,
    "claude-haiku-4": 200_000,
    "claude-3": 200_000,
    "gpt-4.1": 1_047_576,
    "gpt-4o": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-5": 400_000,
    "o3": 200_000,
    "o4-mini": 200_000,
    "gemini-2.5": 1_048_576,
    "gemini-2.0": 1_048_576,
    "glm-4": 128_000,
    "kimi-k2": 131_072,
    "deepseek": 128_000,
    "llama-3": 128_000,
}

_PROVIDER_PREFIXES = (
    "openrouter/",
    "anthropic/",
    "openai/",
    "gemini/",
    "zhipu/",
    "zai/",
    "hosted_vllm/",
    "moonshotai/",
    "deepseek/",
    "meta-llama/",
)


def _bare_model_name(model: str) -> str:
    """Strip provider routing prefixes (possibly nested) from a model id."""
    name = model.strip().lower()
    stripped = True
    while stripped:
        stripped = False
        for prefix in _PROVIDER_PREFIXES:
            if name.startswith(prefix):
                name = name[len(prefix):]
                stripped = True
    return name


def _lookup_known(name: str) -> int | None:
    """Longest matching family wins."""
    matches = [family for family in KNOWN_CONTEXT_WINDOWS if name.startswith(family)]
    if not matches:
        return None
    return KNOWN_CONTEXT_WINDOWS[max(matches, key=len)]


def _lookup_litellm(model: str) -> int | None:
    try:
        info = litellm.get_model_info(model)
    except Exception:
        return None
    tokens = info.get("max_input_tokens") or info.get("max_tokens")
    if isinstance(tokens, int) and tokens > 0:
        return tokens
    return None


def resolve_context_window_tokens(
    model: str | None,
    override: int | None = None,
) -> int:
    """
    Resolve the usable context window for a model.

    Never fails: unknown models get DEFAULT_CONTEXT_TOKENS.

    Args:
        model: Model identifier (e.g., 'anthropic/claude-sonnet-4-5').
        override: Explicit context window from configuration.

    Returns:
        Context window size in tokens (always > 0).
    """
    if override and override > 0:
        return override

    if not model:
        return DEFAULT_CONTEXT_TOKENS

    tokens = _lookup_known(_bare_model_name(model)) or _lookup_litellm(model)
    if tokens is None:
        logger.debug(f"Unknown context window for {model}, using {DEFAULT_CONTEXT_TOKENS}")
        return DEFAULT_CONTEXT_TOKENS
    return tokens
