"""LiteLLM provider implementation for multi-provider support."""

import os
from typing import Any
from loguru import logger

import litellm
from litellm import acompletion

from contextguard.providers.base import LLMProvider, LLMResponse

# Provider prefix -> environment variable LiteLLM reads the key from
_ENV_API_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "zhipu": "ZHIPUAI_API_KEY",
}


def env_api_key(model: str) -> str | None:
    """Look up the API key for a model's provider in the environment."""
    provider = model.split("/", 1)[0].lower() if "/" in model else "openai"
    if provider not in _ENV_API_KEYS and "claude" in model.lower():
        provider = "anthropic"
    env_name = _ENV_API_KEYS.get(provider)
    return os.getenv(env_name) if env_name else None


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Supports OpenRouter, Anthropic, OpenAI, Gemini, and many other providers through
    a unified interface.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-5"
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.request_timeout_seconds = float(
            os.getenv("CONTEXTGUARD_LLM_TIMEOUT_SECONDS", "45")
        )

        # Detect OpenRouter by api_key prefix or explicit api_base
        self.is_openrouter = bool(
            (api_key and api_key.startswith("sk-or-")) or
            (api_base and "openrouter" in api_base)
        )

        # Track if using custom endpoint (vLLM, etc.)
        self.is_vllm = bool(api_base) and not self.is_openrouter

        # Keys are passed per call and never written to os.environ
        litellm.suppress_debug_info = True

    def normalize_model(self, model: str) -> str:
        """Apply the routing prefix LiteLLM expects for the configured endpoint."""
        # For OpenRouter, prefix model name if not already prefixed
        if self.is_openrouter and not model.startswith("openrouter/"):
            return f"openrouter/{model}"

        # For vLLM, use hosted_vllm/ prefix per LiteLLM docs
        if self.is_vllm and not model.startswith("hosted_vllm/"):
            return f"hosted_vllm/{model}"

        # For Zhipu/Z.ai, ensure prefix is present
        if ("glm" in model.lower() or "zhipu" in model.lower()) and not (
            model.startswith("zhipu/") or model.startswith("zai/")
        ):
            return f"zhipu/{model}"

        # For Gemini, ensure gemini/ prefix if not already present
        if "gemini" in model.lower() and not model.startswith("gemini/"):
            return f"gemini/{model}"

        return model

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        api_key: str | None = None,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model identifier (e.g., 'anthropic/claude-sonnet-4-5').
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.
            api_key: Per-call credential.

        Returns:
            LLMResponse with content, or finish_reason="error" on failure.
        """
        model = self.normalize_model(model or self.default_model)
        key = api_key or self.api_key

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "timeout": self.request_timeout_seconds,
        }

        # Set app name for OpenRouter dashboard
        if self.is_openrouter:
            kwargs["extra_headers"] = {"X-Title": "contextguard"}

        # Pass api_base and api_key directly for custom endpoints
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if key:
            kwargs["api_key"] = key

        try:
            response = await acompletion(**kwargs)
            return self._parse_response(response)
        except Exception as e:
            # Redact potential API keys from error messages
            error_msg = str(e)
            if key and len(key) > 8:
                error_msg = error_msg.replace(key, "***")
            logger.error(f"LLM call error: {error_msg}")
            return LLMResponse(
                content=f"Error calling LLM: {error_msg}",
                finish_reason="error",
            )

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
