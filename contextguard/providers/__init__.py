"""LLM provider abstraction module."""

from contextguard.providers.base import LLMProvider, LLMResponse
from contextguard.providers.litellm_provider import LiteLLMProvider, env_api_key

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider", "env_api_key"]
