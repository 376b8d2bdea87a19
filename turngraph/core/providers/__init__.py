"""LLM provider adapters."""

from turngraph.core.providers.litellm import LiteLLMClient, setup_provider

__all__ = ["LiteLLMClient", "setup_provider"]
