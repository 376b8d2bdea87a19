"""LiteLLM provider — thin wrapper that satisfies the LLMClient protocol."""

from __future__ import annotations

import os
from typing import Any

import litellm
from loguru import logger

from turngraph.core.collaborators import LLMResult
from turngraph.core.config.schema import Config

# Suppress litellm noise
litellm.suppress_debug_info = True


def setup_provider(config: Config) -> None:
    """Set env vars for LiteLLM from config. Call once at startup."""
    _set_key("ANTHROPIC_API_KEY", config.providers.anthropic.api_key)
    _set_key("OPENAI_API_KEY", config.providers.openai.api_key)
    _set_key("OPENROUTER_API_KEY", config.providers.openrouter.api_key)
    _set_key("DEEPSEEK_API_KEY", config.providers.deepseek.api_key)
    _set_key("GROQ_API_KEY", config.providers.groq.api_key)
    _set_key("GEMINI_API_KEY", config.providers.gemini.api_key)


class LiteLLMClient:
    """LLMClient backed by ``litellm.acompletion``.

    Errors propagate: the graph executor decides whether a failure degrades
    to escalation (node failure) or triggers checkpoint recovery (timeouts).
    """

    def __init__(self, config: Config):
        self.config = config
        setup_provider(config)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResult:
        model = model or self.config.llm.model
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.config.llm.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.llm.max_tokens,
        }
        api_base = self.config.get_api_base(model)
        if api_base:
            kwargs["api_base"] = api_base

        try:
            response = await litellm.acompletion(**kwargs)
        except litellm.Timeout as e:
            logger.error(f"LLM timeout ({model}): {e}")
            raise TimeoutError(str(e)) from e
        except litellm.APIConnectionError as e:
            logger.error(f"LLM connection error ({model}): {e}")
            raise ConnectionError(str(e)) from e
        return _to_result(response)


def _to_result(response: Any) -> LLMResult:
    """Convert litellm response → LLMResult."""
    msg = response.choices[0].message
    usage = getattr(response, "usage", None)
    return LLMResult(
        text=(msg.content or "").strip(),
        tokens_used=getattr(usage, "total_tokens", 0) or 0,
    )


def _set_key(env_name: str, value: str) -> None:
    if value:
        os.environ.setdefault(env_name, value)
