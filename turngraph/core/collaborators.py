"""Collaborator interfaces consumed by the engine.

The engine never implements these services; it only calls them through the
protocols below. Concrete adapters live elsewhere (``core/providers`` for the
LLM, or the hosting application for the rest).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from turngraph.memory.models import BookingResult, TurnContext, TurnRequest


class LLMResult(BaseModel):
    text: str
    tokens_used: int = 0


class RateLimitDecision(BaseModel):
    allowed: bool
    retry_after_ms: int = 0


class DeadLetterEntry(BaseModel):
    tenant_id: str
    conversation_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    error: str
    stage: str


class SanitizationResult(BaseModel):
    is_valid: bool
    sanitized_text: str
    issues: list[str] = Field(default_factory=list)


@runtime_checkable
class LLMClient(Protocol):
    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResult: ...


class RateLimiter(Protocol):
    async def check(self, tenant_id: str, conversation_id: str) -> RateLimitDecision: ...


class DeadLetterSink(Protocol):
    async def enqueue(self, entry: DeadLetterEntry) -> None: ...


class OutputSanitizer(Protocol):
    def sanitize(self, text: str) -> SanitizationResult: ...


class ContextLoader(Protocol):
    async def load(self, request: TurnRequest) -> TurnContext: ...


class BookingHandler(Protocol):
    async def attempt(self, state: dict[str, Any]) -> BookingResult | None: ...
