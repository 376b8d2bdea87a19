"""ConversationState — LangGraph state definition and merge strategies.

Nodes return partial updates. Each key is merged with the strategy listed in
``MERGE_STRATEGIES`` (the same callables are installed as LangGraph channel
reducers, so ``apply_update`` and the compiled graph always agree):

    messages, agent_trace   append-only; the patch carries the full sequence
    control                 shallow merge of the sub-record
    everything else         replace
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Callable, TypedDict

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from turngraph.core.errors import StateMergeError
from turngraph.memory.models import (
    BookingResult,
    BusinessContext,
    ConversationInfo,
    HistoryMessage,
    LeadInfo,
    TenantInfo,
)


class ControlFlags(TypedDict, total=False):
    iteration_count: int
    max_iterations: int
    should_escalate: bool
    escalation_reason: str | None
    response_ready: bool


class TraceEntry(TypedDict, total=False):
    agent_name: str
    started_at: str
    duration_ms: int
    outcome: str


def append_only(current: list | None, update: list | None) -> list:
    """Accept ``update`` only if it extends ``current`` without losing entries."""
    current = list(current or [])
    update = list(update or [])
    if len(update) < len(current) or update[: len(current)] != current:
        raise StateMergeError(
            f"append-only field would lose entries ({len(current)} -> {len(update)})"
        )
    return update


def merge_control(current: ControlFlags | None, update: ControlFlags | None) -> ControlFlags:
    return {**(current or {}), **(update or {})}


class ConversationState(TypedDict, total=False):
    # Append-only / merged channels
    messages: Annotated[list[BaseMessage], append_only]
    agent_trace: Annotated[list[TraceEntry], append_only]
    control: Annotated[ControlFlags, merge_control]

    # Turn input
    current_message: str
    channel: str
    vertical: str

    # Read-only context (reloaded live every turn, never checkpointed)
    tenant: TenantInfo | None
    lead: LeadInfo | None
    conversation: ConversationInfo | None
    business_context: BusinessContext | None

    # Routing
    current_agent: str | None
    next_agent: str | None
    routing_reason: str
    handoff_reason: str | None

    # Detection
    detected_intent: str
    detected_signals: list[dict[str, Any]]
    extracted_data: dict[str, Any]
    score_change: int

    # Results
    final_response: str
    booking_result: BookingResult | None
    tokens_used: int
    errors: list[str]

    # Bookkeeping
    processing_started_at: str
    processing_time_ms: int
    turn_trace_start: int
    resumed: bool


MERGE_STRATEGIES: dict[str, Callable[[Any, Any], Any]] = {
    "messages": append_only,
    "agent_trace": append_only,
    "control": merge_control,
}


def apply_update(state: ConversationState, patch: dict[str, Any]) -> ConversationState:
    """Return a new state with ``patch`` merged in; ``state`` is not mutated."""
    merged: dict[str, Any] = dict(state)
    for key, value in patch.items():
        strategy = MERGE_STRATEGIES.get(key)
        merged[key] = strategy(state.get(key), value) if strategy else value
    return merged  # type: ignore[return-value]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_control(max_iterations: int) -> ControlFlags:
    return {
        "iteration_count": 0,
        "max_iterations": max_iterations,
        "should_escalate": False,
        "escalation_reason": None,
        "response_ready": False,
    }


def history_to_messages(history: list[HistoryMessage]) -> list[BaseMessage]:
    """Request history → LangChain messages."""
    messages: list[BaseMessage] = []
    for item in history:
        if item.role == "user":
            messages.append(HumanMessage(content=item.content))
        else:
            messages.append(AIMessage(content=item.content))
    return messages


def create_initial_state(
    *,
    current_message: str,
    tenant: TenantInfo,
    channel: str = "whatsapp",
    lead: LeadInfo | None = None,
    conversation: ConversationInfo | None = None,
    business_context: BusinessContext | None = None,
    messages: list[BaseMessage] | None = None,
) -> ConversationState:
    """Fresh state for one turn. ``initialize`` appends the inbound message."""
    return {
        "messages": list(messages or []),
        "agent_trace": [],
        "control": new_control(tenant.ai_config.max_iterations),
        "current_message": current_message,
        "channel": channel,
        "vertical": tenant.vertical,
        "tenant": tenant,
        "lead": lead,
        "conversation": conversation,
        "business_context": business_context,
        "current_agent": None,
        "next_agent": None,
        "routing_reason": "",
        "handoff_reason": None,
        "detected_intent": "UNKNOWN",
        "detected_signals": [],
        "extracted_data": {},
        "score_change": 0,
        "final_response": "",
        "booking_result": None,
        "tokens_used": 0,
        "errors": [],
        "processing_started_at": now_iso(),
        "processing_time_ms": 0,
        "turn_trace_start": 0,
        "resumed": False,
    }


def turn_trace(state: ConversationState) -> list[TraceEntry]:
    """Trace entries recorded during the current turn."""
    trace = state.get("agent_trace") or []
    return trace[state.get("turn_trace_start", 0):]


def max_iterations(state: ConversationState) -> int:
    control = state.get("control") or {}
    return int(control.get("max_iterations") or 5)
