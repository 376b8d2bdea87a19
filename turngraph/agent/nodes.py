"""Graph nodes — initialize, supervisor, vertical_router, escalation, finalize."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from loguru import logger

from turngraph.agent import intent as rules
from turngraph.agent.routing import NodeName
from turngraph.agent.specialists import make_specialists
from turngraph.agent.state import ConversationState, max_iterations, now_iso
from turngraph.core.collaborators import BookingHandler, LLMClient
from turngraph.core.config.schema import Config

NodeFn = Callable[[ConversationState], Awaitable[dict[str, Any]]]


def make_nodes(
    config: Config,
    llm: LLMClient,
    booking_handler: BookingHandler | None = None,
) -> dict[NodeName, NodeFn]:
    """
    Create node functions closed over config and collaborators.

    Returns dict of {node_name: callable} for graph registration.
    """

    async def initialize(state: ConversationState) -> dict[str, Any]:
        """Entry point: append the inbound message, reset per-turn counters.

        Prior messages are always kept. A resumed turn whose checkpoint
        already holds this exact inbound message does not append it twice.
        """
        messages: list[BaseMessage] = list(state.get("messages") or [])
        text = state.get("current_message", "")
        if state.get("resumed") and _is_pending(messages, text):
            logger.debug("Resumed turn: inbound message already recorded")
        else:
            messages.append(HumanMessage(content=text))

        tenant = state.get("tenant")
        limit = (
            tenant.ai_config.max_iterations
            if tenant
            else config.orchestrator.default_max_iterations
        )
        return {
            "messages": messages,
            "processing_started_at": now_iso(),
            "turn_trace_start": len(state.get("agent_trace") or []),
            "next_agent": None,
            "control": {
                "iteration_count": 0,
                "max_iterations": limit,
                "should_escalate": False,
                "escalation_reason": None,
                "response_ready": False,
            },
        }

    async def supervisor(state: ConversationState) -> dict[str, Any]:
        """Detect intent, scoring signals and immediate escalation triggers."""
        message = state.get("current_message", "")
        business = state.get("business_context")
        tenant = state.get("tenant")

        intent = rules.detect_intent(message)
        signals = rules.detect_signals(message, business)
        extracted = {**(state.get("extracted_data") or {}), **rules.extract_data(message)}
        escalate, reason = rules.escalation_check(
            intent,
            signals,
            message,
            extracted,
            tenant.ai_config.auto_escalate_keywords if tenant else None,
        )
        score = sum(s["points"] for s in signals)
        logger.debug(
            f"Supervisor: intent={intent}, signals={len(signals)}, "
            f"score={score}, escalate={escalate}"
        )

        patch: dict[str, Any] = {
            "detected_intent": intent,
            "detected_signals": signals,
            "extracted_data": extracted,
            "score_change": score,
            "routing_reason": f"intent {intent} with {len(signals)} signals",
        }
        if escalate:
            patch["control"] = {"should_escalate": True, "escalation_reason": reason}
        return patch

    async def vertical_router(state: ConversationState) -> dict[str, Any]:
        """Pick the specialist for the detected intent and business vertical."""
        intent = state.get("detected_intent", "UNKNOWN")
        vertical = state.get("vertical") or config.orchestrator.default_vertical
        target = rules.next_agent_for(intent, vertical)
        logger.debug(f"Vertical router: {intent} ({vertical}) → {target}")
        return {
            "next_agent": target,
            "routing_reason": f"{intent} routed to {target} for {vertical}",
        }

    async def escalation(state: ConversationState) -> dict[str, Any]:
        """Hand the conversation to a human. Always followed by finalize."""
        control = state.get("control") or {}
        reason = control.get("escalation_reason")
        if not reason:
            count, limit = control.get("iteration_count", 0), max_iterations(state)
            if count >= limit:
                reason = f"iteration limit reached ({count}/{limit})"
            else:
                reason = "escalated by routing"

        tenant = state.get("tenant")
        response = state.get("final_response") or (
            (tenant.ai_config.escalation_message if tenant else None)
            or config.orchestrator.escalation_response
        )
        logger.info(f"Escalating conversation: {reason}")
        return {
            "final_response": response,
            "control": {
                "should_escalate": True,
                "escalation_reason": reason,
                "response_ready": True,
            },
        }

    async def finalize(state: ConversationState) -> dict[str, Any]:
        """Bookkeeping: record the reply in the thread and processing time."""
        messages: list[BaseMessage] = list(state.get("messages") or [])
        response = state.get("final_response") or ""
        if response and not (
            messages and isinstance(messages[-1], AIMessage) and messages[-1].content == response
        ):
            messages.append(AIMessage(content=response))

        return {
            "messages": messages,
            "processing_time_ms": _elapsed_ms(state.get("processing_started_at")),
            "control": {"response_ready": True},
        }

    nodes: dict[NodeName, NodeFn] = {
        NodeName.INITIALIZE: initialize,
        NodeName.SUPERVISOR: supervisor,
        NodeName.VERTICAL_ROUTER: vertical_router,
        NodeName.ESCALATION: escalation,
        NodeName.FINALIZE: finalize,
    }
    nodes.update(make_specialists(config, llm, booking_handler))
    return nodes


def _is_pending(messages: list[BaseMessage], text: str) -> bool:
    """True when the last message is this inbound text, still unanswered."""
    return bool(messages) and isinstance(messages[-1], HumanMessage) and messages[-1].content == text


def _elapsed_ms(started_at: str | None) -> int:
    if not started_at:
        return 0
    try:
        started = datetime.fromisoformat(started_at)
    except ValueError:
        return 0
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return max(0, int((datetime.now(timezone.utc) - started).total_seconds() * 1000))
