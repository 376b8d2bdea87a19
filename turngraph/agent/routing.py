"""Node identifiers and router functions.

Routers are pure functions of the state. Each one declares the complete set
of nodes it can return (``*_TARGETS``); the graph builder checks those sets
against the registered node table before compiling.
"""

from __future__ import annotations

from enum import Enum

from loguru import logger

from turngraph.agent.state import ConversationState, max_iterations


class NodeName(str, Enum):
    INITIALIZE = "initialize"
    SUPERVISOR = "supervisor"
    VERTICAL_ROUTER = "vertical_router"

    GREETING = "greeting"
    PRICING = "pricing"
    LOCATION = "location"
    HOURS = "hours"
    FAQ = "faq"
    BOOKING = "booking"
    BOOKING_DENTAL = "booking_dental"
    BOOKING_RESTAURANT = "booking_restaurant"
    BOOKING_MEDICAL = "booking_medical"
    ORDERING_RESTAURANT = "ordering_restaurant"
    INVOICING_RESTAURANT = "invoicing_restaurant"
    GENERAL = "general"
    URGENT_CARE = "urgent_care"

    ESCALATION = "escalation"
    FINALIZE = "finalize"

    def __str__(self) -> str:
        return self.value


SPECIALISTS: frozenset[NodeName] = frozenset(
    {
        NodeName.GREETING,
        NodeName.PRICING,
        NodeName.LOCATION,
        NodeName.HOURS,
        NodeName.FAQ,
        NodeName.BOOKING,
        NodeName.BOOKING_DENTAL,
        NodeName.BOOKING_RESTAURANT,
        NodeName.BOOKING_MEDICAL,
        NodeName.ORDERING_RESTAURANT,
        NodeName.INVOICING_RESTAURANT,
        NodeName.GENERAL,
        NodeName.URGENT_CARE,
    }
)

CONTROL_NODES: frozenset[NodeName] = frozenset(NodeName) - SPECIALISTS

# name → node table used by agent_router; anything else falls back to general
AGENT_TABLE: dict[str, NodeName] = {n.value: n for n in SPECIALISTS}

MAIN_TARGETS = frozenset({NodeName.ESCALATION, NodeName.FINALIZE, NodeName.VERTICAL_ROUTER})
AGENT_TARGETS = SPECIALISTS
POST_AGENT_TARGETS = SPECIALISTS | {NodeName.ESCALATION, NodeName.FINALIZE}


def resolve_agent(name: str | None) -> NodeName:
    """Map an agent name to a specialist node, ``general`` when unknown."""
    if name and name in AGENT_TABLE:
        return AGENT_TABLE[name]
    return NodeName.GENERAL


def main_router(state: ConversationState) -> NodeName:
    """After supervisor: escalate, finish, or pick a specialist."""
    control = state.get("control") or {}
    if control.get("should_escalate"):
        return NodeName.ESCALATION
    if control.get("iteration_count", 0) >= max_iterations(state):
        logger.warning("Iteration limit reached before routing, escalating")
        return NodeName.ESCALATION
    if control.get("response_ready") and state.get("final_response"):
        return NodeName.FINALIZE
    return NodeName.VERTICAL_ROUTER


def agent_router(state: ConversationState) -> NodeName:
    """Dispatch ``next_agent`` to its specialist node."""
    requested = state.get("next_agent")
    target = resolve_agent(requested)
    if requested and target.value != requested:
        logger.warning(f"Unknown agent {requested!r}, falling back to general")
    return target


def post_agent_router(state: ConversationState) -> NodeName:
    """After a specialist: escalate, finish, hand off, or fall back to general."""
    control = state.get("control") or {}
    if control.get("should_escalate"):
        return NodeName.ESCALATION
    if state.get("final_response") and control.get("response_ready"):
        return NodeName.FINALIZE

    next_agent = state.get("next_agent")
    if next_agent and next_agent != state.get("current_agent"):
        if control.get("iteration_count", 0) >= max_iterations(state):
            logger.warning(
                f"Handoff {state.get('current_agent')} → {next_agent} refused: "
                f"iteration limit {max_iterations(state)} reached"
            )
            return NodeName.ESCALATION
        logger.debug(f"Handoff {state.get('current_agent')} → {next_agent}")
        return agent_router(state)

    if state.get("final_response"):
        return NodeName.FINALIZE
    return NodeName.GENERAL
