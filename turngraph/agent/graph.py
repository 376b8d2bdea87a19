"""LangGraph StateGraph — compile the conversation graph and run it.

Graph flow:
    START → initialize → supervisor ─┬→ escalation → finalize → END
                                     ├→ finalize
                                     └→ vertical_router → <specialist>
    <specialist> ─┬→ escalation
                  ├→ finalize
                  └→ <specialist> (handoff, bounded by max_iterations)
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Mapping

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph
from loguru import logger

from turngraph.agent.nodes import NodeFn, make_nodes
from turngraph.agent.routing import (
    AGENT_TARGETS,
    MAIN_TARGETS,
    POST_AGENT_TARGETS,
    SPECIALISTS,
    NodeName,
    agent_router,
    main_router,
    post_agent_router,
)
from turngraph.agent.state import ConversationState, now_iso
from turngraph.core.collaborators import BookingHandler, LLMClient
from turngraph.core.config.schema import Config
from turngraph.core.errors import (
    TRANSIENT_ERRORS,
    GraphBuildError,
    NodeContractError,
    RoutingDefectError,
)

StepCallback = Callable[[ConversationState], Awaitable[None]]

_REQUIRED = frozenset({NodeName.INITIALIZE, NodeName.SUPERVISOR}) | MAIN_TARGETS


def check_outcome(name: NodeName, patch: Mapping[str, Any]) -> str:
    """Classify a specialist patch as respond, handoff or escalate.

    Escalation may carry a holding response and always wins. Handing off
    together with any other outcome, or doing nothing, is a defect.
    """
    control = patch.get("control") or {}
    responded = bool(patch.get("final_response"))
    handed_off = bool(patch.get("next_agent"))
    if control.get("should_escalate"):
        if handed_off:
            raise NodeContractError(
                f"{name} both escalated and handed off to {patch['next_agent']}"
            )
        return "escalate"
    if responded and handed_off:
        raise NodeContractError(f"{name} both responded and handed off to {patch['next_agent']}")
    if responded:
        return "respond"
    if handed_off:
        return "handoff"
    raise NodeContractError(f"{name} finished without respond, handoff or escalate")


def instrument(name: NodeName, fn: NodeFn) -> NodeFn:
    """Wrap a node with tracing, iteration counting and failure handling."""
    is_specialist = name in SPECIALISTS

    async def node(state: ConversationState) -> dict[str, Any]:
        started_at = now_iso()
        t0 = time.perf_counter()
        try:
            patch = dict(await fn(state) or {})
        except TRANSIENT_ERRORS:
            raise
        except Exception as e:
            logger.error(f"Node {name} failed: {e}")
            patch = {
                "errors": [*(state.get("errors") or []), f"{name}: {e}"],
                "control": {"should_escalate": True, "escalation_reason": f"node failure: {e}"},
            }
            outcome = "failed"
        else:
            outcome = check_outcome(name, patch) if is_specialist else "ok"

        if is_specialist:
            control = dict(patch.get("control") or {})
            control["iteration_count"] = (state.get("control") or {}).get("iteration_count", 0) + 1
            patch["control"] = control

        patch["current_agent"] = name.value
        patch["agent_trace"] = [
            *(state.get("agent_trace") or []),
            {
                "agent_name": name.value,
                "started_at": started_at,
                "duration_ms": int((time.perf_counter() - t0) * 1000),
                "outcome": outcome,
            },
        ]
        return patch

    node.__name__ = name.value
    return node


def validate_routes(nodes: Mapping[NodeName, NodeFn]) -> None:
    """Every router target must be a registered node."""
    registered = set(nodes)
    for label, targets in (
        ("entry", _REQUIRED),
        ("main_router", MAIN_TARGETS),
        ("agent_router", AGENT_TARGETS),
        ("post_agent_router", POST_AGENT_TARGETS),
    ):
        missing = sorted(t.value for t in targets - registered)
        if missing:
            raise GraphBuildError(f"{label} targets not registered: {', '.join(missing)}")


def build_graph(nodes: Mapping[NodeName, NodeFn]):
    """Compile a node table into a LangGraph graph."""
    validate_routes(nodes)
    graph = StateGraph(ConversationState)

    for name, fn in nodes.items():
        graph.add_node(name.value, instrument(name, fn))

    graph.add_edge(START, NodeName.INITIALIZE.value)
    graph.add_edge(NodeName.INITIALIZE.value, NodeName.SUPERVISOR.value)
    graph.add_conditional_edges(NodeName.SUPERVISOR.value, main_router, _path_map(MAIN_TARGETS))
    graph.add_conditional_edges(
        NodeName.VERTICAL_ROUTER.value, agent_router, _path_map(AGENT_TARGETS)
    )
    for specialist in SPECIALISTS & set(nodes):
        graph.add_conditional_edges(
            specialist.value, post_agent_router, _path_map(POST_AGENT_TARGETS)
        )
    graph.add_edge(NodeName.ESCALATION.value, NodeName.FINALIZE.value)
    graph.add_edge(NodeName.FINALIZE.value, END)
    return graph.compile()


def create_graph(
    config: Config,
    llm: LLMClient,
    booking_handler: BookingHandler | None = None,
):
    """Build and compile the conversation graph."""
    return build_graph(make_nodes(config, llm, booking_handler))


class GraphExecutor:
    """Runs a compiled graph for one turn under the step ceiling."""

    def __init__(self, graph, config: Config):
        self.graph = graph
        self.config = config

    async def run(
        self,
        state: ConversationState,
        on_step: StepCallback | None = None,
    ) -> ConversationState:
        """Drive the graph to completion, calling ``on_step`` after each node."""
        tenant = state.get("tenant")
        limit = self.config.step_ceiling(
            tenant.ai_config.max_iterations
            if tenant
            else self.config.orchestrator.default_max_iterations
        )
        final: ConversationState = state
        seen = len(state.get("agent_trace") or [])
        try:
            async for values in self.graph.astream(
                state, config={"recursion_limit": limit}, stream_mode="values"
            ):
                final = values
                trace = values.get("agent_trace") or []
                if on_step and len(trace) > seen:
                    seen = len(trace)
                    await on_step(values)
        except GraphRecursionError as e:
            raise RoutingDefectError(f"step ceiling of {limit} node visits exceeded") from e
        return final


def _path_map(targets: frozenset[NodeName]) -> dict[NodeName, str]:
    return {t: t.value for t in sorted(targets, key=lambda n: n.value)}
