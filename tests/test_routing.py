"""Tests for turngraph.agent.routing — router decisions."""

from turngraph.agent.routing import (
    AGENT_TARGETS,
    MAIN_TARGETS,
    POST_AGENT_TARGETS,
    SPECIALISTS,
    NodeName,
    agent_router,
    main_router,
    post_agent_router,
    resolve_agent,
)


def _state(**kw):
    control = {"iteration_count": 0, "max_iterations": 5, **kw.pop("control", {})}
    return {"control": control, **kw}


# --- main_router ---

def test_main_router_escalates():
    assert main_router(_state(control={"should_escalate": True})) is NodeName.ESCALATION


def test_main_router_iteration_limit():
    state = _state(control={"iteration_count": 5})
    assert main_router(state) is NodeName.ESCALATION


def test_main_router_ready_response():
    state = _state(control={"response_ready": True}, final_response="listo")
    assert main_router(state) is NodeName.FINALIZE


def test_main_router_default():
    assert main_router(_state()) is NodeName.VERTICAL_ROUTER


# --- agent_router ---

def test_agent_router_dispatch():
    assert agent_router({"next_agent": "booking_dental"}) is NodeName.BOOKING_DENTAL


def test_unknown_agent_falls_back_to_general():
    assert agent_router({"next_agent": "astrology"}) is NodeName.GENERAL
    assert agent_router({"next_agent": None}) is NodeName.GENERAL
    # control nodes are not dispatchable agents
    assert resolve_agent("finalize") is NodeName.GENERAL


# --- post_agent_router ---

def test_escalation_precedence_over_response():
    state = _state(
        control={"should_escalate": True, "response_ready": True},
        final_response="Te atiendo enseguida",
        current_agent="pricing",
    )
    assert post_agent_router(state) is NodeName.ESCALATION


def test_post_agent_finalize():
    state = _state(control={"response_ready": True}, final_response="ok", current_agent="faq")
    assert post_agent_router(state) is NodeName.FINALIZE


def test_post_agent_handoff():
    state = _state(control={"iteration_count": 1}, current_agent="pricing", next_agent="faq")
    assert post_agent_router(state) is NodeName.FAQ


def test_post_agent_handoff_refused_at_limit():
    state = _state(control={"iteration_count": 5}, current_agent="pricing", next_agent="faq")
    assert post_agent_router(state) is NodeName.ESCALATION


def test_post_agent_response_without_ready_flag():
    state = _state(current_agent="faq", next_agent="faq", final_response="draft")
    assert post_agent_router(state) is NodeName.FINALIZE


def test_post_agent_safety_net():
    state = _state(current_agent="faq", next_agent="faq")
    assert post_agent_router(state) is NodeName.GENERAL


def test_declared_targets():
    assert MAIN_TARGETS == {NodeName.ESCALATION, NodeName.FINALIZE, NodeName.VERTICAL_ROUTER}
    assert AGENT_TARGETS == SPECIALISTS
    assert NodeName.ESCALATION in POST_AGENT_TARGETS
    assert NodeName.INITIALIZE not in POST_AGENT_TARGETS
    assert str(NodeName.GREETING) == "greeting"
