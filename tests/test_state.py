"""Tests for turngraph.agent.state — merge strategies and helpers."""

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from turngraph.agent.state import (
    append_only,
    apply_update,
    create_initial_state,
    history_to_messages,
    max_iterations,
    turn_trace,
)
from turngraph.core.errors import StateMergeError
from turngraph.memory.models import HistoryMessage


def test_append_only_accepts_extension():
    a, b = HumanMessage(content="hola"), AIMessage(content="¡Hola!")
    assert append_only([a], [a, b]) == [a, b]
    assert append_only(None, [a]) == [a]


def test_append_only_rejects_shrink_and_reorder():
    a, b = HumanMessage(content="hola"), AIMessage(content="¡Hola!")
    with pytest.raises(StateMergeError):
        append_only([a, b], [a])
    with pytest.raises(StateMergeError):
        append_only([a, b], [b, a])


def test_apply_update_strategies(tenant):
    state = create_initial_state(current_message="hola", tenant=tenant)
    patch = {
        "control": {"should_escalate": True, "escalation_reason": "x"},
        "agent_trace": [{"agent_name": "initialize"}],
        "final_response": "ok",
    }
    merged = apply_update(state, patch)

    # control is merged, not replaced
    assert merged["control"]["should_escalate"] is True
    assert merged["control"]["max_iterations"] == 5
    assert merged["control"]["iteration_count"] == 0
    assert merged["agent_trace"] == [{"agent_name": "initialize"}]
    assert merged["final_response"] == "ok"
    # input untouched
    assert state["final_response"] == ""
    assert state["control"]["should_escalate"] is False


def test_apply_update_rejects_lost_messages(tenant):
    state = create_initial_state(
        current_message="hola", tenant=tenant, messages=[HumanMessage(content="antes")]
    )
    with pytest.raises(StateMergeError):
        apply_update(state, {"messages": []})


def test_initial_state_uses_tenant_limits(tenant):
    tenant.ai_config.max_iterations = 3
    state = create_initial_state(current_message="hola", tenant=tenant, channel="webchat")
    assert max_iterations(state) == 3
    assert state["vertical"] == "dental"
    assert state["channel"] == "webchat"
    assert state["messages"] == []


def test_history_to_messages():
    msgs = history_to_messages(
        [HistoryMessage(role="user", content="hola"), HistoryMessage(role="assistant", content="hey")]
    )
    assert isinstance(msgs[0], HumanMessage)
    assert isinstance(msgs[1], AIMessage)


def test_turn_trace_slices_current_turn():
    state = {
        "agent_trace": [{"agent_name": "finalize"}, {"agent_name": "initialize"}],
        "turn_trace_start": 1,
    }
    assert turn_trace(state) == [{"agent_name": "initialize"}]
