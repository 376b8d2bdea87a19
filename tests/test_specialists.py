"""Tests for turngraph.agent.specialists and control nodes."""

from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from turngraph.agent.nodes import make_nodes
from turngraph.agent.routing import SPECIALISTS, NodeName
from turngraph.agent.specialists import make_specialists
from turngraph.agent.state import apply_update, create_initial_state
from turngraph.memory.models import BookingResult, BusinessContext, TenantInfo


@pytest.fixture
def state(tenant, business):
    return create_initial_state(current_message="hola", tenant=tenant, business_context=business)


def test_every_specialist_registered(cfg, llm):
    assert set(make_specialists(cfg, llm)) == SPECIALISTS


@pytest.mark.asyncio
async def test_respond_uses_tenant_prompt_and_business(cfg, llm, state):
    state["tenant"].ai_config.system_prompt = "Eres el asistente de Clínica Sonrisa."
    state["messages"] = [HumanMessage(content="hola")]
    patch = await make_specialists(cfg, llm)[NodeName.PRICING](state)

    assert patch["final_response"] == "¡Hola! ¿En qué podemos ayudarte?"
    assert patch["control"] == {"response_ready": True}
    messages = llm.complete.await_args.args[0]
    assert messages[0]["role"] == "system"
    assert "Clínica Sonrisa" in messages[0]["content"]
    assert "Limpieza dental" in messages[0]["content"]
    assert messages[-1] == {"role": "user", "content": "hola"}


@pytest.mark.asyncio
async def test_empty_llm_reply_is_a_failure(cfg, llm, state):
    llm.complete.return_value.text = ""
    with pytest.raises(ValueError):
        await make_specialists(cfg, llm)[NodeName.FAQ](state)


@pytest.mark.asyncio
async def test_restaurant_only_hands_off(cfg, llm, state):
    patch = await make_specialists(cfg, llm)[NodeName.ORDERING_RESTAURANT](state)
    assert patch["next_agent"] == "general"
    llm.complete.assert_not_awaited()


@pytest.mark.asyncio
async def test_urgent_care_escalates_on_severe_pain(cfg, llm, state):
    state["extracted_data"] = {"pain_level": 5}
    patch = await make_specialists(cfg, llm)[NodeName.URGENT_CARE](state)
    assert patch["control"]["should_escalate"] is True


@pytest.mark.asyncio
async def test_booking_without_services_escalates(cfg, llm, state):
    state["business_context"] = BusinessContext()
    patch = await make_specialists(cfg, llm)[NodeName.BOOKING_DENTAL](state)
    assert patch["control"]["should_escalate"] is True


@pytest.mark.asyncio
async def test_booking_handler_confirmation(cfg, llm, state):
    handler = AsyncMock()
    handler.attempt = AsyncMock(
        return_value=BookingResult(
            success=True, appointment_id="apt-1", confirmation_message="Cita confirmada: lunes 10:00"
        )
    )
    patch = await make_specialists(cfg, llm, handler)[NodeName.BOOKING_DENTAL](state)
    assert patch["final_response"] == "Cita confirmada: lunes 10:00"
    assert patch["booking_result"].appointment_id == "apt-1"
    llm.complete.assert_not_awaited()


@pytest.mark.asyncio
async def test_booking_handler_failure_falls_back_to_llm(cfg, llm, state):
    handler = AsyncMock()
    handler.attempt = AsyncMock(return_value=BookingResult(success=False, error="sin horarios"))
    patch = await make_specialists(cfg, llm, handler)[NodeName.BOOKING_DENTAL](state)
    assert patch["final_response"]
    assert patch["booking_result"].success is False
    assert "sin horarios" in llm.complete.await_args.args[0][0]["content"]


# --- control nodes ---

@pytest.mark.asyncio
async def test_initialize_keeps_history(cfg, llm, state):
    state["messages"] = [HumanMessage(content="antes"), AIMessage(content="respuesta")]
    patch = await make_nodes(cfg, llm)[NodeName.INITIALIZE](state)
    assert [m.content for m in patch["messages"]] == ["antes", "respuesta", "hola"]
    assert patch["control"]["iteration_count"] == 0


@pytest.mark.asyncio
async def test_initialize_resumed_does_not_duplicate(cfg, llm, state):
    state["messages"] = [HumanMessage(content="hola")]
    state["resumed"] = True
    patch = await make_nodes(cfg, llm)[NodeName.INITIALIZE](state)
    assert [m.content for m in patch["messages"]] == ["hola"]


@pytest.mark.asyncio
async def test_initialize_rereads_tenant_limit(cfg, llm, state):
    state["tenant"] = TenantInfo(tenant_id="t1", ai_config={"max_iterations": 2})
    patch = await make_nodes(cfg, llm)[NodeName.INITIALIZE](state)
    assert patch["control"]["max_iterations"] == 2


@pytest.mark.asyncio
async def test_supervisor_scores_signals(cfg, llm, state):
    state["current_message"] = "¿Precio de un implante?"
    patch = await make_nodes(cfg, llm)[NodeName.SUPERVISOR](state)
    assert patch["detected_intent"] == "PRICE_INQUIRY"
    assert patch["score_change"] == 25
    assert "control" not in patch


@pytest.mark.asyncio
async def test_escalation_reason_for_iteration_limit(cfg, llm, state):
    state = apply_update(state, {"control": {"iteration_count": 5}})
    patch = await make_nodes(cfg, llm)[NodeName.ESCALATION](state)
    assert patch["control"]["escalation_reason"] == "iteration limit reached (5/5)"
    assert patch["control"]["response_ready"] is True


@pytest.mark.asyncio
async def test_escalation_keeps_holding_response(cfg, llm, state):
    state["final_response"] = "Te comunico con el doctor."
    state = apply_update(state, {"control": {"should_escalate": True, "escalation_reason": "x"}})
    patch = await make_nodes(cfg, llm)[NodeName.ESCALATION](state)
    assert patch["final_response"] == "Te comunico con el doctor."


@pytest.mark.asyncio
async def test_finalize_appends_reply_once(cfg, llm, state):
    state["messages"] = [HumanMessage(content="hola")]
    state["final_response"] = "¡Hola!"
    finalize = make_nodes(cfg, llm)[NodeName.FINALIZE]
    patch = await finalize(state)
    assert [m.content for m in patch["messages"]] == ["hola", "¡Hola!"]

    state["messages"] = patch["messages"]
    again = await finalize(state)
    assert len(again["messages"]) == 2
