"""Specialist agent nodes.

Every specialist ends its visit with exactly one outcome:

    respond   {final_response, control.response_ready=True}
    hand off  {next_agent, handoff_reason}
    escalate  {control.should_escalate=True, control.escalation_reason}

The executor validates the outcome (see ``graph.check_outcome``), increments
the iteration counter and records the trace entry; specialists do neither.
"""

from __future__ import annotations

from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from loguru import logger

from turngraph.agent.intent import SEVERE_PAIN_LEVEL
from turngraph.agent.routing import NodeName
from turngraph.agent.state import ConversationState
from turngraph.core.collaborators import BookingHandler, LLMClient
from turngraph.core.config.schema import Config
from turngraph.memory.models import BusinessContext

_INSTRUCTIONS: dict[NodeName, str] = {
    NodeName.GREETING: (
        "Greet the customer warmly, introduce the business in one sentence and "
        "ask how you can help."
    ),
    NodeName.PRICING: (
        "Answer pricing questions using only the listed services and price "
        "ranges. Never invent prices; offer a consultation when unsure."
    ),
    NodeName.LOCATION: "Explain where the branches are and how to get there.",
    NodeName.HOURS: "Give the opening hours of the relevant branch.",
    NodeName.FAQ: "Answer using the FAQ entries. Say so when the answer is not listed.",
    NodeName.BOOKING: "Help the customer schedule an appointment. Ask for any missing date or time.",
    NodeName.BOOKING_DENTAL: (
        "Help the patient schedule a dental appointment. Ask for the preferred "
        "date, time and branch if missing."
    ),
    NodeName.BOOKING_RESTAURANT: (
        "Help the guest reserve a table. Ask for party size, date and time if missing."
    ),
    NodeName.BOOKING_MEDICAL: (
        "Help the patient schedule a consultation. Ask for symptoms, preferred "
        "date and time if missing."
    ),
    NodeName.ORDERING_RESTAURANT: (
        "Take the food order: confirm items, quantities and pickup time."
    ),
    NodeName.INVOICING_RESTAURANT: (
        "Collect the data needed to issue an invoice (tax id, legal name, "
        "email, ticket number)."
    ),
    NodeName.GENERAL: "Answer the message helpfully and briefly.",
    NodeName.URGENT_CARE: (
        "The customer reports pain or an urgent issue. Show empathy, recommend "
        "the earliest available visit and give the branch phone number."
    ),
}

_RESTAURANT_ONLY = frozenset({NodeName.ORDERING_RESTAURANT, NodeName.INVOICING_RESTAURANT})
_BOOKING = frozenset(
    {NodeName.BOOKING, NodeName.BOOKING_DENTAL, NodeName.BOOKING_RESTAURANT, NodeName.BOOKING_MEDICAL}
)


class Specialist:
    """A node that answers one kind of request through the LLM collaborator."""

    def __init__(self, name: NodeName, instructions: str, llm: LLMClient, config: Config):
        self.name = name
        self.instructions = instructions
        self.llm = llm
        self.config = config

    def should_escalate(self, state: ConversationState) -> str | None:
        return None

    def should_handoff(self, state: ConversationState) -> tuple[str, str] | None:
        return None

    async def __call__(self, state: ConversationState) -> dict[str, Any]:
        reason = self.should_escalate(state)
        if reason:
            logger.info(f"[{self.name}] escalating: {reason}")
            return {"control": {"should_escalate": True, "escalation_reason": reason}}

        handoff = self.should_handoff(state)
        if handoff:
            target, why = handoff
            logger.info(f"[{self.name}] handing off to {target}: {why}")
            return {"next_agent": target, "handoff_reason": why}

        return await self.respond(state)

    async def respond(self, state: ConversationState, note: str | None = None) -> dict[str, Any]:
        tenant = state.get("tenant")
        ai_config = tenant.ai_config if tenant else None
        result = await self.llm.complete(
            self.build_messages(state, note),
            model=(ai_config.model if ai_config else None) or self.config.llm.model,
            temperature=ai_config.temperature if ai_config else None,
        )
        if not result.text:
            raise ValueError(f"empty LLM response in {self.name}")
        return {
            "final_response": result.text,
            "control": {"response_ready": True},
            "tokens_used": state.get("tokens_used", 0) + result.tokens_used,
        }

    def build_messages(self, state: ConversationState, note: str | None = None) -> list[dict[str, Any]]:
        messages = [{"role": "system", "content": self.system_prompt(state, note)}]
        for msg in state.get("messages") or []:
            messages.append(_message_to_dict(msg))
        return messages

    def system_prompt(self, state: ConversationState, note: str | None = None) -> str:
        tenant = state.get("tenant")
        parts = []
        if tenant and tenant.ai_config.system_prompt:
            parts.append(tenant.ai_config.system_prompt)
        parts.append(f"## Role: {self.name}\n{self.instructions}")
        business = _format_business(state.get("business_context"))
        if business:
            parts.append(f"## Business\n{business}")
        lead = state.get("lead")
        if lead:
            parts.append(f"## Customer\n- Name: {lead.name}")
        if note:
            parts.append(f"## Note\n{note}")
        if tenant:
            parts.append(
                f"Reply in at most {tenant.ai_config.max_response_length} characters."
            )
        return "\n\n".join(parts)


class RestaurantOnlySpecialist(Specialist):
    """Ordering and invoicing exist only for restaurants."""

    def should_handoff(self, state: ConversationState) -> tuple[str, str] | None:
        if state.get("vertical") != "restaurant":
            return NodeName.GENERAL.value, f"{self.name} is only available for restaurants"
        return None


class UrgentCareSpecialist(Specialist):
    def should_escalate(self, state: ConversationState) -> str | None:
        pain = (state.get("extracted_data") or {}).get("pain_level") or 0
        if pain >= SEVERE_PAIN_LEVEL:
            return f"urgent care: severe pain (level {pain})"
        return None


class BookingSpecialist(Specialist):
    """Booking nodes; delegate the actual booking to a BookingHandler."""

    def __init__(
        self,
        name: NodeName,
        instructions: str,
        llm: LLMClient,
        config: Config,
        booking_handler: BookingHandler | None = None,
    ):
        super().__init__(name, instructions, llm, config)
        self.booking_handler = booking_handler

    def should_escalate(self, state: ConversationState) -> str | None:
        business = state.get("business_context")
        if business is None or (not business.services and not business.branches):
            return "booking unavailable: business has no services or branches configured"
        return None

    async def respond(self, state: ConversationState, note: str | None = None) -> dict[str, Any]:
        if self.booking_handler is None:
            return await super().respond(state, note)

        booking = await self.booking_handler.attempt(dict(state))
        if booking is None:
            return await super().respond(state, note)
        if booking.success and booking.confirmation_message:
            logger.info(f"[{self.name}] booking confirmed: {booking.appointment_id}")
            return {
                "final_response": booking.confirmation_message,
                "control": {"response_ready": True},
                "booking_result": booking,
            }

        detail = booking.error or "no availability"
        patch = await super().respond(state, note=f"Booking attempt failed: {detail}")
        patch["booking_result"] = booking
        return patch


def make_specialists(
    config: Config,
    llm: LLMClient,
    booking_handler: BookingHandler | None = None,
) -> dict[NodeName, Specialist]:
    """One callable per specialist node name."""
    specialists: dict[NodeName, Specialist] = {}
    for name, instructions in _INSTRUCTIONS.items():
        if name in _RESTAURANT_ONLY:
            specialists[name] = RestaurantOnlySpecialist(name, instructions, llm, config)
        elif name in _BOOKING:
            specialists[name] = BookingSpecialist(name, instructions, llm, config, booking_handler)
        elif name is NodeName.URGENT_CARE:
            specialists[name] = UrgentCareSpecialist(name, instructions, llm, config)
        else:
            specialists[name] = Specialist(name, instructions, llm, config)
    return specialists


def _format_business(business: BusinessContext | None) -> str:
    if business is None:
        return ""
    lines = []
    for s in business.services[:15]:
        price = f"${s.price_min:g}" if s.price_min == s.price_max else f"${s.price_min:g}-${s.price_max:g}"
        lines.append(f"- Service: {s.name} ({price}, {s.duration_minutes} min)")
    for b in business.branches[:5]:
        hours = ", ".join(f"{d} {h.get('open', '?')}-{h.get('close', '?')}" for d, h in b.operating_hours.items())
        lines.append(f"- Branch: {b.name}, {b.address} {b.city} {b.phone} {hours}".rstrip())
    for f in business.faqs[:10]:
        lines.append(f"- FAQ: {f.question} → {f.answer}")
    return "\n".join(lines)


def _message_to_dict(msg: BaseMessage) -> dict[str, Any]:
    """Convert LangChain message to dict for litellm."""
    if isinstance(msg, HumanMessage):
        return {"role": "user", "content": msg.content}
    if isinstance(msg, AIMessage):
        return {"role": "assistant", "content": msg.content}
    if isinstance(msg, SystemMessage):
        return {"role": "system", "content": msg.content}
    return {"role": "user", "content": str(msg.content)}
