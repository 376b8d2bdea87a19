"""Shared fixtures: config with tmp checkpoint DB, fake LLM, dental tenant."""

from unittest.mock import AsyncMock

import pytest

from turngraph.core.collaborators import LLMResult
from turngraph.core.config import Config
from turngraph.memory.models import (
    FAQ,
    Branch,
    BusinessContext,
    ScoringRule,
    Service,
    TenantInfo,
    TurnRequest,
)


@pytest.fixture
def cfg(tmp_path):
    return Config(checkpoints={"path": str(tmp_path / "checkpoints.db")})


@pytest.fixture
def llm():
    client = AsyncMock()
    client.complete = AsyncMock(
        return_value=LLMResult(text="¡Hola! ¿En qué podemos ayudarte?", tokens_used=42)
    )
    return client


@pytest.fixture
def tenant():
    return TenantInfo(tenant_id="t1", tenant_name="Clínica Sonrisa", vertical="dental")


@pytest.fixture
def business():
    return BusinessContext(
        services=[
            Service(id="s1", name="Limpieza dental", price_min=500, price_max=800),
            Service(id="s2", name="Implante", price_min=15000, price_max=25000, duration_minutes=90),
        ],
        branches=[
            Branch(
                id="b1",
                name="Centro",
                address="Av. Reforma 100",
                city="CDMX",
                phone="5555555555",
                operating_hours={"lun": {"open": "09:00", "close": "19:00"}},
            )
        ],
        faqs=[FAQ(question="¿Aceptan tarjeta?", answer="Sí, todas las tarjetas.")],
        scoring_rules=[
            ScoringRule(signal_name="implant_interest", points=20, keywords=["implante"]),
            ScoringRule(signal_name="urgency", points=15, keywords=["urgente", "hoy mismo"]),
            ScoringRule(signal_name="price_question", points=5, keywords=["precio"]),
        ],
    )


@pytest.fixture
def make_request(tenant, business):
    def _make(message: str, conversation_id: str = "conv-1", **overrides) -> TurnRequest:
        fields = {
            "tenant_id": tenant.tenant_id,
            "conversation_id": conversation_id,
            "lead_id": "lead-1",
            "current_message": message,
            "tenant_context": tenant,
            "business_context": business,
        }
        fields.update(overrides)
        return TurnRequest(**fields)

    return _make
