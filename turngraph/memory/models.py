"""Pydantic data models — turn context, turn I/O, checkpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


Vertical = Literal["dental", "restaurant", "clinic", "gym", "beauty", "veterinary"]
Channel = Literal["whatsapp", "instagram", "facebook", "tiktok", "webchat", "voice", "api"]


# ════════════════════════════════════════════════════════════
# TURN CONTEXT (read-only inside the graph)
# ════════════════════════════════════════════════════════════


class AIConfig(BaseModel):
    """Per-tenant assistant settings."""

    system_prompt: str = ""
    model: str | None = None
    temperature: float | None = None
    max_response_length: int = 300
    auto_escalate_keywords: list[str] = Field(default_factory=list)
    max_iterations: int = 5
    escalation_message: str | None = None


class TenantInfo(BaseModel):
    tenant_id: str
    tenant_name: str = ""
    vertical: Vertical = "dental"
    timezone: str = "America/Mexico_City"
    ai_config: AIConfig = Field(default_factory=AIConfig)


class LeadInfo(BaseModel):
    lead_id: str
    name: str = "Cliente"
    phone: str = ""
    email: str | None = None
    score: int = 50
    classification: Literal["cold", "warm", "hot", "converted"] = "warm"


class ConversationInfo(BaseModel):
    conversation_id: str
    channel: str = "whatsapp"
    status: Literal["active", "escalated", "closed"] = "active"
    ai_handling: bool = True
    message_count: int = 0


class Service(BaseModel):
    id: str
    name: str
    description: str = ""
    price_min: float = 0
    price_max: float = 0
    duration_minutes: int = 60


class Branch(BaseModel):
    id: str
    name: str
    address: str = ""
    city: str = ""
    phone: str = ""
    operating_hours: dict[str, dict[str, str]] = Field(default_factory=dict)


class FAQ(BaseModel):
    question: str
    answer: str


class ScoringRule(BaseModel):
    signal_name: str
    points: int
    keywords: list[str] = Field(default_factory=list)


class BusinessContext(BaseModel):
    services: list[Service] = Field(default_factory=list)
    branches: list[Branch] = Field(default_factory=list)
    faqs: list[FAQ] = Field(default_factory=list)
    scoring_rules: list[ScoringRule] = Field(default_factory=list)


class TurnContext(BaseModel):
    """Everything a context loader returns for one turn."""

    tenant: TenantInfo
    lead: LeadInfo | None = None
    conversation: ConversationInfo | None = None
    business: BusinessContext | None = None


# ════════════════════════════════════════════════════════════
# TURN REQUEST / RESULT
# ════════════════════════════════════════════════════════════


class Signal(BaseModel):
    signal: str
    points: int


class BookingResult(BaseModel):
    success: bool
    appointment_id: str | None = None
    scheduled_at: str | None = None
    branch_name: str | None = None
    service_name: str | None = None
    confirmation_message: str | None = None
    error: str | None = None


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class TurnRequest(BaseModel):
    tenant_id: str
    conversation_id: str
    lead_id: str = ""
    current_message: str
    channel: str = "whatsapp"
    tenant_context: TenantInfo | None = None
    lead_context: LeadInfo | None = None
    conversation_context: ConversationInfo | None = None
    business_context: BusinessContext | None = None
    previous_messages: list[HistoryMessage] = Field(default_factory=list)


class TurnOptions(BaseModel):
    enable_checkpointing: bool = True
    resume_from_checkpoint: bool = False


class TurnResult(BaseModel):
    success: bool
    response: str
    intent: str = "UNKNOWN"
    signals: list[Signal] = Field(default_factory=list)
    score_change: int = 0
    escalated: bool = False
    escalation_reason: str | None = None
    tokens_used: int = 0
    processing_time_ms: int = 0
    agents_used: list[str] = Field(default_factory=list)
    booking_result: BookingResult | None = None
    errors: list[str] = Field(default_factory=list)
    recovered: bool = False
    replayed: bool = False


class TurnEnvelope(BaseModel):
    """HTTP body: request + options."""

    request: TurnRequest
    options: TurnOptions = Field(default_factory=TurnOptions)


# ════════════════════════════════════════════════════════════
# CHECKPOINTS
# ════════════════════════════════════════════════════════════


class Checkpoint(BaseModel):
    id: str
    ts: str
    channel_values: dict[str, Any] = Field(default_factory=dict)
    channel_versions: dict[str, int] = Field(default_factory=dict)
    parent_checkpoint_id: str | None = None


class CheckpointMetadata(BaseModel):
    source: str = "input"
    step: int = 0
    writes: dict[str, Any] = Field(default_factory=dict)
    parents: dict[str, str] = Field(default_factory=dict)


class CheckpointTuple(BaseModel):
    """A stored checkpoint with its addressing information."""

    thread_id: str
    checkpoint_ns: str = ""
    checkpoint: Checkpoint
    metadata: CheckpointMetadata
    parent_checkpoint_id: str | None = None
    created_at: datetime | None = None


class PendingWrite(BaseModel):
    channel: str
    value: Any = None


class ThreadState(BaseModel):
    thread_id: str
    last_checkpoint_id: str
    last_updated: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class CheckpointStats(BaseModel):
    total_checkpoints: int = 0
    total_threads: int = 0
    oldest_checkpoint: datetime | None = None
    newest_checkpoint: datetime | None = None
    storage_bytes: int = 0


# ════════════════════════════════════════════════════════════
# API
# ════════════════════════════════════════════════════════════


class HealthResponse(BaseModel):
    status: str
    version: str = ""
    checkpoints_ready: bool = False


class CheckpointSummary(BaseModel):
    checkpoint_id: str
    parent_checkpoint_id: str | None = None
    source: str
    step: int
    has_response: bool
    created_at: datetime | None = None
