"""Checkpoint payload schema — state projection, migration and restore.

Checkpoints hold the serialisable part of ``ConversationState``. Read-only
context (tenant, lead, conversation, business) is reloaded live every turn
and never stored. Older payloads are migrated forward on read; fields that
fail validation are dropped instead of failing the whole restore.
"""

from __future__ import annotations

from typing import Any

from langchain_core.messages import BaseMessage, messages_from_dict, messages_to_dict
from loguru import logger
from pydantic import StrictBool, StrictInt, TypeAdapter, ValidationError

from turngraph.memory.models import BookingResult

CHECKPOINT_SCHEMA_VERSION = 2

# Never persisted: reloaded from the live request/context every turn.
CONTEXT_FIELDS = frozenset({"tenant", "lead", "conversation", "business_context"})

_FIELD_TYPES: dict[str, Any] = {
    "current_message": str,
    "channel": str,
    "vertical": str,
    "current_agent": str | None,
    "next_agent": str | None,
    "routing_reason": str,
    "handoff_reason": str | None,
    "detected_intent": str,
    "detected_signals": list[dict[str, Any]],
    "extracted_data": dict[str, Any],
    "score_change": int,
    "final_response": str,
    "booking_result": BookingResult | None,
    "tokens_used": int,
    "errors": list[str],
    "processing_started_at": str,
    "processing_time_ms": int,
    "turn_trace_start": int,
    "agent_trace": list[dict[str, Any]],
}
_ADAPTERS = {name: TypeAdapter(tp) for name, tp in _FIELD_TYPES.items()}

# control is restored key by key; a bad flag must not flip routing
_CONTROL_TYPES: dict[str, Any] = {
    "iteration_count": StrictInt,
    "max_iterations": StrictInt,
    "should_escalate": StrictBool,
    "escalation_reason": str | None,
    "response_ready": StrictBool,
}
_CONTROL_ADAPTERS = {name: TypeAdapter(tp) for name, tp in _CONTROL_TYPES.items()}
_VERSION = TypeAdapter(int)


def project_channel_values(state: dict[str, Any]) -> dict[str, Any]:
    """State → JSON-safe channel values for a checkpoint."""
    values: dict[str, Any] = {"schema_version": CHECKPOINT_SCHEMA_VERSION}
    for key, value in state.items():
        if key in CONTEXT_FIELDS or key == "resumed":
            continue
        if key == "messages":
            values[key] = messages_to_dict(value or [])
        elif key == "control":
            values[key] = {k: v for k, v in (value or {}).items() if k in _CONTROL_ADAPTERS}
        elif key in _ADAPTERS:
            values[key] = _ADAPTERS[key].dump_python(value, mode="json")
    return values


def migrate_channel_values(values: dict[str, Any]) -> dict[str, Any]:
    """Bring a stored payload up to ``CHECKPOINT_SCHEMA_VERSION``."""
    values = dict(values)
    version = _schema_version(values.get("schema_version"))

    if version < 2:
        # v1 traces used ``timestamp`` and control had no max_iterations
        raw_trace = values.get("agent_trace")
        trace = []
        for entry in raw_trace if isinstance(raw_trace, list) else []:
            if isinstance(entry, dict):
                entry = dict(entry)
                if "timestamp" in entry and "started_at" not in entry:
                    entry["started_at"] = entry.pop("timestamp")
                entry.setdefault("outcome", "ok")
                entry.setdefault("duration_ms", 0)
            trace.append(entry)
        values["agent_trace"] = trace
        control = values.get("control")
        if isinstance(control, dict):
            values["control"] = {"max_iterations": 5, **control}
        logger.debug(f"Migrated checkpoint payload v{version} → v2")

    values["schema_version"] = CHECKPOINT_SCHEMA_VERSION
    return values


def restore_channel_values(values: dict[str, Any]) -> dict[str, Any]:
    """Stored payload → partial state. Malformed fields are dropped."""
    values = migrate_channel_values(values)
    restored: dict[str, Any] = {}

    if "messages" in values:
        restored["messages"] = _restore_messages(values["messages"])
    if "control" in values:
        restored["control"] = _restore_control(values["control"])

    for key, adapter in _ADAPTERS.items():
        if key not in values:
            continue
        try:
            restored[key] = adapter.validate_python(values[key])
        except ValidationError as e:
            logger.warning(f"Dropping malformed checkpoint field {key!r}: {e.error_count()} errors")
    return restored


def _schema_version(raw: Any) -> int:
    """Stored version; anything missing or unreadable counts as v1."""
    if raw is None:
        return 1
    try:
        return _VERSION.validate_python(raw)
    except ValidationError:
        logger.warning(f"Unreadable checkpoint schema_version {raw!r}, treating as v1")
        return 1


def _restore_control(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        logger.warning("Dropping malformed checkpoint control")
        return {}
    control: dict[str, Any] = {}
    for key, value in raw.items():
        adapter = _CONTROL_ADAPTERS.get(key)
        if adapter is None:
            continue
        try:
            control[key] = adapter.validate_python(value)
        except ValidationError:
            logger.warning(f"Dropping malformed control flag {key!r}: {value!r}")
    return control


def _restore_messages(raw: Any) -> list[BaseMessage]:
    if not isinstance(raw, list):
        logger.warning("Dropping malformed checkpoint messages")
        return []
    messages: list[BaseMessage] = []
    for item in raw:
        try:
            messages.extend(messages_from_dict([item]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed checkpoint message: {e}")
    return messages
