"""Rule-based message analysis used by the supervisor node.

Accent-insensitive keyword patterns, evaluated in priority order. Cheap
enough to run on every turn before any LLM call.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

from turngraph.memory.models import BusinessContext

# Ordered by priority: the first match wins.
_INTENT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("PAIN_URGENT", re.compile(
        r"\b(dolor\w*|duele\w*|molest\w*|urgen\w*|emergen\w*|sangr\w*|hinch\w*|"
        r"inflam\w*|roto|rota|quebr\w*|fractur\w*|accidente)\b"
    )),
    ("HUMAN_REQUEST", re.compile(
        r"\b(humano|persona real|asesor|gerente|encargado|supervisor|"
        r"hablar con alguien|quiero hablar)\b"
    )),
    ("INVOICE_REQUEST", re.compile(
        r"\b(factura\w*|cfdi|rfc|datos fiscales|comprobante fiscal)\b"
    )),
    ("ORDER_REQUEST", re.compile(
        r"\b(pedido|ordenar|orden para|para llevar|a domicilio|quiero pedir)\b"
    )),
    ("BOOK_APPOINTMENT", re.compile(
        r"\b(cita|agendar|reserv\w*|appointment|disponib\w*|agenda|turno|"
        r"cuando puedo|lunes|martes|miercoles|jueves|viernes|sabado|domingo)\b"
    )),
    ("PRICE_INQUIRY", re.compile(
        r"\b(precio\w*|costo\w*|cuanto cuesta|cuanto sale|cuanto cobran|valor|"
        r"cotiz\w*|tarifa\w*|presupuesto|caro|barato|financ\w*|meses sin)\b"
    )),
    ("LOCATION", re.compile(
        r"\b(donde|ubicacion|direccion|llegar|mapa|sucursal\w*|estaciona\w*|cerca)\b"
    )),
    ("HOURS", re.compile(
        r"\b(horario\w*|abren|cierran|atienden|a que hora|hasta que hora)\b"
    )),
    ("FAQ", re.compile(
        r"\b(como funciona|que incluye|cuanto dura|requisitos|aceptan|tienen|"
        r"ofrecen|hacen|realizan)\b"
    )),
    ("GREETING", re.compile(
        r"^(hola|buenos|buenas|hi|hello|hey|saludos|que tal|buen dia)\b"
    )),
]

_INTENT_TO_AGENT: dict[str, str] = {
    "GREETING": "greeting",
    "PRICE_INQUIRY": "pricing",
    "PAIN_URGENT": "urgent_care",
    "LOCATION": "location",
    "HOURS": "hours",
    "FAQ": "faq",
    "UNKNOWN": "general",
}

_BOOKING_BY_VERTICAL: dict[str, str] = {
    "dental": "booking_dental",
    "restaurant": "booking_restaurant",
    "clinic": "booking_medical",
    "veterinary": "booking_medical",
}

SEVERE_PAIN_LEVEL = 4
HIGH_VALUE_POINTS = 15


def normalize(text: str) -> str:
    """Lowercase and strip accents."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(c for c in decomposed if unicodedata.category(c) != "Mn").strip()


def detect_intent(message: str) -> str:
    text = normalize(message)
    for intent, pattern in _INTENT_PATTERNS:
        if pattern.search(text):
            return intent
    return "UNKNOWN"


def detect_signals(message: str, business: BusinessContext | None) -> list[dict[str, Any]]:
    """Scoring signals: one hit per rule whose keyword appears in the message."""
    if business is None:
        return []
    text = normalize(message)
    signals = []
    for rule in business.scoring_rules:
        if any(normalize(kw) in text for kw in rule.keywords if kw):
            signals.append({"signal": rule.signal_name, "points": rule.points})
    return signals


def extract_data(message: str) -> dict[str, Any]:
    """Contact details and pain level found in the message."""
    extracted: dict[str, Any] = {}
    email = re.search(r"[\w.-]+@[\w.-]+\.\w+", message)
    if email:
        extracted["email"] = email.group(0)
    phone = re.search(r"(?:\+?52)?[\s.-]?\d{2,3}[\s.-]?\d{3,4}[\s.-]?\d{4}\b", message)
    if phone:
        extracted["phone"] = re.sub(r"[\s.-]", "", phone.group(0))

    text = normalize(message)
    if re.search(r"\b(mucho dolor|dolor fuerte|insoportable|no aguanto|muchisimo dolor)\b", text):
        extracted["pain_level"] = 5
    elif re.search(r"\b(bastante dolor|dolor moderado)\b", text):
        extracted["pain_level"] = 3
    elif re.search(r"\b(molestia|incomodidad|leve)\b", text):
        extracted["pain_level"] = 1

    if re.search(r"\b(hoy|ahora)\b", text):
        extracted["preferred_date"] = "today"
    elif re.search(r"\bmanana\b", text):
        extracted["preferred_date"] = "tomorrow"
    return extracted


def escalation_check(
    intent: str,
    signals: list[dict[str, Any]],
    message: str,
    extracted: dict[str, Any],
    auto_escalate_keywords: list[str] | None = None,
) -> tuple[bool, str | None]:
    """Decide whether the supervisor escalates before any specialist runs."""
    if intent == "HUMAN_REQUEST":
        return True, "customer asked for a human agent"
    pain = extracted.get("pain_level") or 0
    if pain >= SEVERE_PAIN_LEVEL:
        return True, f"severe pain reported (level {pain})"

    text = normalize(message)
    for keyword in auto_escalate_keywords or []:
        if keyword and normalize(keyword) in text:
            return True, f"escalation keyword: {keyword}"

    high_value = [s for s in signals if s.get("points", 0) >= HIGH_VALUE_POINTS]
    if len(high_value) >= 2:
        return True, "high-value lead detected"
    return False, None


def next_agent_for(intent: str, vertical: str) -> str:
    """Specialist name for an intent within a business vertical."""
    if intent == "BOOK_APPOINTMENT":
        return _BOOKING_BY_VERTICAL.get(vertical, "booking")
    if intent in ("INVOICE_REQUEST", "ORDER_REQUEST"):
        if vertical == "restaurant":
            return "invoicing_restaurant" if intent == "INVOICE_REQUEST" else "ordering_restaurant"
        return "general"
    return _INTENT_TO_AGENT.get(intent, "general")
