# wabot/intent.py
"""
Intent Classifier
-----------------
Rule-based intent detection for inbound WhatsApp texts.

Every keyword set and its priority lives in ``RULES``; ``classify`` walks the
table top to bottom and returns the first hit. Lead status only matters for
the first-contact fallback (status ``nuevo`` always gets the menu).
"""

from __future__ import annotations
import re
import string
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple

from wabot.schema import LeadStatus


class Intent(str, Enum):
    GREETING_OR_MENU = "greeting_or_menu"
    NUMBERED_MENU_CHOICE = "numbered_menu_choice"
    HUMAN_HANDOFF = "human_handoff"
    APPOINTMENT_INTENT = "appointment_intent"
    NO_MATCH = "no_match"


class Topic(str, Enum):
    EXAM = "examen"
    LENSES = "lentes"
    FRAMES = "monturas"
    PROMOS = "promociones"


# -----------------------------
# Lexicons
# -----------------------------
HANDOFF = {"humano", "asesor", "persona", "ayuda", "hablar con alguien"}
APPOINTMENT = {
    "agendar", "agenda", "cita", "reservar", "reserva", "examen", "consulta",
    "revisión", "revision", "quiero una cita", "necesito una cita",
    "cuando puedo ir", "cuándo puedo ir", "horario disponible",
}
GREETING = {
    "hola", "buenos dias", "buenos días", "buenas tardes", "buenas noches",
    "hi", "start", "inicio", "menu", "menú",
}
MENU_EXAM = {"1", "uno", "examen"}
MENU_LENSES = {"2", "dos", "lentes"}
MENU_FRAMES = {"3", "tres", "monturas"}
MENU_PROMOS = {"4", "cuatro", "promociones"}

ORDINALS = {
    1: {"1", "uno", "una", "primera", "primero", "la primera", "el primero", "la 1", "opcion 1", "opción 1"},
    2: {"2", "dos", "segunda", "segundo", "la segunda", "el segundo", "la 2", "opcion 2", "opción 2"},
    3: {"3", "tres", "tercera", "tercero", "la tercera", "el tercero", "la 3", "opcion 3", "opción 3"},
}


@dataclass(frozen=True)
class Rule:
    """
    One row of the rule table.

    ``mode`` is how keywords are tested against the normalized text:
    ``substring`` (anywhere), ``word`` (whole words) or ``exact`` (the whole
    message).
    """

    intent: Intent
    keywords: FrozenSet[str]
    mode: str
    topic: Optional[Topic] = None


RULES: Tuple[Rule, ...] = (
    Rule(Intent.HUMAN_HANDOFF, frozenset({"9"}), "exact"),
    Rule(Intent.HUMAN_HANDOFF, frozenset(HANDOFF), "substring"),
    Rule(Intent.APPOINTMENT_INTENT, frozenset(APPOINTMENT), "substring"),
    Rule(Intent.NUMBERED_MENU_CHOICE, frozenset(MENU_EXAM), "exact", Topic.EXAM),
    Rule(Intent.NUMBERED_MENU_CHOICE, frozenset(MENU_LENSES), "exact", Topic.LENSES),
    Rule(Intent.NUMBERED_MENU_CHOICE, frozenset(MENU_FRAMES), "exact", Topic.FRAMES),
    Rule(Intent.NUMBERED_MENU_CHOICE, frozenset(MENU_PROMOS), "exact", Topic.PROMOS),
    Rule(Intent.GREETING_OR_MENU, frozenset(GREETING), "word"),
)


@dataclass(frozen=True)
class Classification:
    intent: Intent
    topic: Optional[Topic] = None


# -----------------------------
# Utils
# -----------------------------
_PUNCT = str.maketrans("", "", string.punctuation + "¡¿")


def _norm(text: str) -> str:
    return " ".join(text.lower().translate(_PUNCT).split())


def _has_any(text: str, phrases: Iterable[str]) -> bool:
    return any(p in text for p in phrases)


def _match_words(text: str, words: Iterable[str]) -> bool:
    pattern = r"\b(" + "|".join(map(re.escape, words)) + r")\b"
    return bool(re.search(pattern, text))


def _rule_matches(rule: Rule, text: str) -> bool:
    if rule.mode == "exact":
        return text in rule.keywords
    if rule.mode == "word":
        return _match_words(text, rule.keywords)
    return _has_any(text, rule.keywords)


# -----------------------------
# Main classifier
# -----------------------------
def classify(body: str, status: LeadStatus | str | None = None) -> Classification:
    """Return the single intent (and menu topic, if any) for an inbound text."""
    text = _norm(body or "")
    if text:
        for rule in RULES:
            if _rule_matches(rule, text):
                return Classification(rule.intent, rule.topic)
    if status in (LeadStatus.NEW, LeadStatus.NEW.value):
        return Classification(Intent.GREETING_OR_MENU)
    return Classification(Intent.NO_MATCH)


def has_appointment_keyword(body: str) -> bool:
    return _has_any(_norm(body or ""), APPOINTMENT)


def parse_ordinal(body: str, limit: int = 3) -> Optional[int]:
    """Map a bare option reply ("2", "la segunda", "opción 3") to a 1-based index."""
    text = _norm(body or "")
    for index, words in ORDINALS.items():
        if index <= limit and text in words:
            return index
    return None


__all__ = ["Classification", "Intent", "RULES", "Rule", "Topic", "classify", "has_appointment_keyword", "parse_ordinal"]
