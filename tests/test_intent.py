import pytest

from wabot.intent import RULES, Intent, Topic, classify, parse_ordinal
from wabot.schema import LeadStatus


@pytest.mark.parametrize(
    "text",
    ["9", "9.", "quiero hablar con un asesor", "Necesito AYUDA", "me atiende una persona?", "hablar con alguien"],
)
def test_handoff_triggers(text):
    assert classify(text, LeadStatus.INTERESTED).intent == Intent.HUMAN_HANDOFF


def test_handoff_beats_appointment_keywords():
    assert classify("ayuda para agendar una cita", LeadStatus.INTERESTED).intent == Intent.HUMAN_HANDOFF


def test_quiero_un_examen_is_appointment_not_menu_topic():
    result = classify("quiero un examen", LeadStatus.INTERESTED)
    assert result.intent == Intent.APPOINTMENT_INTENT
    assert result.topic is None


@pytest.mark.parametrize(
    "text",
    ["Quiero agendar", "tienen cita disponible?", "puedo reservar", "una revisión", "cuándo puedo ir", "horario disponible"],
)
def test_appointment_keywords(text):
    assert classify(text, LeadStatus.QUOTED).intent == Intent.APPOINTMENT_INTENT


@pytest.mark.parametrize(
    "text,topic",
    [
        ("1", Topic.EXAM),
        ("uno", Topic.EXAM),
        ("2", Topic.LENSES),
        ("Lentes", Topic.LENSES),
        ("tres", Topic.FRAMES),
        ("monturas", Topic.FRAMES),
        ("4", Topic.PROMOS),
        ("promociones!", Topic.PROMOS),
    ],
)
def test_numbered_menu_choices(text, topic):
    result = classify(text, LeadStatus.INTERESTED)
    assert result.intent == Intent.NUMBERED_MENU_CHOICE
    assert result.topic == topic


def test_bare_examen_goes_to_appointment_rule_first():
    assert classify("examen", LeadStatus.INTERESTED).intent == Intent.APPOINTMENT_INTENT


def test_numbered_choice_needs_whole_message():
    assert classify("tengo 2 hijos", LeadStatus.INTERESTED).intent == Intent.NO_MATCH


@pytest.mark.parametrize("text", ["Hola!", "buenos días", "Buenas noches", "menú", "inicio", "hi"])
def test_greetings(text):
    assert classify(text, LeadStatus.CUSTOMER).intent == Intent.GREETING_OR_MENU


def test_greeting_words_match_whole_words_only():
    assert classify("mi hijo necesita gafas", LeadStatus.CUSTOMER).intent == Intent.NO_MATCH


def test_first_contact_fallback_for_new_leads():
    assert classify("ok gracias", LeadStatus.NEW).intent == Intent.GREETING_OR_MENU
    assert classify("ok gracias", "nuevo").intent == Intent.GREETING_OR_MENU
    assert classify("ok gracias", LeadStatus.INTERESTED).intent == Intent.NO_MATCH


def test_empty_text_is_no_match_unless_new():
    assert classify("", LeadStatus.INTERESTED).intent == Intent.NO_MATCH
    assert classify("   ", LeadStatus.NEW).intent == Intent.GREETING_OR_MENU


def test_rule_table_priority_order():
    intents = [rule.intent for rule in RULES]
    assert intents[0] == Intent.HUMAN_HANDOFF
    first_appointment = intents.index(Intent.APPOINTMENT_INTENT)
    first_menu = intents.index(Intent.NUMBERED_MENU_CHOICE)
    assert max(i for i, x in enumerate(intents) if x == Intent.HUMAN_HANDOFF) < first_appointment < first_menu
    assert intents[-1] == Intent.GREETING_OR_MENU


@pytest.mark.parametrize(
    "text,expected",
    [("2", 2), ("la segunda", 2), ("Opción 3", 3), ("uno", 1), ("la 1", 1), ("primera", 1)],
)
def test_parse_ordinal(text, expected):
    assert parse_ordinal(text) == expected


def test_parse_ordinal_respects_limit_and_ignores_other_text():
    assert parse_ordinal("3", limit=2) is None
    assert parse_ordinal("hola") is None
    assert parse_ordinal("mañana a las 3pm") is None
