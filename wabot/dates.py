# wabot/dates.py
"""
Spanish date / time extraction for appointment requests.

All functions take ``today`` explicitly (defaulting to the shop's local date)
so callers and tests control the reference day.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from wabot.config import shop_tz
from wabot.intent import has_appointment_keyword
from wabot.models import AppointmentIntent
from wabot.schema import AppointmentType

WEEKDAYS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
MONTHS = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

# Python weekday() numbering: lunes=0 .. domingo=6
_WEEKDAY_WORDS = {
    "lunes": 0,
    "martes": 1,
    "miércoles": 2,
    "miercoles": 2,
    "jueves": 3,
    "viernes": 4,
    "sábado": 5,
    "sabado": 5,
    "domingo": 6,
}

_TODAY = re.compile(r"\bhoy\b")
_DAY_AFTER_TOMORROW = re.compile(r"\bpasado\s+ma[ñn]ana\b")
_TOMORROW = re.compile(r"\bma[ñn]ana\b")
_MORNING_PHRASE = re.compile(r"\b(?:de|por)\s+la\s+ma[ñn]ana\b")
_WEEKDAY = re.compile(r"\b(" + "|".join(_WEEKDAY_WORDS) + r")\b")
_LONG_DATE = re.compile(r"\b(\d{1,2})\s+de\s+(" + "|".join(MONTHS) + r")\b")
_SHORT_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})\b")

_TIME_PATTERNS = (
    re.compile(r"\b(?P<h>\d{1,2}):(?P<m>\d{2})(?:\s*(?P<mer>am|pm|a\.m\.|p\.m\.)(?![a-z]))?"),
    re.compile(r"\b(?P<h>\d{1,2})\s*(?P<mer>am|pm|a\.m\.|p\.m\.)(?![a-z])"),
    re.compile(r"\ba\s+las?\s+(?P<h>\d{1,2})(?::(?P<m>\d{2}))?"),
)
_DAYPART = re.compile(r"\s+de\s+la\s+(mañana|manana|tarde|noche)\b")

_TYPE_KEYWORDS = (
    (AppointmentType.VISUAL_EXAM, ("examen", "revision", "revisión")),
    (AppointmentType.LENS_PICKUP, ("entrega", "recoger")),
    (AppointmentType.FOLLOW_UP, ("seguimiento", "control")),
)


def local_today() -> date:
    return datetime.now(shop_tz()).date()


def _roll_forward(day: int, month: int, today: date) -> Optional[date]:
    try:
        target = date(today.year, month, day)
    except ValueError:
        return None
    if target < today:
        try:
            target = target.replace(year=today.year + 1)
        except ValueError:
            # 29 de febrero rolled into a non leap year
            return None
    return target


# -----------------------------
# Extraction
# -----------------------------
def extract_date(text: str, today: Optional[date] = None) -> Tuple[Optional[date], Optional[str]]:
    """Return (date, raw_match) for the first date expression in ``text``."""
    today = today or local_today()
    text = _MORNING_PHRASE.sub(" ", (text or "").lower())

    m = _TODAY.search(text)
    if m:
        return today, m.group(0)
    m = _DAY_AFTER_TOMORROW.search(text)
    if m:
        return today + timedelta(days=2), m.group(0)
    m = _TOMORROW.search(text)
    if m:
        return today + timedelta(days=1), m.group(0)

    m = _WEEKDAY.search(text)
    if m:
        offset = _WEEKDAY_WORDS[m.group(1)] - today.weekday()
        if offset <= 0:
            offset += 7
        return today + timedelta(days=offset), m.group(0)

    m = _LONG_DATE.search(text)
    if m:
        target = _roll_forward(int(m.group(1)), MONTHS.index(m.group(2)) + 1, today)
        return (target, m.group(0)) if target else (None, None)

    m = _SHORT_DATE.search(text)
    if m:
        target = _roll_forward(int(m.group(1)), int(m.group(2)), today)
        return (target, m.group(0)) if target else (None, None)

    return None, None


def _to_24h(hour: int, meridiem: Optional[str]) -> int:
    if meridiem in ("pm", "tarde", "noche") and hour < 12:
        return hour + 12
    if meridiem in ("am", "mañana", "manana") and hour == 12:
        return 0
    return hour


def extract_time(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Return ("HH:MM", raw_match) for the first time expression in ``text``."""
    text = (text or "").lower()
    for pattern in _TIME_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        parts = m.groupdict()
        hour = int(parts["h"])
        minute = int(parts["m"]) if parts.get("m") else 0
        meridiem = (parts.get("mer") or "").replace(".", "") or None
        start, end = m.span()
        if meridiem is None:
            suffix = _DAYPART.match(text, end)
            if suffix:
                meridiem, end = suffix.group(1), suffix.end()
        hour = _to_24h(hour, meridiem)
        if hour > 23 or minute > 59:
            return None, None
        return f"{hour:02d}:{minute:02d}", text[start:end].strip()
    return None, None


def extract_appointment_type(text: str) -> AppointmentType:
    text = (text or "").lower()
    for appointment_type, words in _TYPE_KEYWORDS:
        if any(w in text for w in words):
            return appointment_type
    return AppointmentType.VISUAL_EXAM


def detect_appointment_intent(text: str, today: Optional[date] = None) -> AppointmentIntent:
    if not has_appointment_keyword(text):
        return AppointmentIntent(has_intent=False)
    return parse_appointment_request(text, today)


def parse_appointment_request(text: str, today: Optional[date] = None) -> AppointmentIntent:
    """Extract date, time and type without requiring a booking keyword."""
    lowered = (text or "").lower().strip()
    found_date, raw_date = extract_date(lowered, today)
    found_time, raw_time = extract_time(lowered)
    return AppointmentIntent(
        has_intent=True,
        date=found_date,
        time=found_time,
        raw_date=raw_date,
        raw_time=raw_time,
        appointment_type=extract_appointment_type(lowered),
    )


# -----------------------------
# Combining & formatting
# -----------------------------
def combine_local(day: date, hhmm: str) -> datetime:
    """Attach an "HH:MM" time to ``day`` in the shop time zone."""
    hour, minute = (int(p) for p in hhmm.split(":"))
    return datetime.combine(day, time(hour, minute), tzinfo=shop_tz())


def format_date_for_user(day: date) -> str:
    return f"{WEEKDAYS[day.weekday()]} {day.day} de {MONTHS[day.month - 1]}"


def format_time_for_user(hhmm: str) -> str:
    hour, minute = (int(p) for p in hhmm.split(":"))
    suffix = "AM" if hour < 12 else "PM"
    display = hour % 12 or 12
    return f"{display}:{minute:02d} {suffix}"


def format_instant_for_user(instant: datetime) -> Tuple[str, str]:
    local = instant.astimezone(shop_tz())
    return format_date_for_user(local.date()), format_time_for_user(local.strftime("%H:%M"))
