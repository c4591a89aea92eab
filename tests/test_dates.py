from datetime import date, datetime, timedelta, timezone

import pytest

from wabot import dates
from wabot.schema import AppointmentType

TODAY = date(2026, 10, 19)  # Monday


@pytest.mark.parametrize(
    "text,expected,raw",
    [
        ("hoy en la tarde", date(2026, 10, 19), "hoy"),
        ("mañana", date(2026, 10, 20), "mañana"),
        ("manana temprano", date(2026, 10, 20), "manana"),
        ("pasado mañana", date(2026, 10, 21), "pasado mañana"),
        ("pasado manana a las 4", date(2026, 10, 21), "pasado manana"),
    ],
)
def test_relative_dates(text, expected, raw):
    assert dates.extract_date(text, TODAY) == (expected, raw)


@pytest.mark.parametrize(
    "word,weekday",
    [
        ("lunes", 0), ("martes", 1), ("miércoles", 2), ("miercoles", 2), ("jueves", 3),
        ("viernes", 4), ("sábado", 5), ("sabado", 5), ("domingo", 6),
    ],
)
@pytest.mark.parametrize("today", [TODAY + timedelta(days=i) for i in range(7)])
def test_weekday_is_strictly_future_and_matches(word, weekday, today):
    found, raw = dates.extract_date(f"el {word} puedo", today)
    assert raw == word
    assert found.weekday() == weekday
    assert 1 <= (found - today).days <= 7


def test_same_weekday_resolves_to_next_week():
    found, _ = dates.extract_date("el lunes", TODAY)
    assert found == date(2026, 10, 26)


def test_long_date_this_year_and_rollover():
    assert dates.extract_date("el 25 de diciembre", TODAY)[0] == date(2026, 12, 25)
    assert dates.extract_date("15 de marzo", TODAY)[0] == date(2027, 3, 15)
    assert dates.extract_date("19 de octubre", TODAY)[0] == TODAY


def test_short_date_and_rollover():
    assert dates.extract_date("el 30/10", TODAY) == (date(2026, 10, 30), "30/10")
    assert dates.extract_date("1/01", TODAY)[0] == date(2027, 1, 1)


def test_invalid_calendar_dates_yield_nothing():
    assert dates.extract_date("el 31/02", TODAY) == (None, None)
    assert dates.extract_date("el 31 de abril", TODAY) == (None, None)


def test_no_date():
    assert dates.extract_date("quiero una cita", TODAY) == (None, None)


def test_morning_phrase_is_not_tomorrow():
    assert dates.extract_date("el viernes por la mañana", TODAY)[0] == date(2026, 10, 23)
    assert dates.extract_date("a las 10 de la mañana", TODAY) == (None, None)


@pytest.mark.parametrize("hour", range(1, 12))
def test_pm_hours_add_twelve(hour):
    assert dates.extract_time(f"a las {hour} pm")[0] == f"{hour + 12:02d}:00"
    assert dates.extract_time(f"{hour}pm")[0] == f"{hour + 12:02d}:00"


def test_twelve_am_and_pm():
    assert dates.extract_time("12 am")[0] == "00:00"
    assert dates.extract_time("12 pm")[0] == "12:00"
    assert dates.extract_time("12:30am")[0] == "00:30"


@pytest.mark.parametrize(
    "text,expected,raw",
    [
        ("mañana a las 3:30pm", "15:30", "3:30pm"),
        ("a las 15:00", "15:00", "15:00"),
        ("tipo 10 am", "10:00", "10 am"),
        ("a las 3", "03:00", "a las 3"),
        ("a las 4:15", "04:15", "4:15"),
        ("a las 4 de la tarde", "16:00", "a las 4 de la tarde"),
        ("a las 10 de la mañana", "10:00", "a las 10 de la mañana"),
        ("a las 3:30 de la tarde", "15:30", "3:30 de la tarde"),
        ("7:15 de la noche", "19:15", "7:15 de la noche"),
        ("a las 10:30 de la mañana", "10:30", "10:30 de la mañana"),
        ("12:30 de la tarde", "12:30", "12:30 de la tarde"),
    ],
)
def test_time_patterns(text, expected, raw):
    assert dates.extract_time(text) == (expected, raw)


def test_out_of_range_times_yield_nothing():
    assert dates.extract_time("a las 25:00") == (None, None)
    assert dates.extract_time("10:75") == (None, None)


def test_am_inside_a_word_is_not_a_meridiem():
    assert dates.extract_time("somos 3 amigos") == (None, None)


def test_appointment_type():
    assert dates.extract_appointment_type("quiero un examen") == AppointmentType.VISUAL_EXAM
    assert dates.extract_appointment_type("para recoger mis lentes") == AppointmentType.LENS_PICKUP
    assert dates.extract_appointment_type("la entrega") == AppointmentType.LENS_PICKUP
    assert dates.extract_appointment_type("cita de control") == AppointmentType.FOLLOW_UP
    assert dates.extract_appointment_type("una cita") == AppointmentType.VISUAL_EXAM


def test_detect_appointment_intent():
    assert dates.detect_appointment_intent("hola", TODAY).has_intent is False

    intent = dates.detect_appointment_intent("Quiero una cita mañana a las 3pm", TODAY)
    assert intent.has_intent is True
    assert intent.date == date(2026, 10, 20)
    assert intent.time == "15:00"
    assert intent.raw_date == "mañana"
    assert intent.raw_time == "3pm"
    assert intent.appointment_type == AppointmentType.VISUAL_EXAM


def test_minutes_with_afternoon_phrase_book_the_afternoon():
    intent = dates.detect_appointment_intent("Quiero una cita el viernes a las 3:30 de la tarde", TODAY)
    assert intent.date == date(2026, 10, 23)
    assert intent.time == "15:30"


def test_formatting_for_user():
    assert dates.format_date_for_user(date(2026, 10, 20)) == "martes 20 de octubre"
    assert dates.format_date_for_user(date(2026, 11, 1)) == "domingo 1 de noviembre"
    assert dates.format_time_for_user("15:00") == "3:00 PM"
    assert dates.format_time_for_user("09:05") == "9:05 AM"
    assert dates.format_time_for_user("12:00") == "12:00 PM"
    assert dates.format_time_for_user("00:30") == "12:30 AM"


def test_combine_local_uses_shop_timezone():
    instant = dates.combine_local(date(2026, 10, 20), "15:00")
    assert instant.astimezone(timezone.utc) == datetime(2026, 10, 20, 20, 0, tzinfo=timezone.utc)
    assert dates.format_instant_for_user(instant) == ("martes 20 de octubre", "3:00 PM")
