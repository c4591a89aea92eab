from datetime import timedelta

from wabot.reminders import run_reminders
from wabot.schema import AppointmentStatus, AppointmentType, MessageSender, appointments_field_map

APPT_FIELDS = appointments_field_map()


def _appointment(store, lead_id, when, status=AppointmentStatus.CONFIRMED):
    return store.create_appointment(
        lead_id=lead_id,
        scheduled_at=when,
        appointment_type=AppointmentType.VISUAL_EXAM,
        status=status,
    )


def test_reminds_upcoming_appointments_once(store, channel, messages, now):
    lead = store.create_lead("573001112233", full_name="Ana Pérez")
    appt = _appointment(store, lead.id, now + timedelta(hours=6))  # 15:00 local today

    first = run_reminders(store=store, channel=channel, now=now)
    second = run_reminders(store=store, channel=channel, now=now)

    assert first["sent"] == 1
    assert second["due"] == 0
    assert len(channel.sent) == 1
    body = channel.sent[0]["body"]
    assert body.startswith("Hola Ana,")
    assert "lunes 19 de octubre" in body
    assert "3:00 PM" in body

    row = messages("outbound")[0]
    assert row.sender == MessageSender.REMINDER.value
    raw = store.connector.appointments().table.get(appt.id)["fields"]
    assert raw[APPT_FIELDS["REMINDER_SENT"]] is True


def test_outside_window_cancelled_and_past_are_skipped(store, channel, now):
    lead = store.create_lead("573001112233")
    _appointment(store, lead.id, now + timedelta(hours=30))
    _appointment(store, lead.id, now + timedelta(hours=2), status=AppointmentStatus.CANCELLED)
    _appointment(store, lead.id, now - timedelta(hours=1))

    out = run_reminders(store=store, channel=channel, now=now)

    assert out["due"] == 0
    assert channel.sent == []


def test_failed_send_is_retried_next_run(store, make_channel, now):
    lead = store.create_lead("573001112233")
    _appointment(store, lead.id, now + timedelta(hours=3))

    failing = run_reminders(store=store, channel=make_channel(fail_for={"573001112233"}), now=now)
    assert failing["failed"] == 1

    retry = run_reminders(store=store, channel=make_channel(), now=now)
    assert retry["sent"] == 1


def test_missing_lead_is_skipped(store, channel, now):
    _appointment(store, "rec_gone", now + timedelta(hours=3))
    out = run_reminders(store=store, channel=channel, now=now)
    assert out["skipped"] == 1
