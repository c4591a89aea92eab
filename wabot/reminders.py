"""Cron job: remind leads of appointments starting inside the reminder window."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from wabot import templates
from wabot.config import settings
from wabot.dates import format_instant_for_user
from wabot.datastore import STORE, Store, StoreError
from wabot.messaging import send_and_log
from wabot.runtime import get_logger, utc_now
from wabot.schema import AppointmentStatus, MessageSender, appointments_field_map
from wabot.whatsapp_sender import CHANNEL

log = get_logger("reminders")
APPT_FIELDS = appointments_field_map()

REMINDABLE = {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}


def run_reminders(
    *,
    store: Optional[Store] = None,
    channel=None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    store = store or STORE
    channel = channel or CHANNEL
    now = now or utc_now()
    window_end = now + timedelta(hours=settings().REMINDER_WINDOW_HOURS)

    due = [
        a
        for a in store.list_appointments_between(now, window_end)
        if a.status in REMINDABLE and not a.reminder_sent and now < a.scheduled_at <= window_end
    ]
    log.info("🔄 Reminder check: %s appointment(s) due before %s", len(due), window_end.isoformat())

    sent = failed = skipped = 0
    for appointment in due:
        lead = store.get_lead(appointment.lead_id)
        if lead is None or not lead.wa_id:
            log.warning("Skipping appointment %s: lead %s has no wa_id", appointment.id, appointment.lead_id)
            skipped += 1
            continue

        date_text, time_text = format_instant_for_user(appointment.scheduled_at)
        body = templates.reminder(date_text, time_text, lead.full_name)
        result = send_and_log(lead.id, lead.wa_id, body, channel, store, sender=MessageSender.REMINDER)
        if not result.ok:
            failed += 1
            continue

        try:
            store.update_appointment(appointment.id, {APPT_FIELDS["REMINDER_SENT"]: True})
        except StoreError:
            log.error("Appointment %s reminded but not flagged", appointment.id)
        sent += 1

    log.info("✅ Reminder job complete: %s sent, %s failed, %s skipped", sent, failed, skipped)
    return {"ok": True, "due": len(due), "sent": sent, "failed": failed, "skipped": skipped}
