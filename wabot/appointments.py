# wabot/appointments.py
"""
Appointment Negotiator
----------------------
Turns a (possibly partial) appointment request into one of:
  • a confirmed booking,
  • an offer of up to N alternative slots the same day,
  • a "not available" note,
  • a clarifying question for the missing date and/or time.

Partial requests and offered alternatives are remembered on the lead as a
PendingSlot, so the next inbound text can fill the gap or pick an option.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

from wabot import templates
from wabot.availability import upcoming_open_slots
from wabot.config import settings, shop_tz
from wabot.dates import (
    combine_local,
    format_date_for_user,
    format_instant_for_user,
    format_time_for_user,
    parse_appointment_request,
)
from wabot.datastore import Store, StoreError
from wabot.intent import parse_ordinal
from wabot.messaging import SendResult, log_system_message, send_and_log
from wabot.models import Appointment, AppointmentIntent, Lead, PendingSlot
from wabot.runtime import get_logger, iso_now, utc_now
from wabot.schema import AppointmentStatus, AppointmentType, Awaiting, LeadStatus, leads_field_map

logger = get_logger("appointments")
LEAD_FIELDS = leads_field_map()

# Outcome actions
BOOKED = "booked"
ALTERNATIVES = "alternatives"
UNAVAILABLE = "unavailable"
ASK_TIME = "ask_time"
ASK_DATE = "ask_date"
ASK_DATETIME = "ask_datetime"
ORACLE_ERROR = "oracle_error"
STORE_ERROR = "store_error"


@dataclass
class NegotiationOutcome:
    action: str
    reply: Optional[str] = None
    appointment: Optional[Appointment] = None
    alternatives: List[datetime] = field(default_factory=list)
    send: Optional[SendResult] = None

    @property
    def replied(self) -> bool:
        return self.send is not None


def local_date(now: datetime) -> date:
    return now.astimezone(shop_tz()).date()


# -----------------------------
# Internals
# -----------------------------
def _save_pending(store: Store, lead: Lead, pending: PendingSlot) -> bool:
    try:
        updated = store.update_lead(lead.id, pending.to_fields())
    except StoreError:
        logger.error("Could not store pending slot for lead %s", lead.id)
        return False
    lead.pending = updated.pending
    return True


def _reply(lead: Lead, text: str, *, store: Store, channel) -> SendResult:
    return send_and_log(lead.id, lead.wa_id, text, channel, store)


def _book(
    lead: Lead,
    instant: datetime,
    appointment_type: AppointmentType,
    raw_text: str,
    *,
    store: Store,
    channel,
) -> NegotiationOutcome:
    s = settings()
    date_text, time_text = format_instant_for_user(instant)
    try:
        appointment = store.create_appointment(
            lead_id=lead.id,
            scheduled_at=instant,
            appointment_type=appointment_type,
            status=AppointmentStatus.CONFIRMED,
            duration_minutes=s.APPOINTMENT_SLOT_MINUTES,
            notes=f'Agendada por WhatsApp: "{raw_text.strip()}"',
        )
    except StoreError:
        logger.error("Appointment for lead %s at %s not stored", lead.id, instant.isoformat())
        return NegotiationOutcome(STORE_ERROR)

    fields = PendingSlot().to_fields()
    fields[LEAD_FIELDS["STATUS"]] = LeadStatus.SCHEDULED.value
    fields[LEAD_FIELDS["LAST_INTERACTION"]] = iso_now()
    try:
        updated = store.update_lead(lead.id, fields)
        lead.status, lead.pending = updated.status, updated.pending
    except StoreError:
        logger.error("Lead %s not flipped to scheduled after booking %s", lead.id, appointment.id)

    reply = templates.confirmation(date_text, time_text, lead.full_name)
    sent = _reply(lead, reply, store=store, channel=channel)
    log_system_message(store, lead.id, templates.booking_note(date_text, time_text, appointment_type.value))
    logger.info("📅 Booked %s for lead %s at %s", appointment.id, lead.id, instant.isoformat())
    return NegotiationOutcome(BOOKED, reply=reply, appointment=appointment, send=sent)


def _resolve_instant(
    lead: Lead,
    instant: datetime,
    appointment_type: AppointmentType,
    raw_text: str,
    *,
    store: Store,
    oracle,
    channel,
    now: datetime,
) -> NegotiationOutcome:
    s = settings()
    if instant <= now:
        available = False
    else:
        try:
            available = bool(oracle.check_availability(instant, s.APPOINTMENT_SLOT_MINUTES).get("available"))
        except Exception as exc:
            logger.error("Availability check failed for lead %s at %s: %s", lead.id, instant.isoformat(), exc)
            return NegotiationOutcome(ORACLE_ERROR)

    if available:
        return _book(lead, instant, appointment_type, raw_text, store=store, channel=channel)

    day = instant.astimezone(shop_tz()).date()
    try:
        options = upcoming_open_slots(oracle, day, now=now, limit=s.MAX_ALTERNATIVE_SLOTS)
    except Exception as exc:
        logger.warning("Open slot lookup failed for lead %s on %s: %s", lead.id, day, exc)
        options = []

    pending = PendingSlot(
        awaiting=Awaiting.DATETIME,
        date=day,
        appointment_type=appointment_type,
        options=options,
        since=now,
    )
    if not _save_pending(store, lead, pending):
        return NegotiationOutcome(STORE_ERROR)

    if options:
        date_text, time_text = format_instant_for_user(instant)
        option_texts = [format_instant_for_user(o)[1] for o in options]
        reply = templates.alternatives(date_text, time_text, option_texts)
        sent = _reply(lead, reply, store=store, channel=channel)
        return NegotiationOutcome(ALTERNATIVES, reply=reply, alternatives=options, send=sent)

    reply = templates.not_available()
    sent = _reply(lead, reply, store=store, channel=channel)
    return NegotiationOutcome(UNAVAILABLE, reply=reply, send=sent)


# -----------------------------
# Public API
# -----------------------------
def negotiate(
    lead: Lead,
    request: AppointmentIntent,
    raw_text: str,
    *,
    store: Store,
    oracle,
    channel,
    now: Optional[datetime] = None,
) -> NegotiationOutcome:
    """Drive one step of the booking dialogue for an appointment request."""
    s = settings()
    now = now or utc_now()

    if request.date and request.time:
        instant = combine_local(request.date, request.time)
        return _resolve_instant(
            lead, instant, request.appointment_type, raw_text, store=store, oracle=oracle, channel=channel, now=now
        )

    if request.date:
        pending = PendingSlot(Awaiting.TIME, date=request.date, appointment_type=request.appointment_type, since=now)
        action, reply = ASK_TIME, templates.ask_time(
            format_date_for_user(request.date), s.BUSINESS_START_HOUR, s.BUSINESS_END_HOUR
        )
    elif request.time:
        pending = PendingSlot(Awaiting.DATE, time=request.time, appointment_type=request.appointment_type, since=now)
        action, reply = ASK_DATE, templates.ask_date(format_time_for_user(request.time))
    else:
        pending = PendingSlot(Awaiting.DATETIME, appointment_type=request.appointment_type, since=now)
        action, reply = ASK_DATETIME, templates.ask_datetime()

    if not _save_pending(store, lead, pending):
        return NegotiationOutcome(STORE_ERROR)
    sent = _reply(lead, reply, store=store, channel=channel)
    return NegotiationOutcome(action, reply=reply, send=sent)


def pending_expired(pending: PendingSlot, now: datetime) -> bool:
    if not pending.since:
        return False
    return now - pending.since > timedelta(hours=settings().PENDING_SLOT_TTL_HOURS)


def continue_pending(
    lead: Lead,
    text: str,
    *,
    store: Store,
    oracle,
    channel,
    now: Optional[datetime] = None,
) -> Optional[NegotiationOutcome]:
    """
    Continue an open booking dialogue with the lead's latest text.

    Returns None when there is nothing pending or the text carries neither
    an option pick nor any date/time, so regular classification applies.
    """
    pending = lead.pending
    if not pending.active:
        return None
    now = now or utc_now()

    if pending_expired(pending, now):
        logger.info("Pending slot for lead %s expired (since %s)", lead.id, pending.since)
        _save_pending(store, lead, PendingSlot())
        return None

    appointment_type = pending.appointment_type or AppointmentType.VISUAL_EXAM

    if pending.options:
        pick = parse_ordinal(text, len(pending.options))
        if pick:
            return _resolve_instant(
                lead, pending.options[pick - 1], appointment_type, text,
                store=store, oracle=oracle, channel=channel, now=now,
            )

    request = parse_appointment_request(text, local_date(now))
    if not (request.date or request.time):
        return None

    merged = AppointmentIntent(
        has_intent=True,
        date=request.date or pending.date,
        time=request.time or pending.time,
        raw_date=request.raw_date,
        raw_time=request.raw_time,
        appointment_type=pending.appointment_type or request.appointment_type,
    )
    return negotiate(lead, merged, text, store=store, oracle=oracle, channel=channel, now=now)
