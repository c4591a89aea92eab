# wabot/bot.py
"""
Bot State Controller
--------------------
Per inbound text, in order:
  1. auto-reactivate the bot when the last agent touch is old enough
  2. stay silent while the bot is off or the lead carries the bot_stop tag
  3. human handoff wins over everything else
  4. an open booking dialogue gets the text next
  5. classify and dispatch (appointment, menu topic, menu, silence)

The bot never flips ``bot_active`` off; only an agent send does that.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from wabot import templates
from wabot.appointments import NegotiationOutcome, continue_pending, local_date, negotiate
from wabot.config import settings
from wabot.dates import parse_appointment_request
from wabot.datastore import Store, StoreError
from wabot.intent import Classification, Intent, classify
from wabot.messaging import SendResult, log_system_message, send_and_log
from wabot.models import Lead, PendingSlot
from wabot.runtime import get_logger, utc_now
from wabot.schema import BOT_STOP_TAG, LeadStatus, leads_field_map

logger = get_logger("bot")
LEAD_FIELDS = leads_field_map()

# Actions
STOPPED = "stopped"
HANDOFF = "handoff"
APPOINTMENT = "appointment"
TOPIC = "topic"
MENU = "menu"
NO_MATCH = "no_match"
ERROR = "error"


@dataclass
class BotResult:
    action: str
    intent: Optional[Intent] = None
    reactivated: bool = False
    reply: Optional[str] = None
    send: Optional[SendResult] = None
    negotiation: Optional[NegotiationOutcome] = None

    @property
    def replied(self) -> bool:
        if self.negotiation is not None:
            return self.negotiation.replied
        return self.send is not None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"action": self.action, "replied": self.replied, "reactivated": self.reactivated}
        if self.intent:
            out["intent"] = self.intent.value
        if self.negotiation:
            out["negotiation"] = self.negotiation.action
        return out


# -----------------------------
# State transitions
# -----------------------------
def should_reactivate(lead: Lead, now: datetime) -> bool:
    if lead.bot_active or lead.last_agent_interaction is None:
        return False
    threshold = timedelta(hours=settings().BOT_REACTIVATION_HOURS)
    return now - lead.last_agent_interaction >= threshold


def _reactivate(lead: Lead, store: Store) -> None:
    updated = store.update_lead(lead.id, {LEAD_FIELDS["BOT_ACTIVE"]: True})
    lead.bot_active = updated.bot_active
    log_system_message(store, lead.id, templates.reactivation_note(settings().BOT_REACTIVATION_HOURS))
    logger.info("🤖 Bot reactivated for lead %s", lead.id)


def _handoff(lead: Lead, store: Store, channel) -> BotResult:
    tags = set(lead.tags) | {BOT_STOP_TAG}
    fields = PendingSlot().to_fields()
    fields.update(
        {
            LEAD_FIELDS["STATUS"]: LeadStatus.INTERESTED.value,
            LEAD_FIELDS["TAGS"]: sorted(tags),
        }
    )
    updated = store.update_lead(lead.id, fields)
    lead.tags, lead.status = updated.tags, updated.status
    reply = templates.handoff()
    sent = send_and_log(lead.id, lead.wa_id, reply, channel, store)
    logger.info("🙋 Handoff requested by lead %s", lead.id)
    return BotResult(HANDOFF, intent=Intent.HUMAN_HANDOFF, reply=reply, send=sent)


def _topic(lead: Lead, result: Classification, store: Store, channel) -> BotResult:
    topic = result.topic.value if result.topic else ""
    fields: Dict[str, Any] = {LEAD_FIELDS["STATUS"]: LeadStatus.INTERESTED.value}
    if topic and topic not in lead.tags:
        fields[LEAD_FIELDS["TAGS"]] = sorted(set(lead.tags) | {topic})
    updated = store.update_lead(lead.id, fields)
    lead.tags, lead.status = updated.tags, updated.status
    reply = templates.topic_reply(topic)
    sent = send_and_log(lead.id, lead.wa_id, reply, channel, store)
    return BotResult(TOPIC, intent=Intent.NUMBERED_MENU_CHOICE, reply=reply, send=sent)


# -----------------------------
# Entry point
# -----------------------------
def handle_text(
    lead: Lead,
    text: str,
    *,
    store: Store,
    oracle,
    channel,
    now: Optional[datetime] = None,
) -> BotResult:
    """Run the bot for one inbound text. Store failures stop processing and are logged."""
    now = now or utc_now()
    reactivated = False

    try:
        if should_reactivate(lead, now):
            _reactivate(lead, store)
            reactivated = True

        if not lead.bot_active or lead.bot_stopped:
            logger.debug("Bot silent for lead %s (active=%s stop=%s)", lead.id, lead.bot_active, lead.bot_stopped)
            return BotResult(STOPPED, reactivated=reactivated)

        result = classify(text, lead.status)

        if result.intent == Intent.HUMAN_HANDOFF:
            out = _handoff(lead, store, channel)
            out.reactivated = reactivated
            return out

        outcome = continue_pending(lead, text, store=store, oracle=oracle, channel=channel, now=now)
        if outcome is not None:
            return BotResult(
                APPOINTMENT, intent=Intent.APPOINTMENT_INTENT, reactivated=reactivated, negotiation=outcome
            )

        if result.intent == Intent.APPOINTMENT_INTENT:
            request = parse_appointment_request(text, local_date(now))
            outcome = negotiate(lead, request, text, store=store, oracle=oracle, channel=channel, now=now)
            return BotResult(APPOINTMENT, intent=result.intent, reactivated=reactivated, negotiation=outcome)

        if result.intent == Intent.NUMBERED_MENU_CHOICE:
            out = _topic(lead, result, store, channel)
            out.reactivated = reactivated
            return out

        if result.intent == Intent.GREETING_OR_MENU:
            reply = templates.menu(lead.full_name)
            sent = send_and_log(lead.id, lead.wa_id, reply, channel, store)
            return BotResult(MENU, intent=result.intent, reactivated=reactivated, reply=reply, send=sent)

        return BotResult(NO_MATCH, intent=Intent.NO_MATCH, reactivated=reactivated)
    except StoreError as exc:
        logger.error("Bot processing for lead %s stopped: %s", lead.id, exc)
        return BotResult(ERROR, reactivated=reactivated)

