"""Plain record types exchanged between the datastore and the engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from wabot.runtime import parse_iso, to_iso
from wabot.schema import (
    AppointmentStatus,
    AppointmentType,
    Awaiting,
    BOT_STOP_TAG,
    LeadStatus,
    appointments_field_map,
    campaigns_field_map,
    leads_field_map,
    messages_field_map,
)

LEAD_FIELDS = leads_field_map()
MSG_FIELDS = messages_field_map()
APPT_FIELDS = appointments_field_map()
CAMPAIGN_FIELDS = campaigns_field_map()


# -----------------------------
# Coercion helpers
# -----------------------------
def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on", "checked")


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> List[str]:
    if value in (None, "", [], ()):
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value if v not in (None, "")]


def _status(value: Any, enum_cls, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


# -----------------------------
# Lead
# -----------------------------
@dataclass
class PendingSlot:
    """Partially filled appointment request carried across inbound messages."""

    awaiting: Awaiting = Awaiting.NONE
    date: Optional[date] = None
    time: Optional[str] = None
    appointment_type: Optional[AppointmentType] = None
    options: List[datetime] = field(default_factory=list)
    since: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.awaiting != Awaiting.NONE or bool(self.options)

    def to_fields(self) -> Dict[str, Any]:
        return {
            LEAD_FIELDS["PENDING_AWAITING"]: self.awaiting.value,
            LEAD_FIELDS["PENDING_DATE"]: self.date.isoformat() if self.date else None,
            LEAD_FIELDS["PENDING_TIME"]: self.time,
            LEAD_FIELDS["PENDING_TYPE"]: self.appointment_type.value if self.appointment_type else None,
            LEAD_FIELDS["PENDING_OPTIONS"]: ",".join(to_iso(o) for o in self.options) or None,
            LEAD_FIELDS["PENDING_SINCE"]: to_iso(self.since) if self.since else None,
        }

    @classmethod
    def from_fields(cls, f: Dict[str, Any]) -> "PendingSlot":
        raw_date = f.get(LEAD_FIELDS["PENDING_DATE"])
        try:
            pending_date = date.fromisoformat(str(raw_date)[:10]) if raw_date else None
        except ValueError:
            pending_date = None
        raw_type = f.get(LEAD_FIELDS["PENDING_TYPE"])
        options = [parse_iso(o) for o in _as_list(f.get(LEAD_FIELDS["PENDING_OPTIONS"]))]
        return cls(
            awaiting=_status(f.get(LEAD_FIELDS["PENDING_AWAITING"]) or "none", Awaiting, Awaiting.NONE),
            date=pending_date,
            time=f.get(LEAD_FIELDS["PENDING_TIME"]) or None,
            appointment_type=_status(raw_type, AppointmentType, None) if raw_type else None,
            options=[o for o in options if o is not None],
            since=parse_iso(f.get(LEAD_FIELDS["PENDING_SINCE"])),
        )


@dataclass
class Lead:
    id: str
    wa_id: str
    full_name: Optional[str] = None
    status: LeadStatus = LeadStatus.NEW
    tags: Set[str] = field(default_factory=set)
    bot_active: bool = True
    last_agent_interaction: Optional[datetime] = None
    last_interaction: Optional[datetime] = None
    pending: PendingSlot = field(default_factory=PendingSlot)

    @property
    def bot_stopped(self) -> bool:
        return BOT_STOP_TAG in self.tags

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Lead":
        f = record.get("fields", {}) or {}
        return cls(
            id=record["id"],
            wa_id=str(f.get(LEAD_FIELDS["WA_ID"]) or ""),
            full_name=f.get(LEAD_FIELDS["FULL_NAME"]) or None,
            status=_status(f.get(LEAD_FIELDS["STATUS"]), LeadStatus, LeadStatus.NEW),
            tags=set(_as_list(f.get(LEAD_FIELDS["TAGS"]))),
            bot_active=_as_bool(f.get(LEAD_FIELDS["BOT_ACTIVE"]), True),
            last_agent_interaction=parse_iso(f.get(LEAD_FIELDS["LAST_AGENT_INTERACTION"])),
            last_interaction=parse_iso(f.get(LEAD_FIELDS["LAST_INTERACTION"])),
            pending=PendingSlot.from_fields(f),
        )


# -----------------------------
# Message
# -----------------------------
@dataclass
class Message:
    id: str
    lead_id: str
    direction: str
    content: Optional[str]
    status: str
    wa_message_id: Optional[str] = None
    type: str = "text"
    sender: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Message":
        f = record.get("fields", {}) or {}
        return cls(
            id=record["id"],
            lead_id=str(f.get(MSG_FIELDS["LEAD_ID"]) or ""),
            direction=f.get(MSG_FIELDS["DIRECTION"]) or "",
            content=f.get(MSG_FIELDS["CONTENT"]),
            status=f.get(MSG_FIELDS["STATUS"]) or "",
            wa_message_id=f.get(MSG_FIELDS["WA_MESSAGE_ID"]) or None,
            type=f.get(MSG_FIELDS["TYPE"]) or "text",
            sender=f.get(MSG_FIELDS["SENDER"]),
            error=f.get(MSG_FIELDS["ERROR"]),
            created_at=parse_iso(f.get(MSG_FIELDS["CREATED_AT"])),
        )


# -----------------------------
# Appointment
# -----------------------------
@dataclass
class Appointment:
    id: str
    lead_id: str
    scheduled_at: datetime
    status: AppointmentStatus
    appointment_type: AppointmentType
    duration_minutes: int = 30
    notes: Optional[str] = None
    reminder_sent: bool = False

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Optional["Appointment"]:
        f = record.get("fields", {}) or {}
        scheduled = parse_iso(f.get(APPT_FIELDS["SCHEDULED_AT"]))
        if scheduled is None:
            return None
        return cls(
            id=record["id"],
            lead_id=str(f.get(APPT_FIELDS["LEAD_ID"]) or ""),
            scheduled_at=scheduled,
            status=_status(f.get(APPT_FIELDS["STATUS"]), AppointmentStatus, AppointmentStatus.PENDING),
            appointment_type=_status(f.get(APPT_FIELDS["TYPE"]), AppointmentType, AppointmentType.VISUAL_EXAM),
            duration_minutes=_as_int(f.get(APPT_FIELDS["DURATION_MINUTES"]), 30) or 30,
            notes=f.get(APPT_FIELDS["NOTES"]),
            reminder_sent=_as_bool(f.get(APPT_FIELDS["REMINDER_SENT"]), False),
        )


# -----------------------------
# Campaign
# -----------------------------
@dataclass
class Campaign:
    id: str
    name: str
    message_template: str
    target_groups: List[str]
    current_group_index: int = 0
    send_interval_days: int = 7
    last_sent_at: Optional[datetime] = None
    is_active: bool = True
    media_url: Optional[str] = None
    sent_count: int = 0

    @classmethod
    def from_record(cls, record: Dict[str, Any], default_interval_days: int = 7) -> "Campaign":
        f = record.get("fields", {}) or {}
        return cls(
            id=record["id"],
            name=f.get(CAMPAIGN_FIELDS["NAME"]) or record["id"],
            message_template=f.get(CAMPAIGN_FIELDS["MESSAGE_TEMPLATE"]) or "",
            target_groups=_as_list(f.get(CAMPAIGN_FIELDS["TARGET_GROUPS"])),
            current_group_index=_as_int(f.get(CAMPAIGN_FIELDS["CURRENT_GROUP_INDEX"]), 0),
            send_interval_days=_as_int(f.get(CAMPAIGN_FIELDS["SEND_INTERVAL_DAYS"]), default_interval_days),
            last_sent_at=parse_iso(f.get(CAMPAIGN_FIELDS["LAST_SENT_AT"])),
            is_active=_as_bool(f.get(CAMPAIGN_FIELDS["IS_ACTIVE"]), False),
            media_url=f.get(CAMPAIGN_FIELDS["MEDIA_URL"]) or None,
            sent_count=_as_int(f.get(CAMPAIGN_FIELDS["SENT_COUNT"]), 0),
        )


# -----------------------------
# Transient types
# -----------------------------
@dataclass
class AppointmentIntent:
    has_intent: bool
    date: Optional[date] = None
    time: Optional[str] = None
    raw_date: Optional[str] = None
    raw_time: Optional[str] = None
    appointment_type: AppointmentType = AppointmentType.VISUAL_EXAM


@dataclass
class InboundEvent:
    """One message out of a WhatsApp Cloud API webhook delivery."""

    wa_id: str
    message_id: str
    timestamp: Optional[datetime]
    type: str
    body: Optional[str]
    contact_name: Optional[str] = None
    media_id: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return self.type == "text"
