from __future__ import annotations

"""
Central table schema definitions and helpers.

This module keeps the canonical field names for the CRM tables together so
business logic can import lightweight helpers instead of hard-coding strings.
Environment variables can still override table names and individual field
names (to align with custom copies of the base), but the defaults here mirror
the column names the dashboard writes.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


# ---------------------------------------------------------------------------
# Core data containers
# ---------------------------------------------------------------------------


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    v = value.strip()
    return v if v else None


@dataclass(frozen=True)
class FieldDefinition:
    """
    Represents a table column.

    Args:
        default: Canonical column name.
        env_vars: Ordered list of env vars that can override the column name.
        options: Allowed values for single-select columns (if applicable).
    """

    default: str
    env_vars: Tuple[str, ...] = field(default_factory=tuple)
    options: Tuple[str, ...] = field(default_factory=tuple)

    def resolve(self) -> str:
        """Return the active column name (env override or default)."""
        for env in self.env_vars:
            override = _clean(os.getenv(env))
            if override:
                return override
        return self.default


@dataclass(frozen=True)
class TableDefinition:
    """
    Table metadata with helpers to resolve column names.

    Args:
        default: Table name in the base.
        env_vars: Env vars that can rename the table.
        fields: Mapping of logical keys → FieldDefinition.
    """

    default: str
    env_vars: Tuple[str, ...] = field(default_factory=tuple)
    fields: Dict[str, FieldDefinition] = field(default_factory=dict)

    def name(self) -> str:
        for env in self.env_vars:
            override = _clean(os.getenv(env))
            if override:
                return override
        return self.default

    def field_name(self, key: str) -> str:
        return self.fields[key].resolve()

    def field_names(self) -> Dict[str, str]:
        return {key: f.resolve() for key, f in self.fields.items()}


def _f(default: str, *options: str) -> FieldDefinition:
    return FieldDefinition(default=default, options=tuple(options))


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class LeadStatus(str, Enum):
    NEW = "nuevo"
    INTERESTED = "interesado"
    QUOTED = "cotizado"
    SCHEDULED = "agendado"
    NOT_RESPONDING = "no_responde"
    NOT_PURCHASED = "no_compro"
    CUSTOMER = "cliente"
    REPEAT_CUSTOMER = "recurrente"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageSender(str, Enum):
    CUSTOMER = "customer"
    BOT = "bot"
    AGENT = "agent"
    CAMPAIGN = "campaign"
    REMINDER = "reminder"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class AppointmentType(str, Enum):
    VISUAL_EXAM = "examen_visual"
    LENS_PICKUP = "entrega_lentes"
    FOLLOW_UP = "seguimiento"


class Awaiting(str, Enum):
    """Which part of an appointment request is still missing."""

    NONE = "none"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"


BOT_STOP_TAG = "bot_stop"


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

LEADS_TABLE = TableDefinition(
    default="Leads",
    env_vars=("LEADS_TABLE",),
    fields={
        "WA_ID": FieldDefinition("wa_id", env_vars=("LEAD_WA_ID_FIELD",)),
        "FULL_NAME": _f("full_name"),
        "STATUS": _f("status", *(s.value for s in LeadStatus)),
        "SOURCE": _f("source"),
        "TAGS": _f("tags"),
        "BOT_ACTIVE": _f("bot_active"),
        "LAST_AGENT_INTERACTION": _f("last_agent_interaction"),
        "LAST_INTERACTION": _f("last_interaction"),
        "PENDING_AWAITING": _f("pending_awaiting", *(a.value for a in Awaiting)),
        "PENDING_DATE": _f("pending_date"),
        "PENDING_TIME": _f("pending_time"),
        "PENDING_TYPE": _f("pending_type"),
        "PENDING_OPTIONS": _f("pending_options"),
        "PENDING_SINCE": _f("pending_since"),
        "CREATED_AT": _f("created_at"),
    },
)

MESSAGES_TABLE = TableDefinition(
    default="Messages",
    env_vars=("MESSAGES_TABLE",),
    fields={
        "LEAD_ID": _f("lead_id"),
        "WA_MESSAGE_ID": FieldDefinition("wa_message_id", env_vars=("MESSAGE_WA_ID_FIELD",)),
        "CONTENT": _f("content"),
        "TYPE": _f("type"),
        "MEDIA_ID": _f("media_id"),
        "MEDIA_URL": _f("media_url"),
        "DIRECTION": _f("direction", *(d.value for d in MessageDirection)),
        "STATUS": _f("status", *(s.value for s in MessageStatus)),
        "SENDER": _f("sender", *(s.value for s in MessageSender)),
        "ERROR": _f("error"),
        "CREATED_AT": _f("created_at"),
    },
)

APPOINTMENTS_TABLE = TableDefinition(
    default="Appointments",
    env_vars=("APPOINTMENTS_TABLE",),
    fields={
        "LEAD_ID": _f("lead_id"),
        "SCHEDULED_AT": _f("scheduled_at"),
        "DURATION_MINUTES": _f("duration_minutes"),
        "STATUS": _f("status", *(s.value for s in AppointmentStatus)),
        "TYPE": _f("appointment_type", *(t.value for t in AppointmentType)),
        "NOTES": _f("notes"),
        "REMINDER_SENT": _f("reminder_sent"),
        "CREATED_AT": _f("created_at"),
    },
)

CAMPAIGNS_TABLE = TableDefinition(
    default="Marketing Campaigns",
    env_vars=("CAMPAIGNS_TABLE",),
    fields={
        "NAME": _f("name"),
        "MESSAGE_TEMPLATE": _f("message_template"),
        "MEDIA_URL": _f("media_url"),
        "TARGET_GROUPS": _f("target_groups"),
        "CURRENT_GROUP_INDEX": _f("current_group_index"),
        "SEND_INTERVAL_DAYS": _f("send_interval_days"),
        "LAST_SENT_AT": _f("last_sent_at"),
        "IS_ACTIVE": _f("is_active"),
        "SENT_COUNT": _f("sent_count"),
    },
)

LEAD_GROUPS_TABLE = TableDefinition(
    default="Lead Groups",
    env_vars=("LEAD_GROUPS_TABLE",),
    fields={
        "GROUP_ID": _f("group_id"),
        "LEAD_ID": _f("lead_id"),
    },
)

CAMPAIGN_SENDS_TABLE = TableDefinition(
    default="Campaign Sends",
    env_vars=("CAMPAIGN_SENDS_TABLE",),
    fields={
        "CAMPAIGN_ID": _f("campaign_id"),
        "LEAD_ID": _f("lead_id"),
        "MESSAGE_ID": _f("message_id"),
        "STATUS": _f("status", *(s.value for s in MessageStatus)),
        "CREATED_AT": _f("created_at"),
    },
)


def leads_field_map() -> Dict[str, str]:
    return LEADS_TABLE.field_names()


def messages_field_map() -> Dict[str, str]:
    return MESSAGES_TABLE.field_names()


def appointments_field_map() -> Dict[str, str]:
    return APPOINTMENTS_TABLE.field_names()


def campaigns_field_map() -> Dict[str, str]:
    return CAMPAIGNS_TABLE.field_names()


def lead_groups_field_map() -> Dict[str, str]:
    return LEAD_GROUPS_TABLE.field_names()


def campaign_sends_field_map() -> Dict[str, str]:
    return CAMPAIGN_SENDS_TABLE.field_names()
