"""Schema-aware Airtable datastore with an in-memory fallback."""

from __future__ import annotations

import itertools
import os
import re
import time
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests
from pyairtable import Api

from wabot.config import settings
from wabot.models import Appointment, Campaign, Lead, Message
from wabot.runtime import get_logger, iso_now, parse_iso, retry, to_iso
from wabot.schema import (
    APPOINTMENTS_TABLE,
    CAMPAIGN_SENDS_TABLE,
    CAMPAIGNS_TABLE,
    LEAD_GROUPS_TABLE,
    LEADS_TABLE,
    MESSAGES_TABLE,
    AppointmentStatus,
    AppointmentType,
    LeadStatus,
    MessageDirection,
    MessageStatus,
    appointments_field_map,
    campaign_sends_field_map,
    campaigns_field_map,
    lead_groups_field_map,
    leads_field_map,
    messages_field_map,
)

logger = get_logger(__name__)
DEBUG = os.getenv("DEBUG", "").lower() in {"1", "true", "yes"}

LEAD_FIELDS = leads_field_map()
MSG_FIELDS = messages_field_map()
APPT_FIELDS = appointments_field_map()
CAMPAIGN_FIELDS = campaigns_field_map()
GROUP_FIELDS = lead_groups_field_map()
SEND_FIELDS = campaign_sends_field_map()

_FORMULA_TERM = re.compile(r"\{([^}]+)\}\s*=\s*'((?:[^'\\]|\\.)*)'")
_DATE_TERM = re.compile(r"IS_(AFTER|BEFORE)\(\{([^}]+)\},\s*'([^']*)'\)")

# Longest appointment a window query still has to catch when it started earlier.
APPOINTMENT_LOOKBACK = timedelta(hours=12)


class StoreError(RuntimeError):
    """Raised when a write the caller depends on could not be persisted."""


def _escape(value: Any) -> str:
    return str(value).replace("\\", "\\\\").replace("'", "\\'")


def eq_formula(**terms: Any) -> str:
    """Build an Airtable equality formula: AND({a}='x', {b}='y')."""
    parts = [f"{{{name}}}='{_escape(value)}'" for name, value in terms.items()]
    return parts[0] if len(parts) == 1 else "AND(" + ", ".join(parts) + ")"


def window_formula(field_name: str, after: datetime, before: datetime) -> str:
    """Airtable formula for rows whose datetime field lies strictly inside (after, before)."""
    return (
        f"AND(IS_AFTER({{{field_name}}}, '{to_iso(after)}'), "
        f"IS_BEFORE({{{field_name}}}, '{to_iso(before)}'))"
    )


class InMemoryTable:
    """Minimal Airtable drop-in replacement used for local runs and tests."""

    def __init__(self, name: str):
        self.name = name
        self._records: Dict[str, Dict[str, Any]] = {}
        self._sequence = itertools.count(1)

    def create(self, fields: Dict[str, Any]):
        record_id = f"rec_{self.name.lower().replace(' ', '_')}_{next(self._sequence)}"
        record = {"id": record_id, "fields": {k: v for k, v in fields.items() if v is not None}}
        self._records[record_id] = record
        return _copy(record)

    def update(self, record_id: str, fields: Dict[str, Any]):
        if record_id not in self._records:
            raise KeyError(f"Unknown record id {record_id} in {self.name}")
        stored = self._records[record_id]["fields"]
        for k, v in fields.items():
            if v is None:
                stored.pop(k, None)
            else:
                stored[k] = v
        return _copy(self._records[record_id])

    def get(self, record_id: str):
        record = self._records.get(record_id)
        return _copy(record) if record else None

    def all(self, **kwargs):
        records = [_copy(r) for r in self._records.values()]
        formula = kwargs.get("formula")
        max_records = kwargs.get("max_records")
        if formula:
            records = [rec for rec in records if _formula_match(rec, formula)]
        if max_records is not None:
            records = records[: int(max_records)]
        return records

    def first(self, **kwargs):
        found = self.all(max_records=1, **{k: v for k, v in kwargs.items() if k != "max_records"})
        return found[0] if found else None


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: (list(v) if isinstance(v, list) else v) for k, v in record.get("fields", {}).items()}
    return {"id": record["id"], "fields": fields}


def _formula_match(record: Dict[str, Any], formula: str) -> bool:
    matches = _FORMULA_TERM.findall(formula)
    comparisons = _DATE_TERM.findall(formula)
    if not matches and not comparisons:
        return False
    fields = record.get("fields", {})
    for field_name, expected in matches:
        expected = expected.replace("\\'", "'").replace("\\\\", "\\")
        value = fields.get(field_name)
        if isinstance(value, bool):
            value = "1" if value else "0"
            expected = "1" if expected.lower() in ("1", "true") else "0"
        if str(value) != expected:
            return False
    for op, field_name, bound in comparisons:
        value, limit = parse_iso(fields.get(field_name)), parse_iso(bound)
        if value is None or limit is None:
            return False
        if (op == "AFTER" and value <= limit) or (op == "BEFORE" and value >= limit):
            return False
    return True


@dataclass
class TableHandle:
    table: Any
    in_memory: bool
    base_id: Optional[str]
    table_name: str
    last_error: Optional[Dict[str, Any]] = dataclass_field(default=None)


# ============================================================
# CONNECTOR
# ============================================================


class DataConnector:
    """Lazy pyairtable connector with in-memory fallback."""

    def __init__(self) -> None:
        self._tables: Dict[Tuple[str, str], TableHandle] = {}
        self._api: Optional[Api] = None

    def _table(self, table_name: str) -> TableHandle:
        s = settings()
        base = s.AIRTABLE_BASE_ID
        key = (base or "memory", table_name)
        if key in self._tables:
            return self._tables[key]

        if s.FORCE_IN_MEMORY:
            handle = TableHandle(InMemoryTable(table_name), True, base, table_name)
            self._tables[key] = handle
            return handle

        if base and s.AIRTABLE_API_KEY:
            try:
                if self._api is None:
                    self._api = Api(s.AIRTABLE_API_KEY)
                handle = TableHandle(self._api.table(base, table_name), False, base, table_name)
                self._tables[key] = handle
                return handle
            except Exception:
                logger.warning("Falling back to in-memory table for %s", table_name, exc_info=True)

        handle = TableHandle(InMemoryTable(table_name), True, base, table_name)
        self._tables[key] = handle
        return handle

    def leads(self) -> TableHandle:
        return self._table(LEADS_TABLE.name())

    def messages(self) -> TableHandle:
        return self._table(MESSAGES_TABLE.name())

    def appointments(self) -> TableHandle:
        return self._table(APPOINTMENTS_TABLE.name())

    def campaigns(self) -> TableHandle:
        return self._table(CAMPAIGNS_TABLE.name())

    def lead_groups(self) -> TableHandle:
        return self._table(LEAD_GROUPS_TABLE.name())

    def campaign_sends(self) -> TableHandle:
        return self._table(CAMPAIGN_SENDS_TABLE.name())

    @property
    def in_memory(self) -> bool:
        return self.leads().in_memory


CONNECTOR = DataConnector()


# ============================================================
# LOW LEVEL HELPERS
# ============================================================


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in (payload or {}).items() if v not in (None, "", [], {}, ())}


def _log_airtable_exception(handle: TableHandle, exc: Exception, action: str) -> None:
    payload: Dict[str, Any] = {"action": action, "error": str(exc), "timestamp": iso_now()}
    response = getattr(exc, "response", None)
    if DEBUG and response is not None:
        status = getattr(response, "status_code", "unknown")
        payload.update({"status": status, "body": getattr(response, "text", repr(response))})
        logger.error("Airtable %s failed [%s] status=%s body=%s", action, handle.table_name, status, payload["body"])
    else:
        logger.error("Airtable %s failed [%s]: %s", action, handle.table_name, exc)
    handle.last_error = payload


def _safe_all(handle: TableHandle, **kwargs) -> List[Dict[str, Any]]:
    for attempt in range(3):
        try:
            return list(handle.table.all(**kwargs))
        except (requests.exceptions.ConnectionError, ConnectionResetError) as exc:
            logger.warning("Airtable connection reset [%s] retry %s: %s", handle.table_name, attempt + 1, exc)
            time.sleep((2**attempt) * 0.5)
            continue
        except Exception as exc:
            _log_airtable_exception(handle, exc, "all")
            if "429" in str(exc) and attempt < 2:
                time.sleep((2**attempt) * 0.5)
                continue
            break
    return []


def _safe_get(handle: TableHandle, record_id: str) -> Optional[Dict[str, Any]]:
    if not record_id:
        return None
    try:
        return handle.table.get(record_id)
    except Exception as exc:
        _log_airtable_exception(handle, exc, "get")
        return None


def _create(handle: TableHandle, fields: Dict[str, Any]) -> Dict[str, Any]:
    body = _compact(fields)
    if handle.in_memory:
        return handle.table.create(body)
    try:
        return retry(lambda: handle.table.create(body, typecast=True), retries=2, base_delay=0.6, logger=logger)
    except Exception as exc:
        _log_airtable_exception(handle, exc, "create")
        raise StoreError(f"create failed on {handle.table_name}: {exc}") from exc


def _update(handle: TableHandle, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    if handle.in_memory:
        return handle.table.update(record_id, fields)
    try:
        return retry(
            lambda: handle.table.update(record_id, fields, typecast=True), retries=2, base_delay=0.6, logger=logger
        )
    except Exception as exc:
        _log_airtable_exception(handle, exc, "update")
        raise StoreError(f"update failed on {handle.table_name}/{record_id}: {exc}") from exc


# ============================================================
# REPOSITORY
# ============================================================


class Store:
    """
    Read/update/insert/upsert contract the engines are written against.

    Writes raise StoreError when they cannot be persisted; reads log and
    return None / [] so a flaky table never crashes a webhook.
    """

    def __init__(self, connector: DataConnector | None = None) -> None:
        self.connector = connector or CONNECTOR

    # Leads
    def get_lead(self, lead_id: str) -> Optional[Lead]:
        record = _safe_get(self.connector.leads(), lead_id)
        return Lead.from_record(record) if record else None

    def find_lead_by_wa_id(self, wa_id: str) -> Optional[Lead]:
        if not wa_id:
            return None
        records = _safe_all(self.connector.leads(), formula=eq_formula(**{LEAD_FIELDS["WA_ID"]: wa_id}), max_records=1)
        return Lead.from_record(records[0]) if records else None

    def create_lead(self, wa_id: str, *, full_name: Optional[str] = None, source: str = "whatsapp") -> Lead:
        now = iso_now()
        record = _create(
            self.connector.leads(),
            {
                LEAD_FIELDS["WA_ID"]: wa_id,
                LEAD_FIELDS["FULL_NAME"]: full_name,
                LEAD_FIELDS["STATUS"]: LeadStatus.NEW.value,
                LEAD_FIELDS["SOURCE"]: source,
                LEAD_FIELDS["BOT_ACTIVE"]: True,
                LEAD_FIELDS["LAST_INTERACTION"]: now,
                LEAD_FIELDS["CREATED_AT"]: now,
            },
        )
        return Lead.from_record(record)

    def update_lead(self, lead_id: str, fields: Dict[str, Any]) -> Lead:
        return Lead.from_record(_update(self.connector.leads(), lead_id, fields))

    def get_leads(self, lead_ids: Iterable[str]) -> List[Lead]:
        leads: List[Lead] = []
        for lead_id in lead_ids:
            lead = self.get_lead(lead_id)
            if lead:
                leads.append(lead)
        return leads

    # Messages
    def find_message_by_wa_id(self, wa_message_id: str) -> Optional[Message]:
        if not wa_message_id:
            return None
        records = _safe_all(
            self.connector.messages(),
            formula=eq_formula(**{MSG_FIELDS["WA_MESSAGE_ID"]: wa_message_id}),
            max_records=1,
        )
        return Message.from_record(records[0]) if records else None

    def insert_message(
        self,
        *,
        lead_id: str,
        direction: MessageDirection,
        content: Optional[str],
        status: MessageStatus,
        sender: Optional[str] = None,
        wa_message_id: Optional[str] = None,
        msg_type: str = "text",
        media_id: Optional[str] = None,
        media_url: Optional[str] = None,
        error: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Message:
        record = _create(
            self.connector.messages(),
            {
                MSG_FIELDS["LEAD_ID"]: lead_id,
                MSG_FIELDS["DIRECTION"]: direction.value,
                MSG_FIELDS["CONTENT"]: content,
                MSG_FIELDS["STATUS"]: status.value,
                MSG_FIELDS["SENDER"]: sender,
                MSG_FIELDS["WA_MESSAGE_ID"]: wa_message_id,
                MSG_FIELDS["TYPE"]: msg_type,
                MSG_FIELDS["MEDIA_ID"]: media_id,
                MSG_FIELDS["MEDIA_URL"]: media_url,
                MSG_FIELDS["ERROR"]: error,
                MSG_FIELDS["CREATED_AT"]: to_iso(created_at) if created_at else iso_now(),
            },
        )
        return Message.from_record(record)

    def upsert_inbound_message(self, wa_message_id: str, **kwargs: Any) -> Tuple[Message, bool]:
        """Insert keyed on the provider id. Returns (message, created); duplicates are a no-op."""
        existing = self.find_message_by_wa_id(wa_message_id)
        if existing:
            return existing, False
        message = self.insert_message(
            direction=MessageDirection.INBOUND,
            status=MessageStatus.DELIVERED,
            wa_message_id=wa_message_id,
            **kwargs,
        )
        return message, True

    def update_message(self, message_id: str, fields: Dict[str, Any]) -> Message:
        return Message.from_record(_update(self.connector.messages(), message_id, fields))

    # Appointments
    def create_appointment(
        self,
        *,
        lead_id: str,
        scheduled_at: datetime,
        appointment_type: AppointmentType,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        duration_minutes: int = 30,
        notes: Optional[str] = None,
    ) -> Appointment:
        record = _create(
            self.connector.appointments(),
            {
                APPT_FIELDS["LEAD_ID"]: lead_id,
                APPT_FIELDS["SCHEDULED_AT"]: to_iso(scheduled_at),
                APPT_FIELDS["DURATION_MINUTES"]: duration_minutes,
                APPT_FIELDS["STATUS"]: status.value,
                APPT_FIELDS["TYPE"]: appointment_type.value,
                APPT_FIELDS["NOTES"]: notes,
                APPT_FIELDS["REMINDER_SENT"]: False,
                APPT_FIELDS["CREATED_AT"]: iso_now(),
            },
        )
        appointment = Appointment.from_record(record)
        if appointment is None:
            raise StoreError("appointment record came back without a schedule")
        return appointment

    def list_appointments(self) -> List[Appointment]:
        return self._appointments(_safe_all(self.connector.appointments()))

    def list_appointments_between(self, start: datetime, end: datetime) -> List[Appointment]:
        """Appointments overlapping [start, end); Airtable only returns rows near the window."""
        formula = window_formula(APPT_FIELDS["SCHEDULED_AT"], start - APPOINTMENT_LOOKBACK, end)
        records = _safe_all(self.connector.appointments(), formula=formula)
        return [a for a in self._appointments(records) if a.scheduled_at < end and a.ends_at > start]

    @staticmethod
    def _appointments(records: Iterable[Dict[str, Any]]) -> List[Appointment]:
        appointments = []
        for record in records:
            appt = Appointment.from_record(record)
            if appt:
                appointments.append(appt)
        return appointments

    def update_appointment(self, appointment_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return _update(self.connector.appointments(), appointment_id, fields)

    # Campaigns
    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        record = _safe_get(self.connector.campaigns(), campaign_id)
        if not record:
            return None
        return Campaign.from_record(record, settings().CAMPAIGN_DEFAULT_INTERVAL_DAYS)

    def list_active_campaigns(self) -> List[Campaign]:
        default_interval = settings().CAMPAIGN_DEFAULT_INTERVAL_DAYS
        campaigns = [Campaign.from_record(r, default_interval) for r in _safe_all(self.connector.campaigns())]
        return [c for c in campaigns if c.is_active and c.target_groups]

    def update_campaign(self, campaign_id: str, fields: Dict[str, Any]) -> Campaign:
        record = _update(self.connector.campaigns(), campaign_id, fields)
        return Campaign.from_record(record, settings().CAMPAIGN_DEFAULT_INTERVAL_DAYS)

    def group_lead_ids(self, group_id: str) -> List[str]:
        records = _safe_all(self.connector.lead_groups(), formula=eq_formula(**{GROUP_FIELDS["GROUP_ID"]: group_id}))
        ids: List[str] = []
        for record in records:
            lead_id = (record.get("fields") or {}).get(GROUP_FIELDS["LEAD_ID"])
            if isinstance(lead_id, list):
                ids.extend(str(x) for x in lead_id)
            elif lead_id:
                ids.append(str(lead_id))
        return list(dict.fromkeys(ids))

    def add_lead_to_group(self, group_id: str, lead_id: str) -> Dict[str, Any]:
        return _create(self.connector.lead_groups(), {GROUP_FIELDS["GROUP_ID"]: group_id, GROUP_FIELDS["LEAD_ID"]: lead_id})

    def record_campaign_send(
        self, *, campaign_id: str, lead_id: str, message_id: Optional[str], status: MessageStatus
    ) -> Optional[Dict[str, Any]]:
        try:
            return _create(
                self.connector.campaign_sends(),
                {
                    SEND_FIELDS["CAMPAIGN_ID"]: campaign_id,
                    SEND_FIELDS["LEAD_ID"]: lead_id,
                    SEND_FIELDS["MESSAGE_ID"]: message_id,
                    SEND_FIELDS["STATUS"]: status.value,
                    SEND_FIELDS["CREATED_AT"]: iso_now(),
                },
            )
        except StoreError:
            logger.warning("Campaign send row not recorded for campaign=%s lead=%s", campaign_id, lead_id)
            return None


STORE = Store()


# ============================================================
# PUBLIC HELPERS
# ============================================================


def reset_state() -> None:
    CONNECTOR._tables.clear()
    CONNECTOR._api = None
    logger.info("🧹 Datastore state and caches cleared.")
