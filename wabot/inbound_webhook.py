# wabot/inbound_webhook.py
"""
📥 WhatsApp Cloud API webhook
- GET  /whatsapp/webhook : Meta verification handshake
- POST /whatsapp/webhook : inbound messages + delivery statuses

Every delivery is answered with 200 so Meta does not redeliver; failures are
logged per event and never raised to the caller.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import redis
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse

from wabot.auth import signature_is_valid
from wabot.availability import StoreAvailabilityOracle
from wabot.bot import handle_text
from wabot.config import settings
from wabot.datastore import STORE, Store, StoreError
from wabot.models import InboundEvent, Lead
from wabot.runtime import get_logger, iso_now, only_digits
from wabot.schema import MessageSender, MessageStatus, leads_field_map, messages_field_map
from wabot.whatsapp_sender import CHANNEL

router = APIRouter()
logger = get_logger("inbound")

LEAD_FIELDS = leads_field_map()
MSG_FIELDS = messages_field_map()

MEDIA_PLACEHOLDER = "[Multimedia]"
IDEM_TTL_SECONDS = 24 * 60 * 60
_STATUS_RANK = {MessageStatus.SENT: 1, MessageStatus.DELIVERED: 2, MessageStatus.READ: 3}


# === IDEMPOTENCY STORE ===
class IdempotencyStore:
    """Redis claim on provider message ids with a bounded local fallback."""

    def __init__(self, url: Optional[str] = None, tls: bool = False):
        self.r = None
        if url:
            if tls and url.startswith("redis://"):
                url = "rediss://" + url[len("redis://"):]
            try:
                self.r = redis.Redis.from_url(url, decode_responses=True)
            except (redis.RedisError, ValueError):
                logger.warning("Redis unavailable for idempotency; using in-process set", exc_info=True)
        self._mem: Dict[str, None] = {}
        self._max_mem_size = 10000

    @staticmethod
    def _key(msg_id: str) -> str:
        return f"wa:inbound:{msg_id}"

    def seen(self, msg_id: Optional[str]) -> bool:
        """True if the id was already claimed; otherwise claim it and return False."""
        if not msg_id:
            return False
        key = self._key(msg_id)

        if self.r is not None:
            try:
                ok = self.r.set(key, "1", nx=True, ex=IDEM_TTL_SECONDS)
                return not bool(ok)
            except redis.RedisError:
                logger.warning("Redis claim failed for %s; using in-process set", msg_id, exc_info=True)

        if key in self._mem:
            return True
        if len(self._mem) >= self._max_mem_size:
            for old_key in list(self._mem)[: self._max_mem_size // 5]:
                self._mem.pop(old_key, None)
        self._mem[key] = None
        return False

    def release(self, msg_id: Optional[str]) -> None:
        if not msg_id:
            return
        key = self._key(msg_id)
        self._mem.pop(key, None)
        if self.r is not None:
            try:
                self.r.delete(key)
            except redis.RedisError:
                logger.warning("Redis release failed for %s", msg_id, exc_info=True)


_IDEM: Optional[IdempotencyStore] = None


def get_idempotency_store() -> IdempotencyStore:
    global _IDEM
    if _IDEM is None:
        s = settings()
        _IDEM = IdempotencyStore(s.REDIS_URL, s.REDIS_TLS)
    return _IDEM


def reset_idempotency() -> None:
    global _IDEM
    _IDEM = None


# === ENVELOPE PARSING ===
def _timestamp(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _message_body(message: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Return (text, media_id) for one Cloud API message object."""
    msg_type = message.get("type")
    if msg_type == "text":
        return (message.get("text") or {}).get("body"), None
    if msg_type == "button":
        return (message.get("button") or {}).get("text"), None
    if msg_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("title"), None
    media = message.get(msg_type) if isinstance(msg_type, str) else None
    if isinstance(media, dict):
        return media.get("caption"), media.get("id")
    return None, None


def parse_events(payload: Dict[str, Any]) -> Tuple[List[InboundEvent], List[Dict[str, Any]]]:
    """Flatten entry[].changes[].value into (messages, statuses)."""
    events: List[InboundEvent] = []
    statuses: List[Dict[str, Any]] = []
    for entry in payload.get("entry") or []:
        for change in (entry or {}).get("changes") or []:
            value = (change or {}).get("value") or {}
            names = {
                c.get("wa_id"): ((c.get("profile") or {}).get("name"))
                for c in value.get("contacts") or []
                if isinstance(c, dict)
            }
            for message in value.get("messages") or []:
                if not isinstance(message, dict) or not message.get("id") or not message.get("from"):
                    continue
                body, media_id = _message_body(message)
                events.append(
                    InboundEvent(
                        wa_id=str(message["from"]),
                        message_id=str(message["id"]),
                        timestamp=_timestamp(message.get("timestamp")),
                        type=str(message.get("type") or "unknown"),
                        body=body,
                        contact_name=names.get(message["from"]),
                        media_id=media_id,
                    )
                )
            statuses.extend(s for s in value.get("statuses") or [] if isinstance(s, dict))
    return events, statuses


# === LEADS ===
def _resolve_lead(store: Store, event: InboundEvent) -> Lead:
    wa_id = only_digits(event.wa_id)
    lead = store.find_lead_by_wa_id(wa_id)
    if lead is None:
        lead = store.create_lead(wa_id, full_name=event.contact_name)
        logger.info("🆕 New lead %s for %s", lead.id, wa_id)
        return lead
    fields: Dict[str, Any] = {LEAD_FIELDS["LAST_INTERACTION"]: iso_now()}
    if event.contact_name and not lead.full_name:
        fields[LEAD_FIELDS["FULL_NAME"]] = event.contact_name
    return store.update_lead(lead.id, fields)


# === CORE ===
def process_event(
    event: InboundEvent,
    *,
    store: Store,
    channel,
    oracle,
    idem: IdempotencyStore,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if idem.seen(event.message_id):
        return {"id": event.message_id, "status": "duplicate"}

    stored = False
    try:
        lead = _resolve_lead(store, event)
        _, created = store.upsert_inbound_message(
            event.message_id,
            lead_id=lead.id,
            content=event.body if event.body is not None else MEDIA_PLACEHOLDER,
            sender=MessageSender.CUSTOMER.value,
            msg_type=event.type,
            media_id=event.media_id,
            created_at=event.timestamp,
        )
        stored = True
        if not created:
            return {"id": event.message_id, "status": "duplicate"}

        if not event.is_text or not (event.body or "").strip():
            return {"id": event.message_id, "status": "stored", "lead_id": lead.id}

        result = handle_text(lead, event.body, store=store, oracle=oracle, channel=channel, now=now)
        return {"id": event.message_id, "status": "processed", "lead_id": lead.id, "bot": result.to_dict()}
    except Exception as exc:
        logger.exception("Inbound %s from %s failed: %s", event.message_id, event.wa_id, exc)
        if not stored:
            idem.release(event.message_id)
        return {"id": event.message_id, "status": "error", "error": str(exc)}


def apply_status(status: Dict[str, Any], *, store: Store) -> Optional[str]:
    """Move the matching outbound message forward; unknown ids are ignored."""
    wa_message_id = status.get("id")
    try:
        new_status = MessageStatus(str(status.get("status") or "").lower())
    except ValueError:
        return None
    message = store.find_message_by_wa_id(wa_message_id)
    if message is None:
        return None

    try:
        current = MessageStatus(message.status)
    except ValueError:
        current = None
    if new_status != MessageStatus.FAILED and current in _STATUS_RANK:
        if _STATUS_RANK[new_status] <= _STATUS_RANK[current]:
            return current.value

    fields: Dict[str, Any] = {MSG_FIELDS["STATUS"]: new_status.value}
    if new_status == MessageStatus.FAILED:
        errors = status.get("errors") or [{}]
        first = errors[0] if isinstance(errors[0], dict) else {}
        fields[MSG_FIELDS["ERROR"]] = first.get("title") or first.get("message") or "delivery failed"
    try:
        store.update_message(message.id, fields)
    except StoreError:
        logger.error("Status %s for %s not stored", new_status.value, wa_message_id)
        return None
    return new_status.value


def handle_inbound(
    payload: Dict[str, Any],
    *,
    store: Optional[Store] = None,
    channel=None,
    oracle=None,
    idem: Optional[IdempotencyStore] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    store = store or STORE
    channel = channel or CHANNEL
    oracle = oracle or StoreAvailabilityOracle(store)
    idem = idem or get_idempotency_store()

    events, statuses = parse_events(payload or {})
    results = [process_event(e, store=store, channel=channel, oracle=oracle, idem=idem, now=now) for e in events]

    updated = 0
    for status in statuses:
        try:
            if apply_status(status, store=store):
                updated += 1
        except Exception:
            logger.exception("Status update failed for %s", status.get("id"))

    if not events and not statuses:
        return {"ok": True, "status": "ignored"}
    if len(results) == 1 and results[0]["status"] == "duplicate" and not statuses:
        return {"ok": True, "status": "duplicate", "messages": results}
    return {"ok": True, "messages": results, "statuses_updated": updated}


# === ROUTES ===
@router.get("/whatsapp/webhook")
async def verify_handler(request: Request):
    """Echo hub.challenge when Meta presents the configured verify token."""
    params = request.query_params
    if params.get("hub.mode") == "subscribe" and params.get("hub.verify_token") == settings().WHATSAPP_VERIFY_TOKEN:
        if settings().WHATSAPP_VERIFY_TOKEN:
            return PlainTextResponse(params.get("hub.challenge") or "")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp/webhook")
async def inbound_handler(request: Request):
    raw = await request.body()
    if not signature_is_valid(raw, request.headers.get("x-hub-signature-256"), settings().WHATSAPP_APP_SECRET):
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        data = json.loads(raw or b"{}")
    except ValueError:
        raise HTTPException(status_code=422, detail="Invalid payload")
    if not isinstance(data, dict):
        raise HTTPException(status_code=422, detail="Invalid payload")
    return await asyncio.to_thread(handle_inbound, data)
