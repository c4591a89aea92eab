# wabot/outbound.py
"""
Agent (human) send path.

This is the only place that switches the bot off: once an agent writes to a
lead, the bot stays quiet until the reactivation window has passed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from wabot.auth import require_agent_token
from wabot.config import settings
from wabot.datastore import STORE, Store, StoreError
from wabot.messaging import send_and_log
from wabot.runtime import get_logger, normalize_wa_id, only_digits, to_iso, utc_now
from wabot.schema import MessageSender, leads_field_map
from wabot.whatsapp_sender import CHANNEL

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])
logger = get_logger("outbound")
LEAD_FIELDS = leads_field_map()


class AgentMessageRequest(BaseModel):
    text: str
    lead_id: Optional[str] = None
    wa_id: Optional[str] = None
    media_url: Optional[str] = None


def send_agent_message(
    *,
    text: str,
    lead_id: Optional[str] = None,
    wa_id: Optional[str] = None,
    media_url: Optional[str] = None,
    store: Optional[Store] = None,
    channel=None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    store = store or STORE
    channel = channel or CHANNEL
    now = now or utc_now()

    if not (text or "").strip() and not media_url:
        return {"ok": False, "error": "empty_message"}

    lead = store.get_lead(lead_id) if lead_id else None
    if lead is None and wa_id:
        # Operators may type a local number; the stored id is always international.
        for candidate in dict.fromkeys([only_digits(wa_id), normalize_wa_id(wa_id, settings().DEFAULT_COUNTRY_CODE)]):
            lead = store.find_lead_by_wa_id(candidate) if candidate else None
            if lead:
                break
    if lead is None:
        return {"ok": False, "error": "lead_not_found"}

    result = send_and_log(lead.id, lead.wa_id, text, channel, store, sender=MessageSender.AGENT, media_url=media_url)

    stamp = to_iso(now)
    try:
        store.update_lead(
            lead.id,
            {
                LEAD_FIELDS["BOT_ACTIVE"]: False,
                LEAD_FIELDS["LAST_AGENT_INTERACTION"]: stamp,
                LEAD_FIELDS["LAST_INTERACTION"]: stamp,
            },
        )
    except StoreError:
        logger.error("Lead %s not marked as agent-handled", lead.id)

    logger.info("🧑‍💼 Agent message to lead %s ok=%s", lead.id, result.ok)
    return {
        "ok": result.ok,
        "lead_id": lead.id,
        "message_id": result.message_id,
        "provider_message_id": result.provider_message_id,
        "error": result.error,
    }


@router.post("/outbound", dependencies=[Depends(require_agent_token)])
def outbound_handler(req: AgentMessageRequest):
    if not (req.lead_id or req.wa_id):
        raise HTTPException(status_code=422, detail="lead_id or wa_id is required")
    out = send_agent_message(text=req.text, lead_id=req.lead_id, wa_id=req.wa_id, media_url=req.media_url)
    if out.get("error") == "lead_not_found":
        raise HTTPException(status_code=404, detail="Lead not found")
    if out.get("error") == "empty_message":
        raise HTTPException(status_code=422, detail="text is required")
    return out
