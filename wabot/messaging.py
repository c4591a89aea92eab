"""Send-and-log: every outbound message lands in the Messages table, sent or failed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from wabot.datastore import Store, StoreError
from wabot.runtime import get_logger
from wabot.schema import MessageDirection, MessageSender, MessageStatus

logger = get_logger(__name__)


@dataclass
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


def send_and_log(
    lead_id: str,
    wa_id: str,
    text: str,
    channel,
    store: Store,
    *,
    sender: MessageSender = MessageSender.BOT,
    media_url: Optional[str] = None,
) -> SendResult:
    """
    Deliver ``text`` (or an image with ``text`` as caption) and record it.

    Channel failures are not raised: the row is stored with status ``failed``
    and the result says so. Store failures are logged and reflected in
    ``message_id`` being None.
    """
    provider_id: Optional[str] = None
    error: Optional[str] = None
    try:
        if media_url:
            resp = channel.send_image(wa_id, media_url, text)
        else:
            resp = channel.send_text(wa_id, text)
        provider_id = (resp or {}).get("provider_message_id")
    except Exception as exc:
        error = str(exc) or exc.__class__.__name__
        logger.warning("Send to %s failed (lead=%s sender=%s): %s", wa_id, lead_id, sender.value, error)

    message_id: Optional[str] = None
    try:
        message = store.insert_message(
            lead_id=lead_id,
            direction=MessageDirection.OUTBOUND,
            content=text,
            status=MessageStatus.FAILED if error else MessageStatus.SENT,
            sender=sender.value,
            wa_message_id=provider_id,
            msg_type="image" if media_url else "text",
            media_url=media_url,
            error=error,
        )
        message_id = message.id
    except StoreError:
        logger.error("Outbound message for lead %s not logged", lead_id)

    return SendResult(ok=error is None, message_id=message_id, provider_message_id=provider_id, error=error)


def log_system_message(store: Store, lead_id: str, text: str) -> None:
    """Timeline note that is never sent to the customer."""
    try:
        store.insert_message(
            lead_id=lead_id,
            direction=MessageDirection.SYSTEM,
            content=text,
            status=MessageStatus.DELIVERED,
            sender=MessageSender.BOT.value,
            msg_type="system",
        )
    except StoreError:
        logger.error("System note for lead %s not logged: %s", lead_id, text)
