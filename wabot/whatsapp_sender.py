# wabot/whatsapp_sender.py
"""
📡 WhatsApp Sender: Meta Cloud API transport
- POST https://graph.facebook.com/{version}/{phone_number_id}/messages
- Bearer token auth, JSON bodies
- No retries: a failed send raises WhatsAppError and the caller logs it
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import requests

from wabot.config import settings
from wabot.runtime import get_logger, only_digits

logger = get_logger("whatsapp_sender")

GRAPH_BASE_URL = "https://graph.facebook.com"
MAX_TEXT_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024
MIN_RECIPIENT_DIGITS = 8


# =========================
# Errors
# =========================
class WhatsAppError(RuntimeError):
    """Custom error that carries HTTP metadata and response body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.payload = payload

    def __str__(self) -> str:  # pragma: no cover - string formatting helper
        base = super().__str__()
        if self.body in (None, "", b""):
            return base
        body_repr = str(self.body).strip()
        if not body_repr or body_repr in base:
            return base
        return f"{base} | body={body_repr}"


# =========================
# Small helpers
# =========================
def _has_value(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _messages_url() -> str:
    s = settings()
    return f"{GRAPH_BASE_URL}/{s.WHATSAPP_GRAPH_VERSION}/{s.WHATSAPP_PHONE_NUMBER_ID}/messages"


def _validate_payload(payload: Dict[str, Any]) -> None:
    """Ensure required Cloud API fields are present and sane."""
    problems: List[str] = []

    if not _has_value(payload.get("to")):
        problems.append("to is required")

    msg_type = payload.get("type")
    if msg_type == "text":
        body = (payload.get("text") or {}).get("body")
        if not _has_value(body):
            problems.append("text.body is required")
        elif len(str(body)) > MAX_TEXT_LENGTH:
            problems.append(f"text.body exceeds {MAX_TEXT_LENGTH} characters")
    elif msg_type == "image":
        image = payload.get("image") or {}
        if not _has_value(image.get("link")):
            problems.append("image.link is required")
        if _has_value(image.get("caption")) and len(str(image["caption"])) > MAX_CAPTION_LENGTH:
            problems.append(f"image.caption exceeds {MAX_CAPTION_LENGTH} characters")
    else:
        problems.append(f"unsupported type {msg_type!r}")

    if problems:
        raise WhatsAppError("Invalid WhatsApp payload: " + "; ".join(problems), payload=dict(payload))


def _extract_error_body(resp: Any) -> Any:
    """Parse JSON body if available; fallback to plain text."""
    if resp is None:
        return None
    try:
        return resp.json()
    except ValueError:
        text = getattr(resp, "text", None)
        return text.strip() if text else None


def _summarize_error_body(body: Any) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if _has_value(error):
            return str(error)
    return "" if body is None else str(body)


def _http_post(url: str, payload: Dict[str, Any], token: str, timeout: float = 15) -> Dict[str, Any]:
    if settings().WHATSAPP_DRY_RUN:
        logger.info("[DRY RUN] POST %s to=%s type=%s", url, payload.get("to"), payload.get("type"))
        return {"messages": [{"id": f"wamid.dryrun.{int(time.time() * 1000)}"}]}

    try:
        resp = requests.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise WhatsAppError(f"WhatsApp transport error: {exc}", payload=payload) from exc

    if resp.status_code >= 400:
        body = _extract_error_body(resp)
        logger.error("WhatsApp %s error body: %s", resp.status_code, body)
        if resp.status_code == 429:
            raise WhatsAppError("429 rate limited", status_code=429, body=body, payload=payload)
        summary = _summarize_error_body(body)
        message = f"WhatsApp HTTP {resp.status_code}"
        if summary:
            message = f"{message}: {summary}"
        raise WhatsAppError(message, status_code=resp.status_code, body=body, payload=payload)

    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text}


def _provider_message_id(resp: Dict[str, Any]) -> Optional[str]:
    messages = (resp or {}).get("messages") or []
    if messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return None


def _send(payload: Dict[str, Any]) -> Dict[str, Any]:
    s = settings()
    if not s.WHATSAPP_DRY_RUN and not (s.WHATSAPP_ACCESS_TOKEN and s.WHATSAPP_PHONE_NUMBER_ID):
        raise WhatsAppError("WhatsApp credentials missing", payload=payload)

    _validate_payload(payload)
    resp = _http_post(_messages_url(), payload, s.WHATSAPP_ACCESS_TOKEN or "", timeout=s.WHATSAPP_TIMEOUT_SEC)
    provider_id = _provider_message_id(resp)
    if not provider_id:
        raise WhatsAppError("WhatsApp response carried no message id", body=resp, payload=payload)
    logger.info("📤 Sent %s to %s (%s)", payload.get("type"), payload.get("to"), provider_id)
    return {"provider_message_id": provider_id, "raw": resp}


def _recipient(wa_id: str) -> str:
    """Lead ids are the provider's international number; only formatting is stripped."""
    recipient = only_digits(wa_id)
    if len(recipient) < MIN_RECIPIENT_DIGITS:
        raise WhatsAppError(f"Invalid WhatsApp recipient {wa_id!r}")
    return recipient


# =========================
# Core Sender
# =========================
def send_text(wa_id: str, body: str) -> Dict[str, Any]:
    """
    Send one text message. Returns {"provider_message_id": ..., "raw": ...};
    raises WhatsAppError on any transport or API failure.
    """
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": _recipient(wa_id),
        "type": "text",
        "text": {"preview_url": False, "body": (body or "").strip()},
    }
    return _send(payload)


def send_image(wa_id: str, media_url: str, caption: Optional[str] = None) -> Dict[str, Any]:
    image: Dict[str, Any] = {"link": media_url}
    if _has_value(caption):
        image["caption"] = caption.strip()
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": _recipient(wa_id),
        "type": "image",
        "image": image,
    }
    return _send(payload)


class WhatsAppChannel:
    """Delivery channel backed by the Cloud API; engines take it as a parameter."""

    def send_text(self, wa_id: str, body: str) -> Dict[str, Any]:
        return send_text(wa_id, body)

    def send_image(self, wa_id: str, media_url: str, caption: Optional[str] = None) -> Dict[str, Any]:
        return send_image(wa_id, media_url, caption)


CHANNEL = WhatsAppChannel()
