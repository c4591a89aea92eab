"""Reusable token-based auth helpers for webhook, cron and agent routes."""

from __future__ import annotations

import hashlib
import hmac

from fastapi import HTTPException, Request

from wabot.config import settings


def _token_from_authorization(header: str | None) -> str | None:
    if not header:
        return None
    parts = header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _provided_token(request: Request, header_name: str) -> str | None:
    provided = request.query_params.get("token")
    provided = provided or request.headers.get(header_name)
    return provided or _token_from_authorization(request.headers.get("Authorization"))


async def require_cron_token(request: Request) -> None:
    expected = settings().CRON_TOKEN
    if not expected:
        return

    if _provided_token(request, "x-cron-token") != expected:
        raise HTTPException(status_code=401, detail="Invalid cron token")


async def require_agent_token(request: Request) -> None:
    expected = settings().AGENT_TOKEN
    if not expected:
        return

    if _provided_token(request, "x-agent-token") != expected:
        raise HTTPException(status_code=401, detail="Invalid agent token")


def signature_is_valid(raw_body: bytes, signature_header: str | None, app_secret: str | None) -> bool:
    """Check Meta's X-Hub-Signature-256 header (``sha256=<hex hmac>``)."""
    if not app_secret:
        return True
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header.split("=", 1)[1].strip())
