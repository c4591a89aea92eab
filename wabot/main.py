from __future__ import annotations

"""
WhatsApp Engine: FastAPI app
- Meta webhook (verify + inbound + statuses)
- Agent manual send
- Cron jobs: campaign groups, appointment reminders
"""

from datetime import datetime

from fastapi import FastAPI

from wabot import __version__
from wabot.config import settings, shop_tz
from wabot.datastore import CONNECTOR
from wabot.inbound_webhook import router as inbound_router
from wabot.outbound import router as outbound_router
from wabot.routes.jobs import router as jobs_router
from wabot.runtime import configure_logging, get_logger, iso_now

configure_logging()
log = get_logger("main")

app = FastAPI(title="WhatsApp Engine", version=__version__)
app.include_router(inbound_router)       # → /whatsapp/webhook
app.include_router(outbound_router)      # → /whatsapp/outbound
app.include_router(jobs_router)          # → /jobs/...


# ─────────────────────────── Startup checks ─────────────────────────
@app.on_event("startup")
async def startup_checks():
    s = settings()
    missing = [
        key
        for key, value in (
            ("WHATSAPP_ACCESS_TOKEN", s.WHATSAPP_ACCESS_TOKEN),
            ("WHATSAPP_PHONE_NUMBER_ID", s.WHATSAPP_PHONE_NUMBER_ID),
            ("WHATSAPP_VERIFY_TOKEN", s.WHATSAPP_VERIFY_TOKEN),
            ("AIRTABLE_API_KEY", s.AIRTABLE_API_KEY),
            ("AIRTABLE_BASE_ID", s.AIRTABLE_BASE_ID),
        )
        if not value
    ]
    if missing:
        log.warning("🚨 Missing env vars → %s", ", ".join(missing))
    log.info("✅ Startup: store=%s dry_run=%s tz=%s", _store_mode(), s.WHATSAPP_DRY_RUN, s.SHOP_TZ)


def _store_mode() -> str:
    return "memory" if CONNECTOR.in_memory else "airtable"


# ─────────────────────────── Health ────────────────────────────────
@app.get("/health")
async def health():
    return {
        "ok": True,
        "timestamp": iso_now(),
        "local_time": datetime.now(shop_tz()).isoformat(),
        "store": _store_mode(),
        "version": __version__,
    }
