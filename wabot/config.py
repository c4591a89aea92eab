from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

# -----------------------------
# .env Loader
# -----------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
ENV_PATH = os.path.join(BASE_DIR, "..", ".env")
load_dotenv(dotenv_path=ENV_PATH, override=False)


# -----------------------------
# Env helpers
# -----------------------------
def env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, default))
    except (TypeError, ValueError):
        return default


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    return v if (v and str(v).strip() != "") else default


# -----------------------------
# Settings Object
# -----------------------------
@dataclass(frozen=True)
class Settings:
    # WhatsApp Cloud API
    WHATSAPP_ACCESS_TOKEN: Optional[str]
    WHATSAPP_PHONE_NUMBER_ID: Optional[str]
    WHATSAPP_GRAPH_VERSION: str
    WHATSAPP_VERIFY_TOKEN: Optional[str]
    WHATSAPP_APP_SECRET: Optional[str]
    WHATSAPP_DRY_RUN: bool
    WHATSAPP_TIMEOUT_SEC: float
    DEFAULT_COUNTRY_CODE: str
    # Table store
    AIRTABLE_API_KEY: Optional[str]
    AIRTABLE_BASE_ID: Optional[str]
    FORCE_IN_MEMORY: bool
    # Idempotency
    REDIS_URL: Optional[str]
    REDIS_TLS: bool
    # Route auth
    CRON_TOKEN: Optional[str]
    AGENT_TOKEN: Optional[str]
    # Bot / scheduling policy
    SHOP_TZ: str
    BOT_REACTIVATION_HOURS: float
    APPOINTMENT_SLOT_MINUTES: int
    BUSINESS_START_HOUR: int
    BUSINESS_END_HOUR: int
    MAX_ALTERNATIVE_SLOTS: int
    PENDING_SLOT_TTL_HOURS: float
    CAMPAIGN_DEFAULT_INTERVAL_DAYS: int
    REMINDER_WINDOW_HOURS: float


@lru_cache(maxsize=1)
def settings() -> Settings:
    return Settings(
        WHATSAPP_ACCESS_TOKEN=env_str("WHATSAPP_ACCESS_TOKEN"),
        WHATSAPP_PHONE_NUMBER_ID=env_str("WHATSAPP_PHONE_NUMBER_ID"),
        WHATSAPP_GRAPH_VERSION=env_str("WHATSAPP_GRAPH_VERSION", "v18.0"),
        WHATSAPP_VERIFY_TOKEN=env_str("WHATSAPP_VERIFY_TOKEN"),
        WHATSAPP_APP_SECRET=env_str("WHATSAPP_APP_SECRET"),
        WHATSAPP_DRY_RUN=env_bool("WHATSAPP_DRY_RUN", False),
        WHATSAPP_TIMEOUT_SEC=env_float("WHATSAPP_TIMEOUT_SEC", 15.0),
        DEFAULT_COUNTRY_CODE=env_str("DEFAULT_COUNTRY_CODE", "57"),
        AIRTABLE_API_KEY=env_str("AIRTABLE_API_KEY"),
        AIRTABLE_BASE_ID=env_str("AIRTABLE_BASE_ID"),
        FORCE_IN_MEMORY=env_bool("WABOT_FORCE_IN_MEMORY", False),
        REDIS_URL=env_str("REDIS_URL"),
        REDIS_TLS=env_bool("REDIS_TLS", False),
        CRON_TOKEN=env_str("CRON_TOKEN"),
        AGENT_TOKEN=env_str("AGENT_TOKEN"),
        SHOP_TZ=env_str("SHOP_TZ", "America/Bogota"),
        BOT_REACTIVATION_HOURS=env_float("BOT_REACTIVATION_HOURS", 2.0),
        APPOINTMENT_SLOT_MINUTES=env_int("APPOINTMENT_SLOT_MINUTES", 30),
        BUSINESS_START_HOUR=env_int("BUSINESS_START_HOUR", 9),
        BUSINESS_END_HOUR=env_int("BUSINESS_END_HOUR", 18),
        MAX_ALTERNATIVE_SLOTS=env_int("MAX_ALTERNATIVE_SLOTS", 3),
        PENDING_SLOT_TTL_HOURS=env_float("PENDING_SLOT_TTL_HOURS", 24.0),
        CAMPAIGN_DEFAULT_INTERVAL_DAYS=env_int("CAMPAIGN_DEFAULT_INTERVAL_DAYS", 7),
        REMINDER_WINDOW_HOURS=env_float("REMINDER_WINDOW_HOURS", 24.0),
    )


def reload_settings() -> Settings:
    """Drop the cached settings (tests and hot config reloads)."""
    settings.cache_clear()
    return settings()


# -----------------------------
# Time helpers
# -----------------------------
def shop_tz() -> ZoneInfo:
    return ZoneInfo(settings().SHOP_TZ)
