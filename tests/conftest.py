import os
import sys
from datetime import datetime, timezone

# Ensure project root is in sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from wabot.config import reload_settings
from wabot.datastore import Store, reset_state
from wabot.inbound_webhook import reset_idempotency
from wabot.models import Message
from wabot.whatsapp_sender import WhatsAppError

# Monday 19 Oct 2026, 09:00 in Bogotá (UTC-5)
NOW = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)


class FakeChannel:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def _record(self, entry):
        if entry["to"] in self.fail_for:
            raise WhatsAppError("WhatsApp HTTP 400: recipient not on WhatsApp", status_code=400)
        self.sent.append(entry)
        return {"provider_message_id": f"wamid.test.{len(self.sent)}"}

    def send_text(self, wa_id, body):
        return self._record({"to": wa_id, "type": "text", "body": body})

    def send_image(self, wa_id, media_url, caption=None):
        return self._record({"to": wa_id, "type": "image", "media_url": media_url, "body": caption})


class FakeOracle:
    def __init__(self, available=True, open_times=(), fail=False):
        self.available = available
        self.open_times = list(open_times)
        self.fail = fail
        self.checked = []

    def check_availability(self, instant, duration_minutes=30):
        if self.fail:
            raise RuntimeError("availability service down")
        self.checked.append((instant, duration_minutes))
        return {"available": self.available}

    def list_open_slots(self, day, start_hour=9, end_hour=18, slot_minutes=30):
        if self.fail:
            raise RuntimeError("availability service down")
        return [{"time": t, "available": True} for t in self.open_times]


@pytest.fixture(autouse=True)
def _reset_datastore(monkeypatch):
    for key in [
        "AIRTABLE_API_KEY",
        "AIRTABLE_BASE_ID",
        "REDIS_URL",
        "WHATSAPP_APP_SECRET",
        "WHATSAPP_VERIFY_TOKEN",
        "WHATSAPP_DRY_RUN",
        "CRON_TOKEN",
        "AGENT_TOKEN",
        "BOT_REACTIVATION_HOURS",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("WABOT_FORCE_IN_MEMORY", "1")
    monkeypatch.setenv("SHOP_TZ", "America/Bogota")
    reload_settings()
    reset_state()
    reset_idempotency()
    yield
    reload_settings()


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def make_channel():
    return FakeChannel


@pytest.fixture
def make_oracle():
    return FakeOracle


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def messages(store):
    """Return stored Message rows, optionally filtered by direction."""

    def _list(direction=None):
        rows = [Message.from_record(r) for r in store.connector.messages().table.all()]
        return [m for m in rows if direction is None or m.direction == direction]

    return _list
