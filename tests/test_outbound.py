from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from wabot import bot, outbound
from wabot.config import reload_settings
from wabot.main import app
from wabot.outbound import send_agent_message
from wabot.schema import MessageDirection, MessageSender


def test_agent_send_turns_bot_off_and_stamps_lead(store, channel, messages, now):
    lead = store.create_lead("573001112233", full_name="Ana")

    out = send_agent_message(text="Hola Ana, te escribe Laura", lead_id=lead.id, store=store, channel=channel, now=now)

    assert out["ok"] is True
    assert out["provider_message_id"] == "wamid.test.1"
    stored = store.get_lead(lead.id)
    assert stored.bot_active is False
    assert stored.last_agent_interaction == now
    assert stored.last_interaction == now

    row = messages(MessageDirection.OUTBOUND.value)[0]
    assert row.sender == MessageSender.AGENT.value
    assert row.content == "Hola Ana, te escribe Laura"


def test_agent_send_by_wa_id(store, channel, now):
    lead = store.create_lead("573001112233")
    out = send_agent_message(text="Hola", wa_id="300 111 2233", store=store, channel=channel, now=now)
    assert out["lead_id"] == lead.id


def test_agent_send_to_foreign_id_uses_it_as_is(store, channel, now):
    lead = store.create_lead("6581234567")
    out = send_agent_message(text="Hola", wa_id="+65 8123 4567", store=store, channel=channel, now=now)
    assert out["lead_id"] == lead.id
    assert channel.sent[0]["to"] == "6581234567"


def test_failed_agent_send_still_pauses_the_bot(store, make_channel, messages, now):
    lead = store.create_lead("573001112233")
    channel = make_channel(fail_for={"573001112233"})

    out = send_agent_message(text="Hola", lead_id=lead.id, store=store, channel=channel, now=now)

    assert out["ok"] is False
    assert "recipient not on WhatsApp" in out["error"]
    assert messages(MessageDirection.OUTBOUND.value)[0].status == "failed"
    assert store.get_lead(lead.id).bot_active is False


def test_agent_send_errors(store, channel, now):
    lead = store.create_lead("573001112233")
    assert send_agent_message(text="  ", lead_id=lead.id, store=store, channel=channel)["error"] == "empty_message"
    assert send_agent_message(text="Hola", lead_id="rec_nope", store=store, channel=channel)["error"] == "lead_not_found"
    assert channel.sent == []


def test_bot_resumes_after_reactivation_window(store, channel, make_oracle, now):
    lead = store.create_lead("573001112233", full_name="Ana")
    send_agent_message(text="Hola", lead_id=lead.id, store=store, channel=channel, now=now)

    quiet = bot.handle_text(
        store.get_lead(lead.id), "hola", store=store, oracle=make_oracle(), channel=channel, now=now + timedelta(hours=1)
    )
    back = bot.handle_text(
        store.get_lead(lead.id), "hola", store=store, oracle=make_oracle(), channel=channel, now=now + timedelta(hours=2)
    )

    assert quiet.action == bot.STOPPED
    assert back.reactivated is True
    assert back.action == bot.MENU


@pytest.fixture
def client(monkeypatch, channel):
    monkeypatch.setattr(outbound, "CHANNEL", channel)
    return TestClient(app)


def test_outbound_route_sends(store, client, channel):
    lead = store.create_lead("573001112233")

    resp = client.post("/whatsapp/outbound", json={"lead_id": lead.id, "text": "Hola desde la tienda"})

    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert channel.sent[0]["body"] == "Hola desde la tienda"


def test_outbound_route_errors(monkeypatch, store, client):
    assert client.post("/whatsapp/outbound", json={"lead_id": "rec_nope", "text": "Hola"}).status_code == 404
    assert client.post("/whatsapp/outbound", json={"text": "Hola"}).status_code == 422

    monkeypatch.setenv("AGENT_TOKEN", "agent-123")
    reload_settings()
    lead = store.create_lead("573001112233")
    body = {"lead_id": lead.id, "text": "Hola"}
    assert client.post("/whatsapp/outbound", json=body).status_code == 401
    assert client.post("/whatsapp/outbound", json=body, headers={"x-agent-token": "agent-123"}).status_code == 200
