import pytest
import requests

from wabot import whatsapp_sender
from wabot.config import reload_settings
from wabot.whatsapp_sender import WhatsAppError


@pytest.fixture
def creds(monkeypatch):
    monkeypatch.setenv("WHATSAPP_ACCESS_TOKEN", "EAAG-test")
    monkeypatch.setenv("WHATSAPP_PHONE_NUMBER_ID", "1098765")
    monkeypatch.setenv("WHATSAPP_GRAPH_VERSION", "v19.0")
    reload_settings()


@pytest.fixture
def captured(monkeypatch, creds):
    calls = []

    def fake_post(url, payload, token, timeout=15):
        calls.append({"url": url, "payload": payload, "token": token})
        return {"messaging_product": "whatsapp", "messages": [{"id": "wamid.HBgM"}]}

    monkeypatch.setattr(whatsapp_sender, "_http_post", fake_post)
    return calls


def test_send_text_builds_cloud_api_payload(captured):
    out = whatsapp_sender.send_text("+57 300 111 2233", "  Hola  ")

    assert out["provider_message_id"] == "wamid.HBgM"
    call = captured[0]
    assert call["url"] == "https://graph.facebook.com/v19.0/1098765/messages"
    assert call["token"] == "EAAG-test"
    assert call["payload"] == {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": "573001112233",
        "type": "text",
        "text": {"preview_url": False, "body": "Hola"},
    }


def test_ten_digit_foreign_recipient_is_not_prefixed(captured):
    whatsapp_sender.send_text("6581234567", "Hola")
    assert captured[0]["payload"]["to"] == "6581234567"


def test_send_image_with_caption(captured):
    whatsapp_sender.send_image("573001112233", "https://cdn.example.com/a.jpg", "Promo")
    assert captured[0]["payload"]["image"] == {"link": "https://cdn.example.com/a.jpg", "caption": "Promo"}


def test_validation_rejects_bad_payloads(captured):
    with pytest.raises(WhatsAppError, match="text.body is required"):
        whatsapp_sender.send_text("573001112233", "   ")
    with pytest.raises(WhatsAppError, match="exceeds 4096"):
        whatsapp_sender.send_text("573001112233", "x" * 4097)
    with pytest.raises(WhatsAppError, match="image.link is required"):
        whatsapp_sender.send_image("573001112233", "")
    with pytest.raises(WhatsAppError, match="Invalid WhatsApp recipient"):
        whatsapp_sender.send_text("12", "Hola")
    assert captured == []


def test_missing_credentials(monkeypatch):
    monkeypatch.delenv("WHATSAPP_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("WHATSAPP_PHONE_NUMBER_ID", raising=False)
    reload_settings()
    with pytest.raises(WhatsAppError, match="credentials missing"):
        whatsapp_sender.send_text("573001112233", "Hola")


def test_dry_run_needs_no_credentials(monkeypatch):
    monkeypatch.delenv("WHATSAPP_ACCESS_TOKEN", raising=False)
    monkeypatch.setenv("WHATSAPP_DRY_RUN", "1")
    reload_settings()

    out = whatsapp_sender.send_text("573001112233", "Hola")
    assert out["provider_message_id"].startswith("wamid.dryrun.")


def test_response_without_id_is_an_error(monkeypatch, creds):
    monkeypatch.setattr(whatsapp_sender, "_http_post", lambda *a, **k: {"messages": []})
    with pytest.raises(WhatsAppError, match="no message id"):
        whatsapp_sender.send_text("573001112233", "Hola")


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        if isinstance(self._body, dict):
            return self._body
        raise ValueError("not json")


def test_http_error_carries_status_and_meta_message(monkeypatch, creds):
    body = {"error": {"message": "(#131030) Recipient phone number not in allowed list", "code": 131030}}
    monkeypatch.setattr(whatsapp_sender.requests, "post", lambda *a, **k: FakeResponse(400, body))

    with pytest.raises(WhatsAppError) as exc:
        whatsapp_sender.send_text("573001112233", "Hola")

    assert exc.value.status_code == 400
    assert exc.value.body == body
    assert "Recipient phone number not in allowed list" in str(exc.value)
    assert exc.value.payload["to"] == "573001112233"


def test_rate_limit_and_transport_errors(monkeypatch, creds):
    monkeypatch.setattr(whatsapp_sender.requests, "post", lambda *a, **k: FakeResponse(429, "slow down"))
    with pytest.raises(WhatsAppError) as exc:
        whatsapp_sender.send_text("573001112233", "Hola")
    assert exc.value.status_code == 429

    def down(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(whatsapp_sender.requests, "post", down)
    with pytest.raises(WhatsAppError, match="transport error"):
        whatsapp_sender.send_text("573001112233", "Hola")


def test_success_response_is_parsed(monkeypatch, creds):
    sent = {}

    def ok(url, json=None, headers=None, timeout=None):
        sent.update(url=url, headers=headers, timeout=timeout)
        return FakeResponse(200, {"messages": [{"id": "wamid.OK"}]})

    monkeypatch.setattr(whatsapp_sender.requests, "post", ok)

    assert whatsapp_sender.WhatsAppChannel().send_text("573001112233", "Hola")["provider_message_id"] == "wamid.OK"
    assert sent["headers"]["Authorization"] == "Bearer EAAG-test"
    assert sent["timeout"] == 15.0
