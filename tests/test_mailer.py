import httpx
import pytest

from app.config import Settings
from app.events import EmailEventType
from app.exceptions import NotificationError
from app.mailer import BrevoMailer
from app.messages import EmailMessage


def message(**overrides):
    fields = {
        "event_type": EmailEventType.PAID_NOTICE,
        "order_token": "T1",
        "to_email": "y@example.com",
        "to_name": "Tanaka Yui",
        "subject": "ご入金を確認しました（#T1）",
        "html_content": "<p>ok</p>",
    }
    fields.update(overrides)
    return EmailMessage(**fields)


def mailer_for(handler, **settings):
    cfg = Settings(brevo_api_key="key-123", **settings)
    return BrevoMailer(cfg, transport=httpx.MockTransport(handler))


async def test_send_posts_brevo_payload():
    captured = {}

    def handler(request):
        captured["request"] = request
        return httpx.Response(201, json={"messageId": "<abc@smtp-relay.mailin.fr>"})

    mailer = mailer_for(handler, mail_bcc="shop@example.com")

    message_id = await mailer.send(message())

    assert message_id == "<abc@smtp-relay.mailin.fr>"
    request = captured["request"]
    assert str(request.url) == "https://api.brevo.com/v3/smtp/email"
    assert request.headers["api-key"] == "key-123"
    body = mailer.build_body(message())
    assert body["to"] == [{"email": "y@example.com", "name": "Tanaka Yui"}]
    assert body["bcc"] == [{"email": "shop@example.com"}]
    assert body["subject"] == "ご入金を確認しました（#T1）"
    assert body["tags"] == ["paid_notice"]
    assert "templateId" not in body


def test_template_body():
    mailer = mailer_for(lambda r: httpx.Response(201))
    body = mailer.build_body(message(html_content=None, template_id=7, params={"total": "6,000円"}))
    assert body["templateId"] == 7
    assert body["params"] == {"total": "6,000円"}
    assert "htmlContent" not in body


async def test_provider_error_raises():
    mailer = mailer_for(lambda r: httpx.Response(500, text="internal"))
    with pytest.raises(NotificationError, match="provider error 500"):
        await mailer.send(message())


async def test_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(NotificationError, match="provider unreachable"):
        await mailer_for(handler).send(message())


async def test_missing_message_id_raises():
    mailer = mailer_for(lambda r: httpx.Response(201, json={}))
    with pytest.raises(NotificationError, match="no messageId"):
        await mailer.send(message())


async def test_unconfigured_provider_raises():
    mailer = BrevoMailer(Settings())
    with pytest.raises(NotificationError, match="not configured"):
        await mailer.send(message())
