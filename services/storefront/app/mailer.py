"""
Storefront Service — メール送信ゲートウェイ (Brevo)

Brevo の transactional email API を叩く薄いラッパー。
成功すれば messageId を返し、失敗はすべて NotificationError にする。
"""

import logging

import httpx

from .config import Settings
from .exceptions import NotificationError
from .messages import EmailMessage

logger = logging.getLogger(__name__)


class BrevoMailer:
    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = settings.brevo_api_key
        self.api_url = settings.brevo_api_url
        self.sender = {"email": settings.mail_from, "name": settings.mail_name}
        self.bcc = settings.mail_bcc
        self.timeout = settings.mail_timeout
        self.transport = transport

    def build_body(self, message: EmailMessage) -> dict:
        body: dict = {
            "sender": self.sender,
            "to": [{"email": message.to_email, "name": message.to_name}],
            "tags": [message.event_type.value],
        }
        if self.bcc:
            body["bcc"] = [{"email": self.bcc}]
        if message.template_id:
            body["templateId"] = message.template_id
            body["params"] = message.params
        else:
            body["subject"] = message.subject
            body["htmlContent"] = message.html_content
        return body

    async def send(self, message: EmailMessage) -> str:
        """メールを 1 通送り、Brevo の messageId を返す。"""
        if not self.api_key:
            raise NotificationError("mail provider not configured")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.post(
                    self.api_url,
                    headers={"api-key": self.api_key, "accept": "application/json"},
                    json=self.build_body(message),
                )
            except httpx.HTTPError as e:
                raise NotificationError(f"provider unreachable: {e}") from e

        if resp.status_code >= 300:
            raise NotificationError(f"provider error {resp.status_code}: {resp.text}")
        try:
            data = resp.json()
        except ValueError as e:
            raise NotificationError("provider returned malformed response") from e
        message_id = data.get("messageId") if isinstance(data, dict) else None
        if not message_id:
            raise NotificationError("provider returned no messageId")
        logger.debug("Brevo accepted %s -> %s", message.order_token, message_id)
        return str(message_id)
