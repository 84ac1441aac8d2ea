"""Generic webhook channel.

Inbound messages arrive as HTTP POSTs on ``/webhook/{instance_id}``
(see ``switchboard.host.server``). Replies are POSTed as JSON to the
configured ``callback_url``.

Config:
  callback_url: where replies and errors are sent (required)
  secret:       optional shared secret expected in the X-Webhook-Secret header
"""

from __future__ import annotations

import hmac
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import ValidationError

from switchboard.plugins.base import Channel, PluginBase
from switchboard.plugins.catalog import plugin
from switchboard.shared.errors import ValidationFailure
from switchboard.shared.trace import trace_headers
from switchboard.shared.types import Attachment, InboundMessage, SendMessageOptions
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.webhook")

SECRET_HEADER = "X-Webhook-Secret"


def _parse_attachments(raw: Any) -> list[Attachment]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValidationFailure("'attachments' must be a list")
    try:
        return [Attachment.model_validate(a) for a in raw]
    except ValidationError as e:
        raise ValidationFailure(f"Invalid attachment: {e.errors()[0]['msg']}") from e


@plugin(
    type="webhook",
    name="Webhook",
    description="Receives messages over HTTP and posts replies to a callback URL.",
    config_schema=[
        {"key": "callback_url", "type": "string", "required": True},
        {"key": "secret", "type": "string", "required": False},
    ],
)
class WebhookChannel(PluginBase, Channel):
    platform = "webhook"

    def __init__(self, config: dict[str, Any]):
        super().__init__(config)
        self.callback_url = config.get("callback_url")
        if not self.callback_url:
            raise ValidationFailure("webhook channel requires callback_url")
        self.secret = config.get("secret") or None
        self.timeout = float(config.get("timeout", 15))
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False
        self._close_events()

    def is_connected(self) -> bool:
        return self._connected

    def verify(self, provided: str | None) -> bool:
        if self.secret is None:
            return True
        return provided is not None and hmac.compare_digest(provided, self.secret)

    def receive(self, payload: dict[str, Any]) -> InboundMessage:
        """Turn a POSTed payload into an inbound message event."""
        content = payload.get("content")
        channel_id = payload.get("channel_id")
        if not isinstance(content, str) or not channel_id:
            raise ValidationFailure("payload requires 'content' and 'channel_id'")
        attachments = _parse_attachments(payload.get("attachments"))
        if not self._connected:
            raise ValidationFailure("webhook channel is not connected")
        message = InboundMessage(
            id=str(payload.get("id") or f"wh_{uuid.uuid4().hex[:12]}"),
            platform=self.platform,
            channel_id=str(channel_id),
            user_id=str(payload.get("user_id") or channel_id),
            username=str(payload.get("username") or ""),
            content=content,
            timestamp=datetime.now(UTC),
            attachments=attachments,
            subject=payload.get("subject"),
        )
        self._emit(message)
        return message

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    async def _post(self, body: dict[str, Any]) -> None:
        async with self._client() as client:
            response = await client.post(self.callback_url, json=body, headers=trace_headers())
            response.raise_for_status()

    async def send_message(self, options: SendMessageOptions) -> None:
        await self._post({"type": "message", **options.model_dump(mode="json")})

    async def send_error(
        self, channel_id: str, message: str, code: str = "error",
        reply_to: str | None = None,
    ) -> None:
        await self._post({
            "type": "error",
            "channel_id": channel_id,
            "error": {"message": message, "code": code},
            "reply_to": reply_to,
        })
