# notify.py — Discord webhook delivery, JSON or multipart with an attachment
import logging
from typing import Optional

import httpx

from config import Settings
from errors import TransportError
from formatter import OutboundMessage

LOG = logging.getLogger("bridge.discord")


def _redact(url: str) -> str:
    return url[:50] + "..." if len(url) > 50 else url


class DiscordNotifier:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = settings.discord_webhook_url
        self.timeout = settings.discord_timeout
        self.upload_timeout = settings.discord_upload_timeout
        self._transport = transport

    def available(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, message: OutboundMessage, request_id: str = "-") -> Optional[str]:
        """POST one message. Returns the Discord message id when the API reports one."""
        if not self.webhook_url:
            raise TransportError("DISCORD_WEBHOOK_URL is not set")

        attachment = message.attachment
        LOG.info("[DISCORD] req=%s sending to %s (attachment=%s)", request_id,
                 _redact(self.webhook_url), f"{attachment.size}B" if attachment else "none")

        try:
            # always verify TLS here; only the Protect client relaxes it
            if attachment:
                files = {"files[0]": (attachment.filename, attachment.data, attachment.content_type)}
                async with httpx.AsyncClient(timeout=self.upload_timeout, transport=self._transport) as cx:
                    r = await cx.post(self.webhook_url, data={"payload_json": message.to_json()}, files=files)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as cx:
                    r = await cx.post(self.webhook_url, json=message.to_discord_payload())
        except httpx.TimeoutException as e:
            LOG.error("[DISCORD] req=%s timed out", request_id)
            raise TransportError("Discord webhook timed out") from e
        except httpx.HTTPError as e:
            LOG.error("[DISCORD] req=%s failed: %r", request_id, e)
            raise TransportError(f"Discord webhook failed: {e!r}") from e

        if r.status_code not in (200, 204):
            LOG.error("[DISCORD] req=%s HTTP %s %s", request_id, r.status_code, r.text[:200])
            raise TransportError(f"Discord webhook failed: HTTP {r.status_code}", status_code=r.status_code)

        message_id = None
        if r.status_code == 200 and r.content:
            try:
                body = r.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("id"):
                message_id = str(body["id"])
        LOG.info("[DISCORD] req=%s delivered (HTTP %s, id=%s)", request_id, r.status_code, message_id)
        return message_id
