# dispatcher.py — normalize, fetch thumbnail, format, deliver
import logging
from dataclasses import dataclass
from typing import Optional

from config import Settings
from errors import TransportError
from events import NormalizedEvent, RawEventPayload, normalize
from formatter import OutboundMessage, format_message
from notify import DiscordNotifier
from session_store import Session
from unifi import ProtectClient, ThumbnailArtifact

LOG = logging.getLogger("bridge.dispatch")


@dataclass(frozen=True)
class DispatchResult:
    event: NormalizedEvent
    message: OutboundMessage
    discord_message_id: Optional[str] = None

    @property
    def has_attachment(self) -> bool:
        return self.message.attachment is not None


class Dispatcher:
    """One event in, one Discord message out.

    Failure order: an AuthError aborts before anything else happens,
    normalization cannot fail, a thumbnail failure only drops the
    attachment, and a delivery failure is raised to the caller.
    """

    def __init__(self, settings: Settings, protect: ProtectClient, notifier: DiscordNotifier):
        self.settings = settings
        self.protect = protect
        self.notifier = notifier

    async def _session(self) -> Optional[Session]:
        if not self.settings.has_protect_credentials:
            return None
        return await self.protect.ensure_authenticated()

    async def fetch_thumbnail(self, session: Optional[Session], event_id: Optional[str],
                              animated: bool, request_id: str = "-") -> Optional[ThumbnailArtifact]:
        """Best effort: any failure is logged and yields None."""
        if not event_id:
            LOG.info("[THUMB] req=%s no event id, skipping thumbnail", request_id)
            return None
        if session is None and not self.settings.protect_api_key:
            LOG.info("[THUMB] req=%s no Protect credentials configured, skipping thumbnail", request_id)
            return None
        try:
            return await self.protect.fetch_thumbnail(session, event_id, animated=animated)
        except TransportError as e:
            LOG.warning("[THUMB] req=%s thumbnail for %s unavailable: %s", request_id, event_id, e)
            return None

    async def deliver(self, event: NormalizedEvent, thumbnail: Optional[ThumbnailArtifact],
                      request_id: str = "-") -> DispatchResult:
        message = format_message(event, thumbnail)
        message_id = await self.notifier.send(message, request_id=request_id)
        return DispatchResult(event=event, message=message, discord_message_id=message_id)

    async def dispatch(self, payload: RawEventPayload, request_id: str = "-") -> DispatchResult:
        session = await self._session()

        event = normalize(payload)
        LOG.info("[DISPATCH] req=%s type=%s device=%r person=%r event_id=%s", request_id,
                 event.event_type, event.camera_or_device_label, event.person_name, event.event_id)

        thumbnail = await self.fetch_thumbnail(session, event.event_id,
                                               self.settings.protect_animated_thumbnail, request_id)
        result = await self.deliver(event, thumbnail, request_id)
        LOG.info("[DISPATCH] req=%s delivered", request_id)
        return result

