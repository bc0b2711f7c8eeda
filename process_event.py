#!/usr/bin/env python3
"""
UniFi Protect → Discord, one-shot driver.

  protect-discord event <event_id>          post one event (still thumbnail) to Discord
  protect-discord recent [--hours 24]       post every recent event that has a thumbnail
  protect-discord thumbnail <event_id> [out] download a thumbnail only

Uses PROTECT_HOST / PROTECT_USERNAME / PROTECT_PASSWORD and DISCORD_WEBHOOK_URL
from the environment (or .env). The session cookie is cached in SESSION_FILE.
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from config import Settings, configure_logging
from dispatcher import Dispatcher
from errors import BridgeError, ConfigError, TransportError
from events import normalize_event_metadata
from notify import DiscordNotifier
from session_store import Session, SessionStore
from unifi import ProtectClient, ThumbnailArtifact

LOG = logging.getLogger("bridge.cli")


class EventProcessor:
    def __init__(self, settings: Settings, dispatcher: Dispatcher, workdir: Path = Path(".")):
        self.settings = settings
        self.dispatcher = dispatcher
        self.protect = dispatcher.protect
        self.workdir = workdir

    async def _post_with_file(self, session: Session, meta: Dict[str, Any]) -> bool:
        event = normalize_event_metadata(meta)
        event_id = event.event_id or ""
        path = self.workdir / f"thumbnail-{event_id}.jpg"
        thumb = await self.dispatcher.fetch_thumbnail(session, event_id, animated=False)
        if thumb is None:
            LOG.error("[CLI] no thumbnail for %s, skipping", event_id)
            return False

        path.write_bytes(thumb.data)
        LOG.info("[CLI] thumbnail saved as %s (%d bytes)", path, thumb.size)
        try:
            attachment = ThumbnailArtifact(data=path.read_bytes(), content_type=thumb.content_type,
                                           filename=path.name)
            await self.dispatcher.deliver(event, attachment, request_id=f"cli_{event_id}")
            return True
        except TransportError as e:
            LOG.error("[CLI] Discord upload failed for %s: %s", event_id, e)
            return False
        finally:
            try:
                path.unlink()
                LOG.info("[CLI] cleaned up %s", path)
            except OSError as e:
                LOG.warning("[CLI] could not delete %s: %s", path, e)

    async def process_event(self, event_id: str) -> bool:
        session = await self.protect.ensure_authenticated()
        try:
            meta = await self.protect.fetch_event_metadata(session, event_id)
        except TransportError as e:
            LOG.error("[CLI] could not get event info for %s: %s", event_id, e)
            return False
        return await self._post_with_file(session, meta)

    async def process_recent(self, hours: float, limit: int, delay: float) -> int:
        session = await self.protect.ensure_authenticated()
        events: List[Dict[str, Any]] = await self.protect.list_recent_events(session, hours=hours, limit=limit)
        if not events:
            LOG.info("[CLI] no events found to process")
            return 0

        ok = failed = 0
        for i, meta in enumerate(events):
            if await self._post_with_file(session, meta):
                ok += 1
            else:
                failed += 1
            if delay and i < len(events) - 1:
                await asyncio.sleep(delay)
        LOG.info("[CLI] complete: %d successful, %d failed", ok, failed)
        return failed

    async def download(self, event_id: str, output: Optional[Path], animated: bool) -> Path:
        session = await self.protect.ensure_authenticated()
        thumb = await self.protect.fetch_thumbnail(session, event_id, animated=animated)
        out = output or Path(thumb.filename)
        out.write_bytes(thumb.data)
        LOG.info("[CLI] saved %s (%d bytes)", out, thumb.size)
        return out


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="protect-discord", description="UniFi Protect events to Discord.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_event = sub.add_parser("event", help="Post one event and its thumbnail")
    p_event.add_argument("event_id")

    p_recent = sub.add_parser("recent", help="Post recent events that have thumbnails")
    p_recent.add_argument("--hours", type=float, default=24.0)
    p_recent.add_argument("--limit", type=int, default=100)
    p_recent.add_argument("--delay", type=float, default=1.0, help="Seconds between posts")

    p_thumb = sub.add_parser("thumbnail", help="Download a thumbnail without posting")
    p_thumb.add_argument("event_id")
    p_thumb.add_argument("output", nargs="?", type=Path)
    p_thumb.add_argument("--still", action="store_true", help="Still JPEG instead of animated GIF")
    return parser


async def run(args: argparse.Namespace, settings: Settings,
              dispatcher: Optional[Dispatcher] = None) -> int:
    settings.require_protect_login()
    if args.command != "thumbnail":
        settings.require_discord()

    if dispatcher is None:
        protect = ProtectClient(settings, SessionStore(settings.session_file))
        dispatcher = Dispatcher(settings, protect, DiscordNotifier(settings))
    proc = EventProcessor(settings, dispatcher)

    if args.command == "event":
        return 0 if await proc.process_event(args.event_id) else 1
    if args.command == "recent":
        return 1 if await proc.process_recent(args.hours, args.limit, args.delay) else 0
    await proc.download(args.event_id, args.output, animated=not args.still)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    try:
        return asyncio.run(run(args, settings))
    except ConfigError as e:
        LOG.error("[CLI] configuration error: %s (check your .env)", e)
        return 1
    except BridgeError as e:
        LOG.error("[CLI] failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
