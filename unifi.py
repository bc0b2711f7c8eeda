# unifi.py — UniFi Protect session API: login, session probe, events and thumbnails

import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from config import Settings
from errors import AuthError, NotFoundError, TransportError
from session_store import Session, SessionStore, host_key

LOG = logging.getLogger("bridge.unifi")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/138.0.0.0 Safari/537.36"
)

# event types the console keeps thumbnails for
THUMBNAIL_EVENT_TYPES = (
    "motion",
    "smartAudioDetect",
    "smartDetectZone",
    "smartDetectLine",
    "smartDetectObject",
)


@dataclass(frozen=True)
class ThumbnailArtifact:
    data: bytes
    content_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def animated(self) -> bool:
        return self.content_type == "image/gif"


def event_path(event_id: str, suffix: str = "") -> str:
    """Event id is quoted as one path segment."""
    return f"/proxy/protect/api/events/{quote(str(event_id), safe='')}{suffix}"


def token_from_response(r: httpx.Response) -> Optional[str]:
    """Pull the TOKEN cookie out of a login response."""
    try:
        token = r.cookies.get("TOKEN")
    except httpx.CookieConflict:
        token = None
    if token:
        return token
    # cookie jar may refuse the cookie (odd domain/path); read the raw headers
    for raw in r.headers.get_list("set-cookie"):
        if "TOKEN=" in raw:
            value = raw.split("TOKEN=", 1)[1].split(";", 1)[0].strip()
            if value:
                return value
    return None


class ProtectClient:
    """Talks to one Protect console.

    TLS verification follows ``settings.protect_verify_tls`` and is applied
    only to clients built here; the console ships a self-signed certificate.
    """

    def __init__(self, settings: Settings, store: SessionStore,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.store = store
        self.host = settings.protect_host.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=self.settings.protect_verify_tls,
            timeout=self.settings.protect_timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    @property
    def can_fetch_thumbnails(self) -> bool:
        return self.settings.has_protect_credentials or bool(self.settings.protect_api_key)

    # ---------------- Authentication ----------------
    async def authenticate(self) -> Session:
        s = self.settings
        if not s.has_protect_credentials:
            raise AuthError("PROTECT_USERNAME / PROTECT_PASSWORD not configured")

        LOG.info("[AUTH] logging in to %s as %s", self.host, s.protect_username)
        body = {"username": s.protect_username, "password": s.protect_password, "remember": True}
        try:
            async with self._client() as cx:
                r = await cx.post(f"{self.host}/api/auth/login", json=body,
                                  headers={"User-Agent": USER_AGENT})
        except httpx.HTTPError as e:
            raise AuthError(f"Login request failed: {e!r}") from e

        if not r.is_success:
            raise AuthError(f"Login failed: HTTP {r.status_code} {r.text[:200]!r}")

        token = token_from_response(r)
        if not token:
            raise AuthError("No session token found in login response")

        session = Session(
            token=token,
            host=host_key(self.host),
            expires_at=time.time() + s.session_ttl_hours * 3600,
        )
        try:
            self.store.save(session)
        except OSError as e:
            LOG.warning("[AUTH] login ok but session not cached in %s: %s", self.store.path, e)
        LOG.info("[AUTH] login ok")
        return session

    async def _probe(self, session: Session) -> bool:
        try:
            async with self._client() as cx:
                r = await cx.get(f"{self.host}/api/auth/me", headers=session.cookie_header())
        except httpx.HTTPError as e:
            LOG.info("[AUTH] session probe failed: %r", e)
            return False
        if r.status_code != 200:
            LOG.info("[AUTH] session probe rejected: HTTP %s", r.status_code)
            return False
        return True

    async def ensure_authenticated(self) -> Session:
        """Reuse the cached session if a probe accepts it, else log in once."""
        cached = self.store.load(host=self.host)
        if cached is None:
            LOG.info("[AUTH] no cached session")
        elif cached.is_expired():
            LOG.info("[AUTH] cached session past its expiry, skipping probe")
        elif await self._probe(cached):
            LOG.info("[AUTH] cached session still valid")
            return cached
        else:
            LOG.info("[AUTH] cached session expired, re-authenticating")
        return await self.authenticate()

    # ---------------- Events ----------------
    def _auth_headers(self, session: Optional[Session]) -> Dict[str, str]:
        if session is not None:
            return session.cookie_header()
        if self.settings.protect_api_key:
            return {"X-API-KEY": self.settings.protect_api_key}
        raise AuthError("No Protect session or PROTECT_API_KEY available")

    async def _get(self, path: str, session: Optional[Session], accept: str,
                   params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        headers = {"Accept": accept, "User-Agent": USER_AGENT, **self._auth_headers(session)}
        try:
            async with self._client() as cx:
                return await cx.get(f"{self.host}{path}", headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out fetching {path}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"Request to {path} failed: {e!r}") from e

    async def fetch_event_metadata(self, session: Optional[Session], event_id: str) -> Dict[str, Any]:
        path = event_path(event_id)
        r = await self._get(path, session, "application/json")
        if r.status_code == 404:
            raise NotFoundError(f"Event {event_id} not found", status_code=404)
        if r.status_code != 200:
            raise TransportError(f"Event {event_id}: HTTP {r.status_code} {r.text[:200]!r}",
                                 status_code=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise TransportError(f"Event {event_id}: response is not JSON", status_code=200) from e
        if not isinstance(data, dict):
            raise TransportError(f"Event {event_id}: unexpected response shape", status_code=200)
        LOG.info("[EVENT] metadata retrieved for %s", event_id)
        return data

    async def fetch_thumbnail(self, session: Optional[Session], event_id: str,
                              animated: bool = True) -> ThumbnailArtifact:
        if animated:
            path = event_path(event_id, "/animated-thumbnail")
            params = {"keyFrameOnly": "true", "speedup": "10"}
        else:
            path = event_path(event_id, "/thumbnail")
            params = None

        LOG.info("[THUMB] fetching %s thumbnail for %s", "animated" if animated else "still", event_id)
        r = await self._get(path, session, "image/*", params=params)
        if r.status_code == 404:
            raise NotFoundError(f"No thumbnail for event {event_id}", status_code=404)
        if r.status_code != 200 or not r.content:
            raise TransportError(f"Thumbnail {event_id}: HTTP {r.status_code}, {len(r.content)} bytes",
                                 status_code=r.status_code)

        default_type = "image/gif" if animated else "image/jpeg"
        ctype = r.headers.get("content-type", "").split(";")[0].strip().lower()
        if not ctype.startswith("image/"):
            ctype = default_type
        filename = "animated-thumbnail.gif" if animated else f"thumbnail-{event_id}.jpg"
        LOG.info("[THUMB] got %d bytes (%s)", len(r.content), ctype)
        return ThumbnailArtifact(data=r.content, content_type=ctype, filename=filename)

    async def list_recent_events(self, session: Session, hours: float = 24,
                                 limit: int = 100) -> List[Dict[str, Any]]:
        """Recent events that carry a camera and a thumbnail-capable type."""
        params = {"limit": limit, "start": int(time.time() - hours * 3600)}
        r = await self._get("/proxy/protect/api/events", session, "application/json", params=params)
        if r.status_code != 200:
            raise TransportError(f"Event list: HTTP {r.status_code} {r.text[:200]!r}",
                                 status_code=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise TransportError("Event list: response is not JSON") from e

        events = data.get("data") if isinstance(data, dict) else data
        if not isinstance(events, list):
            return []
        keep = [
            ev for ev in events
            if isinstance(ev, dict) and ev.get("camera") and ev.get("type") in THUMBNAIL_EVENT_TYPES
        ]
        LOG.info("[EVENT] %d of %d recent events have thumbnails", len(keep), len(events))
        return keep
