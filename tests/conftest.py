import json
from typing import Callable, Dict, List, Tuple

import httpx
import pytest

from config import Settings
from dispatcher import Dispatcher
from notify import DiscordNotifier
from session_store import SessionStore
from unifi import ProtectClient

PROTECT = "https://protect.test"
DISCORD = "https://discord.test/api/webhooks/1/abc"

MOTION_ALARM = {
    "alarm": {
        "name": "Front Door Motion",
        "conditions": [{"condition": {"source": "motion", "type": "is"}}],
        "triggers": [{"device": "74ACB99F4E24", "key": "motion"}],
    },
    "timestamp": 1722526793954,
}

FACE_ALARM = {
    "alarm": {
        "name": "Front Door Face",
        "conditions": [{"condition": {"source": "face_known", "type": "is"}}],
        "triggers": [
            {"device": "74ACB99F4E24", "key": "face_known", "eventId": "abc123",
             "value": "fallback", "group": {"name": "Alice"}},
        ],
    },
    "timestamp": 1722526793954,
}

FLAT_EVENT = {
    "eventType": "Person",
    "cameraName": "Driveway",
    "timestamp": "2024-08-01T15:39:53.954Z",
    "description": "Someone at the gate",
    "location": "North",
}


class FakeNetwork:
    """Routes requests to handlers keyed by (method, path) and records every call."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def on(self, method: str, path: str, handler):
        if not callable(handler):
            template = handler

            def handler(request):
                return httpx.Response(template.status_code, headers=template.headers,
                                      content=template.content)
        self.routes[(method, path)] = handler

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.calls if r.method == method and r.url.path == path)

    def last(self, method: str, path: str) -> httpx.Request:
        return [r for r in self.calls if r.method == method and r.url.path == path][-1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "no route"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def login_ok(token: str = "fresh-token") -> httpx.Response:
    return httpx.Response(
        200,
        json={"username": "admin"},
        headers=[("set-cookie", f"TOKEN={token}; path=/; secure; httponly; samesite=none")],
    )


def discord_body(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        protect_host=PROTECT,
        protect_username="admin",
        protect_password="hunter2",
        session_file=tmp_path / "cookies.txt",
        discord_webhook_url=DISCORD,
    )


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def store(settings) -> SessionStore:
    return SessionStore(settings.session_file)


@pytest.fixture
def protect(settings, store, network) -> ProtectClient:
    return ProtectClient(settings, store, transport=network.transport)


@pytest.fixture
def notifier(settings, network) -> DiscordNotifier:
    return DiscordNotifier(settings, transport=network.transport)


@pytest.fixture
def dispatcher(settings, protect, notifier) -> Dispatcher:
    return Dispatcher(settings, protect, notifier)
