import json
import time

import httpx
import pytest

from conftest import login_ok
from errors import AuthError, NotFoundError, TransportError
from session_store import Session, SessionStore
from unifi import ProtectClient, event_path, token_from_response

LOGIN = "/api/auth/login"
ME = "/api/auth/me"
EVENT = "/proxy/protect/api/events/ev1"
LOGIN_REQUEST = httpx.Request("POST", "https://protect.test/api/auth/login")


def _cached(store, token="cached-token", ttl=3600):
    session = Session(token=token, host="protect.test", expires_at=time.time() + ttl)
    store.save(session)
    return session


def test_token_from_raw_set_cookie_header():
    r = httpx.Response(200, request=LOGIN_REQUEST,
                       headers=[("set-cookie", "OTHER=1; path=/"),
                                ("set-cookie", "TOKEN=abc.def; path=/; HttpOnly")])
    assert token_from_response(r) == "abc.def"


def test_token_missing():
    r = httpx.Response(200, request=LOGIN_REQUEST, headers=[("set-cookie", "OTHER=1; path=/")])
    assert token_from_response(r) is None


@pytest.mark.asyncio
async def test_authenticate_saves_session(protect, network, store):
    network.on("POST", LOGIN, login_ok("fresh-token"))

    session = await protect.authenticate()

    assert session.token == "fresh-token"
    assert store.load().token == "fresh-token"
    body = json.loads(network.last("POST", LOGIN).content)
    assert body == {"username": "admin", "password": "hunter2", "remember": True}


@pytest.mark.asyncio
async def test_authenticate_bad_credentials(protect, network, store):
    network.on("POST", LOGIN, httpx.Response(401, json={"error": "bad"}))
    with pytest.raises(AuthError):
        await protect.authenticate()
    assert store.load() is None


@pytest.mark.asyncio
async def test_authenticate_without_token_cookie(protect, network):
    network.on("POST", LOGIN, httpx.Response(200, json={}))
    with pytest.raises(AuthError, match="No session token"):
        await protect.authenticate()


@pytest.mark.asyncio
async def test_authenticate_network_error(protect, network):
    def boom(request):
        raise httpx.ConnectError("unreachable", request=request)

    network.on("POST", LOGIN, boom)
    with pytest.raises(AuthError) as exc:
        await protect.authenticate()
    assert isinstance(exc.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_valid_cached_session_makes_no_login(protect, network, store):
    _cached(store)
    network.on("GET", ME, httpx.Response(200, json={"id": "me"}))
    network.on("POST", LOGIN, login_ok())

    session = await protect.ensure_authenticated()

    assert session.token == "cached-token"
    assert network.count("POST", LOGIN) == 0
    assert network.last("GET", ME).headers["cookie"] == "TOKEN=cached-token"


@pytest.mark.asyncio
async def test_rejected_cached_session_logs_in_once(protect, network, store):
    _cached(store)
    network.on("GET", ME, httpx.Response(401))
    network.on("POST", LOGIN, login_ok("fresh-token"))

    session = await protect.ensure_authenticated()

    assert session.token == "fresh-token"
    assert network.count("POST", LOGIN) == 1
    assert store.load().token == "fresh-token"


@pytest.mark.asyncio
async def test_absent_session_logs_in_once(protect, network):
    network.on("POST", LOGIN, login_ok())
    await protect.ensure_authenticated()
    assert network.count("POST", LOGIN) == 1
    assert network.count("GET", ME) == 0


@pytest.mark.asyncio
async def test_expired_session_skips_probe(protect, network, store):
    _cached(store, ttl=-10)
    network.on("POST", LOGIN, login_ok())
    await protect.ensure_authenticated()
    assert network.count("GET", ME) == 0
    assert network.count("POST", LOGIN) == 1


@pytest.mark.asyncio
async def test_failed_relogin_is_not_retried(protect, network, store):
    _cached(store)
    network.on("GET", ME, httpx.Response(401))
    network.on("POST", LOGIN, httpx.Response(500))
    with pytest.raises(AuthError):
        await protect.ensure_authenticated()
    assert network.count("POST", LOGIN) == 1


@pytest.mark.asyncio
async def test_fetch_event_metadata(protect, network, store):
    session = _cached(store)
    network.on("GET", EVENT, httpx.Response(200, json={"id": "ev1", "type": "motion"}))
    meta = await protect.fetch_event_metadata(session, "ev1")
    assert meta["type"] == "motion"
    assert network.last("GET", EVENT).headers["cookie"] == "TOKEN=cached-token"


@pytest.mark.asyncio
async def test_fetch_event_metadata_errors(protect, network, store):
    session = _cached(store)
    network.on("GET", EVENT, httpx.Response(404))
    with pytest.raises(NotFoundError):
        await protect.fetch_event_metadata(session, "ev1")

    network.on("GET", EVENT, httpx.Response(500, text="oops"))
    with pytest.raises(TransportError) as exc:
        await protect.fetch_event_metadata(session, "ev1")
    assert not isinstance(exc.value, NotFoundError)

    network.on("GET", EVENT, httpx.Response(200, text="<html>login</html>"))
    with pytest.raises(TransportError):
        await protect.fetch_event_metadata(session, "ev1")


@pytest.mark.asyncio
async def test_fetch_animated_thumbnail(protect, network, store):
    session = _cached(store)
    network.on("GET", f"{EVENT}/animated-thumbnail",
               httpx.Response(200, content=b"GIF89a...", headers={"content-type": "image/gif"}))

    thumb = await protect.fetch_thumbnail(session, "ev1", animated=True)

    assert thumb.data == b"GIF89a..."
    assert thumb.size == 9
    assert thumb.filename == "animated-thumbnail.gif"
    req = network.last("GET", f"{EVENT}/animated-thumbnail")
    assert req.url.params["keyFrameOnly"] == "true"
    assert req.url.params["speedup"] == "10"


@pytest.mark.asyncio
async def test_fetch_still_thumbnail_defaults_content_type(protect, network, store):
    session = _cached(store)
    network.on("GET", f"{EVENT}/thumbnail", httpx.Response(200, content=b"\xff\xd8jpeg"))
    thumb = await protect.fetch_thumbnail(session, "ev1", animated=False)
    assert thumb.content_type == "image/jpeg"
    assert thumb.filename == "thumbnail-ev1.jpg"


@pytest.mark.asyncio
async def test_fetch_thumbnail_failures(protect, network, store):
    session = _cached(store)
    with pytest.raises(NotFoundError):
        await protect.fetch_thumbnail(session, "ev1", animated=False)

    network.on("GET", f"{EVENT}/thumbnail", httpx.Response(200, content=b""))
    with pytest.raises(TransportError):
        await protect.fetch_thumbnail(session, "ev1", animated=False)

    def slow(request):
        raise httpx.ReadTimeout("slow", request=request)

    network.on("GET", f"{EVENT}/thumbnail", slow)
    with pytest.raises(TransportError, match="Timed out"):
        await protect.fetch_thumbnail(session, "ev1", animated=False)


@pytest.mark.asyncio
async def test_thumbnail_with_api_key(settings, store, network):
    keyed = settings.model_copy(update={"protect_username": "", "protect_password": "", "protect_api_key": "k3y"})
    client = ProtectClient(keyed, store, transport=network.transport)
    network.on("GET", f"{EVENT}/animated-thumbnail", httpx.Response(200, content=b"GIF"))

    await client.fetch_thumbnail(None, "ev1")

    headers = network.last("GET", f"{EVENT}/animated-thumbnail").headers
    assert headers["x-api-key"] == "k3y"
    assert "cookie" not in headers


@pytest.mark.asyncio
async def test_list_recent_events_filters(protect, network, store):
    session = _cached(store)
    events = [
        {"id": "1", "type": "motion", "camera": "cam1"},
        {"id": "2", "type": "ring", "camera": "cam1"},
        {"id": "3", "type": "smartDetectZone", "camera": None},
        {"id": "4", "type": "smartDetectLine", "camera": {"id": "c"}},
    ]
    network.on("GET", "/proxy/protect/api/events", httpx.Response(200, json={"data": events}))

    found = await protect.list_recent_events(session, hours=1, limit=10)

    assert [e["id"] for e in found] == ["1", "4"]
    params = network.last("GET", "/proxy/protect/api/events").url.params
    assert params["limit"] == "10"
    assert abs(int(params["start"]) - (time.time() - 3600)) < 60


def test_event_path_quotes_id_as_one_segment():
    assert event_path("ev1") == EVENT
    assert event_path("x/../../api/users", "/thumbnail") == \
        "/proxy/protect/api/events/x%2F..%2F..%2Fapi%2Fusers/thumbnail"
    assert event_path("abc\x00def") == "/proxy/protect/api/events/abc%00def"


@pytest.mark.asyncio
async def test_login_survives_unwritable_session_file(settings, network, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    bad = settings.model_copy(update={"session_file": blocker / "cookies.txt"})
    client = ProtectClient(bad, SessionStore(bad.session_file), transport=network.transport)
    network.on("POST", LOGIN, login_ok("tok"))

    session = await client.ensure_authenticated()

    assert session.token == "tok"
    assert network.count("POST", LOGIN) == 1
