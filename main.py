# main.py — webhook receiver: UniFi Protect alarm → Discord
import time
import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, configure_logging
from dispatcher import Dispatcher
from errors import AuthError, PayloadValidationError, TransportError
from events import parse_payload
from notify import DiscordNotifier
from session_store import SessionStore
from unifi import ProtectClient

SERVICE = "unifi-discord-bridge"
VERSION = "1.0.0"
LOG = logging.getLogger("bridge.webhook")

SECRET_HEADERS = ("x-webhook-secret", "x-alert-secret", "x-shared-secret", "x-webhook-token")
SENSITIVE_KEYS = ("secret", "password", "token")


def build_dispatcher(settings: Settings) -> Dispatcher:
    protect = ProtectClient(settings, SessionStore(settings.session_file))
    return Dispatcher(settings, protect, DiscordNotifier(settings))


def sanitize_payload(body: Dict[str, Any]) -> Dict[str, Any]:
    clean = {k: v for k, v in body.items() if k not in SENSITIVE_KEYS}
    if clean.get("cameraName"):
        clean["cameraName"] = str(clean["cameraName"])[:100]
    if clean.get("description"):
        clean["description"] = str(clean["description"])[:2000]
    return clean


def _given_secret(req: Request, body: Any) -> Optional[str]:
    for h in SECRET_HEADERS:
        if req.headers.get(h):
            return req.headers.get(h)
    if req.query_params.get("secret"):
        return req.query_params.get("secret")
    if isinstance(body, dict) and body.get("secret"):
        return str(body["secret"])
    return None


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def create_app(settings: Optional[Settings] = None, dispatcher: Optional[Dispatcher] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.require_discord()
        LOG.info("[STARTUP] %s listening on %s (protect=%s, login=%s, api_key=%s)",
                 SERVICE, settings.webhook_path, settings.protect_host,
                 settings.has_protect_credentials, bool(settings.protect_api_key))
        yield
        LOG.info("[SHUTDOWN] %s stopped", SERVICE)

    app = FastAPI(title="UniFi Protect → Discord", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = dispatcher or build_dispatcher(settings)
    app.add_middleware(CORSMiddleware, allow_origins=settings.cors_origins,
                       allow_methods=["GET", "POST"], allow_headers=["*"])

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id
        started = time.perf_counter()
        LOG.info("[HTTP] req=%s %s %s from %s", request_id, request.method, request.url.path,
                 request.client.host if request.client else "?")
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        LOG.info("[HTTP] req=%s -> %s in %.0fms", request_id, response.status_code,
                 (time.perf_counter() - started) * 1000)
        return response

    def _health() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE,
            "version": VERSION,
        }

    @app.get("/")
    async def root():
        return {
            "service": "UniFi Protect to Discord Bridge",
            "version": VERSION,
            "status": "running",
            "endpoints": {"webhook": settings.webhook_path, "health": f"{settings.webhook_path}/health"},
        }

    @app.get("/health")
    async def health():
        return _health()

    @app.get(f"{settings.webhook_path}/health")
    async def webhook_health():
        return _health()

    @app.post(settings.webhook_path)
    async def unifi_webhook(req: Request, dispatcher: Dispatcher = Depends(get_dispatcher)):
        request_id = req.state.request_id

        try:
            body = await req.json()
        except ValueError:
            raw = (await req.body())[:300]
            LOG.error("[WEBHOOK] req=%s invalid JSON. First bytes: %r", request_id, raw)
            raise HTTPException(status_code=400, detail={"error": "Invalid request",
                                                         "details": ["Request body must be valid JSON"]})

        if settings.webhook_secret and _given_secret(req, body) != settings.webhook_secret:
            LOG.warning("[WEBHOOK] req=%s forbidden: shared secret mismatch/missing", request_id)
            raise HTTPException(status_code=401, detail="Unauthorized (bad secret)")

        try:
            payload = parse_payload(sanitize_payload(body) if isinstance(body, dict) else body)
        except PayloadValidationError as e:
            LOG.warning("[WEBHOOK] req=%s invalid payload: %s", request_id, e.errors)
            raise HTTPException(status_code=400, detail={"error": "Invalid request", "details": e.errors})

        LOG.info("[WEBHOOK] req=%s accepted %s payload", request_id, type(payload).__name__)

        try:
            result = await dispatcher.dispatch(payload, request_id=request_id)
        except AuthError as e:
            LOG.error("[WEBHOOK] req=%s Protect authentication failed: %s", request_id, e)
            raise HTTPException(status_code=502, detail={"error": "Upstream authentication failed",
                                                         "message": "Failed to process webhook"})
        except TransportError as e:
            LOG.error("[WEBHOOK] req=%s delivery failed: %s", request_id, e)
            raise HTTPException(status_code=502, detail={"error": "Delivery failed",
                                                         "message": "Failed to process webhook"})

        return {
            "success": True,
            "message": "Webhook processed successfully",
            "discordMessageId": result.discord_message_id,
            "requestId": request_id,
        }

    return app


# uvicorn main:create_app --factory
def run() -> None:
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.bind_host, port=settings.port)


if __name__ == "__main__":
    run()
