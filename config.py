# config.py — settings loaded once from the environment (.env supported)
import os
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from errors import ConfigError

ROOT = Path(__file__).resolve().parent

_TRUE = ("1", "true", "yes", "y", "on")


def _flag(name: str, default: str) -> bool:
    return (os.environ.get(name, default) or "").strip().lower() in _TRUE


def _host_url(raw: str) -> str:
    host = (raw or "").strip().rstrip("/")
    if host and not host.startswith(("http://", "https://")):
        host = f"https://{host}"
    return host


class Settings(BaseModel):
    protect_host: str = "https://192.168.1.80"
    protect_username: str = ""
    protect_password: str = ""
    protect_api_key: str = ""
    protect_verify_tls: bool = False
    protect_timeout: float = 30.0
    protect_animated_thumbnail: bool = True

    session_file: Path = ROOT / "cookies.txt"
    session_ttl_hours: float = 24.0

    discord_webhook_url: str = ""
    discord_timeout: float = 10.0
    discord_upload_timeout: float = 15.0

    webhook_secret: str = ""
    webhook_path: str = "/webhook/unifi"
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    bind_host: str = "0.0.0.0"
    port: int = 3000

    @property
    def has_protect_credentials(self) -> bool:
        return bool(self.protect_username and self.protect_password)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        load_dotenv(dotenv_path=env_file or ROOT / ".env")
        origins = os.environ.get("CORS_ORIGINS", "*")
        return cls(
            protect_host=_host_url(os.environ.get("PROTECT_HOST") or "192.168.1.80"),
            protect_username=os.environ.get("PROTECT_USERNAME") or "",
            protect_password=os.environ.get("PROTECT_PASSWORD") or "",
            protect_api_key=os.environ.get("PROTECT_API_KEY") or "",
            protect_verify_tls=_flag("PROTECT_VERIFY_TLS", "false"),
            protect_timeout=float(os.environ.get("PROTECT_TIMEOUT", "30")),
            protect_animated_thumbnail=_flag("PROTECT_ANIMATED_THUMBNAIL", "true"),
            session_file=Path(os.environ.get("SESSION_FILE") or ROOT / "cookies.txt"),
            session_ttl_hours=float(os.environ.get("SESSION_TTL_HOURS", "24")),
            discord_webhook_url=os.environ.get("DISCORD_WEBHOOK_URL") or "",
            discord_timeout=float(os.environ.get("DISCORD_TIMEOUT", "10")),
            discord_upload_timeout=float(os.environ.get("DISCORD_UPLOAD_TIMEOUT", "15")),
            webhook_secret=os.environ.get("WEBHOOK_SECRET") or "",
            webhook_path=os.environ.get("WEBHOOK_PATH") or "/webhook/unifi",
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=(os.environ.get("LOG_LEVEL") or "INFO").upper(),
            bind_host=os.environ.get("HOST") or "0.0.0.0",
            port=int(os.environ.get("PORT", "3000")),
        )

    def require_discord(self) -> None:
        if not self.discord_webhook_url:
            raise ConfigError("DISCORD_WEBHOOK_URL is not set")

    def require_protect_login(self) -> None:
        if not self.has_protect_credentials:
            raise ConfigError("Missing PROTECT_USERNAME or PROTECT_PASSWORD")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
