# session_store.py — one cached Protect session, stored as a cookie-jar line
import os
import time
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

LOG = logging.getLogger("bridge.session")

_COOKIE_PATH = "/proxy/protect/"


@dataclass(frozen=True)
class Session:
    token: str
    host: str
    expires_at: float  # epoch seconds; advisory only

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def cookie_header(self) -> dict:
        return {"Cookie": f"TOKEN={self.token}"}


def host_key(host: str) -> str:
    # cookie lines carry the bare host, the client carries a URL
    h = (host or "").strip().rstrip("/")
    for scheme in ("https://", "http://"):
        if h.startswith(scheme):
            h = h[len(scheme):]
    return h


class SessionStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self, host: Optional[str] = None) -> Optional[Session]:
        """Return the stored session, or None if missing, malformed or for another host."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            LOG.warning("[SESSION] could not read %s: %s", self.path, e)
            return None

        for line in raw.splitlines():
            parts = line.strip().split("\t")
            if len(parts) != 7 or parts[5] != "TOKEN" or not parts[6]:
                continue
            try:
                expires_at = float(parts[4])
            except ValueError:
                continue
            if host and host_key(host) != parts[0]:
                LOG.info("[SESSION] cached session is for %s, ignoring", parts[0])
                return None
            return Session(token=parts[6], host=parts[0], expires_at=expires_at)

        LOG.warning("[SESSION] %s has no usable TOKEN line", self.path)
        return None

    def save(self, session: Session) -> None:
        line = "\t".join([
            host_key(session.host), "TRUE", _COOKIE_PATH, "TRUE",
            str(int(session.expires_at)), "TOKEN", session.token,
        ])
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".session-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(line + "\n")
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        LOG.info("[SESSION] saved session for %s (expires %d)", session.host, int(session.expires_at))
