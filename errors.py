# errors.py — failure taxonomy shared by the client, delivery and receiver
from typing import List, Optional


class BridgeError(Exception):
    pass


class ConfigError(BridgeError):
    pass


class AuthError(BridgeError):
    """Login or session handshake with Protect failed. Fatal to a dispatch."""


class TransportError(BridgeError):
    """Network error, timeout or unexpected status from Protect or Discord."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(TransportError):
    """Protect answered 404 for an event id."""


class PayloadValidationError(BridgeError):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors) or "invalid payload")
        self.errors = errors
