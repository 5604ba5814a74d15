from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSING = "closing"


class ConnectionEvent(StrEnum):
    """Lifecycle notifications emitted by the client."""

    CONNECT = "connect"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"
    ERROR = "error"


__all__ = ["ConnectionState", "ConnectionEvent"]
