from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Error categories surfaced by the RCON engine."""

    CONNECTION_FAILED = 1001
    CONNECTION_CLOSED = 1002
    NOT_READY = 1003
    ALREADY_CONNECTED = 1004
    AUTH_FAILED = 2001
    MALFORMED_FRAME = 3001
    TRUNCATED_FRAME = 3002
    UNEXPECTED_ID = 3003
    UNEXPECTED_TYPE = 3004
    TIMEOUT = 4001
    PAYLOAD_TOO_LARGE = 5001


class RconError(Exception):
    """Base exception carrying an error code and a message."""

    default_code = ErrorCode.CONNECTION_FAILED

    def __init__(self, message: str = "", code: ErrorCode | None = None) -> None:
        self.code = code if code is not None else self.default_code
        self.message = message
        super().__init__(f"{self.code.name} ({int(self.code)}): {message}")


class RconConnectionError(RconError):
    """Transport failure, unexpected close, or a request made while not ready."""

    default_code = ErrorCode.CONNECTION_CLOSED


class AuthenticationError(RconError):
    """The peer rejected the password."""

    default_code = ErrorCode.AUTH_FAILED


class ProtocolError(RconError):
    """Malformed or unexpected traffic; the stream can no longer be trusted."""

    default_code = ErrorCode.MALFORMED_FRAME


class TruncatedFrameError(ProtocolError):
    default_code = ErrorCode.TRUNCATED_FRAME


class RequestTimeoutError(RconError):
    default_code = ErrorCode.TIMEOUT


class CapacityError(RconError):
    """Outgoing packet would exceed the safe single-segment size."""

    default_code = ErrorCode.PAYLOAD_TOO_LARGE


__all__ = [
    "ErrorCode",
    "RconError",
    "RconConnectionError",
    "AuthenticationError",
    "ProtocolError",
    "TruncatedFrameError",
    "RequestTimeoutError",
    "CapacityError",
]
