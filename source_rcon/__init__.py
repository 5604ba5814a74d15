"""
Asyncio client for the Source RCON protocol, with a loopback server for local testing.
"""

from source_rcon.client import ConnectionEvent, ConnectionState, RconClient
from source_rcon.protocol import (
    AuthenticationError,
    CapacityError,
    ProtocolError,
    RconConnectionError,
    RconError,
    RequestTimeoutError,
)

__version__ = "0.1.0"

__all__ = [
    "ConnectionEvent",
    "ConnectionState",
    "RconClient",
    "AuthenticationError",
    "CapacityError",
    "ProtocolError",
    "RconConnectionError",
    "RconError",
    "RequestTimeoutError",
]
