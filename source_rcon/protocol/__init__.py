"""
Source RCON wire protocol: packet codec, stream framing, constants and the error
taxonomy shared by the client and the loopback server.
"""

from .constants import (
    DEFAULT_FRAGMENT_THRESHOLD,
    DEFAULT_PORT,
    ENCODING,
    MAX_INBOUND_FRAME_SIZE,
    MAX_OUTBOUND_FRAME_SIZE,
    REQUEST_ID_MODULO,
)
from .errors import (
    AuthenticationError,
    CapacityError,
    ErrorCode,
    ProtocolError,
    RconConnectionError,
    RconError,
    RequestTimeoutError,
    TruncatedFrameError,
)
from .framing import StreamFramer
from .packet import Packet, PacketType, ReservedId, check_capacity, decode_packet, encode_packet

__all__ = [
    "DEFAULT_FRAGMENT_THRESHOLD",
    "DEFAULT_PORT",
    "ENCODING",
    "MAX_INBOUND_FRAME_SIZE",
    "MAX_OUTBOUND_FRAME_SIZE",
    "REQUEST_ID_MODULO",
    "AuthenticationError",
    "CapacityError",
    "ErrorCode",
    "ProtocolError",
    "RconConnectionError",
    "RconError",
    "RequestTimeoutError",
    "TruncatedFrameError",
    "StreamFramer",
    "Packet",
    "PacketType",
    "ReservedId",
    "check_capacity",
    "decode_packet",
    "encode_packet",
]
