"""Wire-level constants for the Source RCON protocol."""

import struct

ENCODING = "utf-8"
DEFAULT_PORT = 25575

HEADER = struct.Struct("<iii")  # length, request id, type
LENGTH_PREFIX = struct.Struct("<i")
PREFIX_SIZE = LENGTH_PREFIX.size
HEADER_SIZE = HEADER.size
TERMINATOR = b"\x00\x00"

# id + type + terminator, i.e. the declared length of an empty packet
MIN_FRAME_LENGTH = 10
# frames above this size risk being split by the transport on some peers
MAX_OUTBOUND_FRAME_SIZE = 1460
MAX_INBOUND_FRAME_SIZE = 256 * 1024

# peer-observed truncation size of a single response, in UTF-16 code units
DEFAULT_FRAGMENT_THRESHOLD = 4096
MAX_ABANDONED_REQUESTS = 1024

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
REQUEST_ID_MODULO = 2**31

__all__ = [
    "ENCODING",
    "DEFAULT_PORT",
    "HEADER",
    "LENGTH_PREFIX",
    "PREFIX_SIZE",
    "HEADER_SIZE",
    "TERMINATOR",
    "MIN_FRAME_LENGTH",
    "MAX_OUTBOUND_FRAME_SIZE",
    "MAX_INBOUND_FRAME_SIZE",
    "DEFAULT_FRAGMENT_THRESHOLD",
    "MAX_ABANDONED_REQUESTS",
    "INT32_MIN",
    "INT32_MAX",
    "REQUEST_ID_MODULO",
]
