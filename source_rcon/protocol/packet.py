from __future__ import annotations

from enum import IntEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import (
    HEADER,
    HEADER_SIZE,
    INT32_MAX,
    INT32_MIN,
    MAX_OUTBOUND_FRAME_SIZE,
    MIN_FRAME_LENGTH,
    PREFIX_SIZE,
    TERMINATOR,
)
from .errors import CapacityError, ErrorCode, ProtocolError


class PacketType(IntEnum):
    """
    Packet type codes. EXEC_COMMAND and AUTH_RESPONSE share the value 2 on the wire,
    only the direction tells them apart, so EXEC_COMMAND is an alias member.
    """

    RESPONSE_VALUE = 0
    AUTH_RESPONSE = 2
    EXEC_COMMAND = 2
    AUTH = 3
    # never valid for a peer; used for the fragmentation marker
    INVALID = -1


class ReservedId(IntEnum):
    """Request ids with a protocol meaning instead of a sequence position."""

    AUTH_FAILED = -1


class Packet(BaseModel):
    """A single decoded RCON packet."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=INT32_MIN, le=INT32_MAX, description="Request id echoed by the peer")
    type: int = Field(ge=INT32_MIN, le=INT32_MAX, description="Raw packet type code")
    payload: bytes = Field(default=b"", description="Body without the trailing terminator")

    @classmethod
    def build(cls, request_id: int, packet_type: int, payload: bytes = b"") -> "Packet":
        try:
            return cls(id=int(request_id), type=int(packet_type), payload=payload)
        except ValidationError as exc:
            raise ProtocolError(f"Invalid packet fields: {exc}") from exc

    @property
    def packet_type(self) -> PacketType | None:
        try:
            return PacketType(self.type)
        except ValueError:
            return None

    def encode(self, limit: Optional[int] = MAX_OUTBOUND_FRAME_SIZE) -> bytes:
        return encode_packet(self.id, self.type, self.payload, limit=limit)


def encoded_size(payload_size: int) -> int:
    return PREFIX_SIZE + MIN_FRAME_LENGTH + payload_size


def check_capacity(payload: bytes, limit: Optional[int] = MAX_OUTBOUND_FRAME_SIZE) -> None:
    """Reject payloads whose frame would not fit a single transport segment."""
    size = encoded_size(len(payload))
    if limit is not None and size > limit:
        raise CapacityError(f"Encoded packet is {size} bytes, limit is {limit}")


def encode_packet(
    request_id: int,
    packet_type: int,
    payload: bytes = b"",
    limit: Optional[int] = MAX_OUTBOUND_FRAME_SIZE,
) -> bytes:
    """Encode a packet as length | id | type | payload | 0x00 0x00."""
    packet = Packet.build(request_id, packet_type, payload)
    check_capacity(packet.payload, limit)
    length = MIN_FRAME_LENGTH + len(packet.payload)
    return HEADER.pack(length, packet.id, packet.type) + packet.payload + TERMINATOR


def decode_packet(data: bytes) -> Packet:
    """
    Decode one complete frame.

    The payload is located through the declared length, not by scanning for the
    terminator, since some peers send bodies containing NUL bytes.
    """
    if len(data) < HEADER_SIZE:
        raise ProtocolError(f"Frame too short for header: {len(data)} bytes")
    length, request_id, packet_type = HEADER.unpack_from(data, 0)
    if length < MIN_FRAME_LENGTH:
        raise ProtocolError(f"Declared length {length} is below minimum {MIN_FRAME_LENGTH}")
    if len(data) < PREFIX_SIZE + length:
        raise ProtocolError(
            f"Incomplete frame: declared {length} bytes, got {len(data) - PREFIX_SIZE}",
            code=ErrorCode.TRUNCATED_FRAME,
        )
    payload = bytes(data[HEADER_SIZE : length + 2])
    return Packet.build(request_id, packet_type, payload)


__all__ = [
    "PacketType",
    "ReservedId",
    "Packet",
    "encoded_size",
    "check_capacity",
    "encode_packet",
    "decode_packet",
]
