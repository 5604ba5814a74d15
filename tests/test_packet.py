from __future__ import annotations

import pytest

from source_rcon.protocol import (
    CapacityError,
    MAX_OUTBOUND_FRAME_SIZE,
    Packet,
    PacketType,
    ProtocolError,
    ReservedId,
    decode_packet,
    encode_packet,
)
from source_rcon.protocol.errors import ErrorCode


def test_encode_wire_layout():
    encoded = encode_packet(0xF, PacketType.AUTH, b"payload")
    #               id              | type            | payload  | terminator
    assert encoded[4:] == b"\x0f\x00\x00\x00\x03\x00\x00\x00payload\x00\x00"
    assert encoded[:4] == (10 + len(b"payload")).to_bytes(4, "little")


@pytest.mark.parametrize(
    "request_id, packet_type, payload",
    [
        (235, PacketType.AUTH, b"command"),
        (0, PacketType.RESPONSE_VALUE, b""),
        (2**31 - 1, PacketType.EXEC_COMMAND, "say héllo".encode("utf-8")),
        (ReservedId.AUTH_FAILED, PacketType.AUTH_RESPONSE, b""),
        (7, PacketType.RESPONSE_VALUE, b"with\x00embedded\x00nul"),
    ],
)
def test_decode_restores_encoded_fields(request_id, packet_type, payload):
    packet = decode_packet(encode_packet(request_id, packet_type, payload))
    assert packet == Packet(id=request_id, type=packet_type, payload=payload)


def test_decode_uses_declared_length():
    frame = encode_packet(3, PacketType.RESPONSE_VALUE, b"abc") + b"trailing"
    assert decode_packet(frame).payload == b"abc"


def test_capacity_limit():
    overhead = 14
    encode_packet(1, PacketType.EXEC_COMMAND, b"x" * (MAX_OUTBOUND_FRAME_SIZE - overhead))
    with pytest.raises(CapacityError) as excinfo:
        encode_packet(1, PacketType.EXEC_COMMAND, b"x" * (MAX_OUTBOUND_FRAME_SIZE - overhead + 1))
    assert excinfo.value.code == ErrorCode.PAYLOAD_TOO_LARGE


def test_capacity_limit_can_be_lifted():
    encoded = encode_packet(1, PacketType.RESPONSE_VALUE, b"x" * 4096, limit=None)
    assert len(encoded) == 4096 + 14


def test_decode_rejects_incomplete_frame():
    frame = encode_packet(1, PacketType.RESPONSE_VALUE, b"hello")
    with pytest.raises(ProtocolError):
        decode_packet(frame[:-3])
    with pytest.raises(ProtocolError):
        decode_packet(frame[:8])


def test_decode_rejects_short_declared_length():
    frame = (4).to_bytes(4, "little", signed=True) + b"\x00" * 10
    with pytest.raises(ProtocolError):
        decode_packet(frame)


def test_encode_rejects_out_of_range_id():
    with pytest.raises(ProtocolError):
        encode_packet(2**31, PacketType.EXEC_COMMAND, b"list")


def test_exec_command_shares_auth_response_code():
    assert PacketType.EXEC_COMMAND is PacketType.AUTH_RESPONSE
    assert int(PacketType.EXEC_COMMAND) == 2
    assert Packet.build(1, 99).packet_type is None
