from __future__ import annotations

import asyncio
import itertools

import pytest

from source_rcon.client.correlator import ResponseCorrelator
from source_rcon.protocol import Packet, PacketType, ProtocolError, RconConnectionError, RequestTimeoutError


class FakeWire:
    def __init__(self, start: int = 100) -> None:
        self.sent = []
        self._ids = itertools.count(start)

    def send(self, packet: Packet) -> None:
        self.sent.append(packet)

    def next_id(self) -> int:
        return next(self._ids)


def _correlator(wire: FakeWire, **kwargs) -> ResponseCorrelator:
    kwargs.setdefault("timeout", 5.0)
    return ResponseCorrelator(wire.send, wire.next_id, **kwargs)


def _response(request_id: int, payload: bytes) -> Packet:
    return Packet.build(request_id, PacketType.RESPONSE_VALUE, payload)


def test_single_frame_resolves_request():
    async def scenario():
        wire = FakeWire()
        correlator = _correlator(wire)
        future = asyncio.get_event_loop().create_future()
        correlator.register(1, future)
        correlator.handle(_response(1, b"There are 0 players online"))
        assert await future == b"There are 0 players online"
        assert wire.sent == []
        assert len(correlator) == 0

    asyncio.run(scenario())


def test_fragmented_response_is_reassembled():
    async def scenario():
        wire = FakeWire()
        correlator = _correlator(wire, fragment_threshold=4096)
        future = asyncio.get_event_loop().create_future()
        correlator.register(1, future)

        correlator.handle(_response(1, b"a" * 4096))
        assert not future.done()
        assert len(wire.sent) == 1
        sentinel = wire.sent[0]
        assert sentinel.type == PacketType.INVALID
        assert sentinel.id == 100

        correlator.handle(_response(1, b"a" * 904))
        assert not future.done()
        correlator.handle(_response(sentinel.id, b"Unknown request ffffffff"))
        result = await future
        assert len(result) == 5000
        assert 100 not in correlator

    asyncio.run(scenario())


def test_interleaved_requests_resolve_by_id():
    async def scenario():
        wire = FakeWire()
        correlator = _correlator(wire, fragment_threshold=8)
        loop = asyncio.get_event_loop()
        first, second = loop.create_future(), loop.create_future()
        correlator.register(1, first)
        correlator.register(2, second)

        correlator.handle(_response(1, b"12345678"))
        correlator.handle(_response(1, b"9"))
        correlator.handle(_response(2, b"short"))
        assert await second == b"short"
        correlator.handle(_response(wire.sent[0].id, b""))
        assert await first == b"123456789"

    asyncio.run(scenario())


def test_zero_threshold_always_sends_sentinel():
    async def scenario():
        wire = FakeWire()
        correlator = _correlator(wire, fragment_threshold=0)
        future = asyncio.get_event_loop().create_future()
        correlator.register(1, future)
        correlator.handle(_response(1, b""))
        assert len(wire.sent) == 1
        correlator.handle(_response(wire.sent[0].id, b""))
        assert await future == b""

    asyncio.run(scenario())


def test_threshold_counts_utf16_code_units():
    correlator = _correlator(FakeWire(), fragment_threshold=4)
    assert correlator.may_be_truncated("\U0001F600\U0001F600".encode("utf-8"))
    assert not correlator.may_be_truncated("abc".encode("utf-8"))
    assert correlator.may_be_truncated("ééée".encode("utf-8"))


def test_unknown_id_is_protocol_error():
    correlator = _correlator(FakeWire())
    with pytest.raises(ProtocolError):
        correlator.handle(_response(42, b"?"))


def test_unexpected_type_is_protocol_error():
    async def scenario():
        correlator = _correlator(FakeWire())
        correlator.register(1, asyncio.get_event_loop().create_future())
        with pytest.raises(ProtocolError):
            correlator.handle(Packet.build(1, PacketType.AUTH_RESPONSE))
        correlator.fail_all(RconConnectionError("closed"))

    asyncio.run(scenario())


def test_timeout_rejects_only_that_request():
    async def scenario():
        expired = []
        wire = FakeWire()
        correlator = ResponseCorrelator(wire.send, wire.next_id, timeout=0.05, on_timeout=expired.append)
        loop = asyncio.get_event_loop()
        slow = loop.create_future()
        correlator.register(1, slow)
        with pytest.raises(RequestTimeoutError):
            await slow
        assert expired == [1]

        correlator.timeout = 5.0
        fresh = loop.create_future()
        correlator.register(2, fresh)
        # late answer for the expired request is dropped
        correlator.handle(_response(1, b"late"))
        correlator.handle(_response(2, b"ok"))
        assert await fresh == b"ok"

    asyncio.run(scenario())


def test_fail_all_rejects_pending_requests():
    async def scenario():
        correlator = _correlator(FakeWire())
        loop = asyncio.get_event_loop()
        futures = [loop.create_future() for _ in range(3)]
        for request_id, future in enumerate(futures):
            correlator.register(request_id, future)
        correlator.fail_all(RconConnectionError("closed"))
        results = await asyncio.gather(*futures, return_exceptions=True)
        assert all(isinstance(result, RconConnectionError) for result in results)
        assert len(correlator) == 0

    asyncio.run(scenario())


def test_duplicate_registration_is_rejected():
    async def scenario():
        correlator = _correlator(FakeWire())
        loop = asyncio.get_event_loop()
        correlator.register(1, loop.create_future())
        with pytest.raises(ProtocolError):
            correlator.register(1, loop.create_future())
        correlator.fail_all(RconConnectionError("closed"))

    asyncio.run(scenario())


def _short_timeout_correlator(wire: FakeWire, **kwargs) -> ResponseCorrelator:
    kwargs.setdefault("timeout", 0.05)
    return ResponseCorrelator(wire.send, wire.next_id, **kwargs)


async def _expire(correlator: ResponseCorrelator, request_id: int) -> None:
    future = asyncio.get_event_loop().create_future()
    correlator.register(request_id, future)
    with pytest.raises(RequestTimeoutError):
        await future


def test_late_response_forgets_abandoned_request():
    async def scenario():
        correlator = _short_timeout_correlator(FakeWire())
        await _expire(correlator, 1)
        assert correlator.abandoned == 1
        assert 1 in correlator

        correlator.handle(_response(1, b"late"))
        assert correlator.abandoned == 0
        assert 1 not in correlator
        with pytest.raises(ProtocolError):
            correlator.handle(_response(1, b"again"))

    asyncio.run(scenario())


def test_late_fragmented_response_is_closed_by_sentinel():
    async def scenario():
        wire = FakeWire()
        correlator = _short_timeout_correlator(wire, fragment_threshold=4)
        await _expire(correlator, 1)

        correlator.handle(_response(1, b"abcd"))
        assert [(p.id, p.type) for p in wire.sent] == [(100, PacketType.INVALID)]
        correlator.handle(_response(1, b"ef"))
        assert correlator.abandoned == 1

        correlator.handle(_response(100, b"Unknown request ffffffff"))
        assert correlator.abandoned == 0
        assert 1 not in correlator
        assert 100 not in correlator

    asyncio.run(scenario())


def test_sentinel_sent_before_timeout_still_closes_late_response():
    async def scenario():
        wire = FakeWire()
        correlator = _short_timeout_correlator(wire, fragment_threshold=4)
        future = asyncio.get_event_loop().create_future()
        correlator.register(1, future)
        correlator.handle(_response(1, b"abcd"))
        with pytest.raises(RequestTimeoutError):
            await future

        correlator.handle(_response(1, b"ef"))
        correlator.handle(_response(wire.sent[0].id, b""))
        assert correlator.abandoned == 0
        assert len(wire.sent) == 1

    asyncio.run(scenario())


def test_abandoned_requests_are_capped():
    async def scenario():
        correlator = _short_timeout_correlator(FakeWire(), max_abandoned=2)
        for request_id in (1, 2, 3):
            await _expire(correlator, request_id)
        assert correlator.abandoned == 2
        assert 1 not in correlator
        assert 2 in correlator and 3 in correlator
        with pytest.raises(ProtocolError):
            correlator.handle(_response(1, b"too late"))

    asyncio.run(scenario())
