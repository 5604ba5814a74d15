from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from source_rcon.protocol.constants import DEFAULT_FRAGMENT_THRESHOLD, ENCODING, MAX_ABANDONED_REQUESTS
from source_rcon.protocol.errors import ErrorCode, ProtocolError, RequestTimeoutError
from source_rcon.protocol.packet import Packet, PacketType

logger = logging.getLogger(__name__)

SendPacket = Callable[[Packet], None]
NextId = Callable[[], int]
TimeoutHook = Callable[[int], None]


@dataclass(eq=False)
class PendingRequest:
    id: int
    future: asyncio.Future = field(repr=False)
    expected_type: int = PacketType.RESPONSE_VALUE
    deadline: float = 0.0
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    fragments: List[bytes] = field(default_factory=list, repr=False)
    sentinel_id: Optional[int] = None

    @property
    def payload(self) -> bytes:
        return b"".join(self.fragments)


class ResponseCorrelator:
    """
    Matches inbound response frames to pending requests and reassembles responses
    the peer truncated.

    A first response frame that may have been truncated triggers a sentinel packet
    with a fresh id. The peer answers strictly in order, so every later frame with
    the original id is another fragment and the sentinel's answer closes the response.

    Requests that time out are remembered, oldest first and at most
    ``max_abandoned`` of them, so their late frames can be told apart from
    stray ones. An id is forgotten once its late response has fully arrived.
    """

    def __init__(
        self,
        send_packet: SendPacket,
        next_id: NextId,
        timeout: float,
        fragment_threshold: int = DEFAULT_FRAGMENT_THRESHOLD,
        encoding: str = ENCODING,
        on_timeout: Optional[TimeoutHook] = None,
        max_abandoned: int = MAX_ABANDONED_REQUESTS,
    ) -> None:
        self._send_packet = send_packet
        self._next_id = next_id
        self.timeout = timeout
        self.fragment_threshold = fragment_threshold
        self.encoding = encoding
        self._on_timeout = on_timeout
        self.max_abandoned = max_abandoned
        self._pending: Dict[int, PendingRequest] = {}
        self._sentinels: Dict[int, int] = {}
        # abandoned request id -> id of the sentinel closing its late response
        self._abandoned: Dict[int, Optional[int]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._pending or request_id in self._sentinels or request_id in self._abandoned

    @property
    def abandoned(self) -> int:
        return len(self._abandoned)

    def register(self, request_id: int, future: asyncio.Future) -> PendingRequest:
        if request_id in self:
            raise ProtocolError(f"Request id {request_id} is already outstanding", code=ErrorCode.UNEXPECTED_ID)
        loop = asyncio.get_event_loop()
        pending = PendingRequest(id=request_id, future=future, deadline=loop.time() + self.timeout)
        pending.timer = loop.call_at(pending.deadline, self._expire, request_id)
        self._pending[request_id] = pending
        return pending

    def handle(self, packet: Packet) -> None:
        owner_id = self._sentinels.pop(packet.id, None)
        if owner_id is not None:
            pending = self._pending.pop(owner_id, None)
            if pending is not None:
                logger.debug("Sentinel %s closed response %s (%s fragments)", packet.id, owner_id, len(pending.fragments))
                self._settle(pending)
            else:
                self._abandoned.pop(owner_id, None)
                logger.debug("Sentinel %s closed late response %s", packet.id, owner_id)
            return

        pending = self._pending.get(packet.id)
        if pending is None:
            if packet.id in self._abandoned:
                self._discard_late(packet)
                return
            raise ProtocolError(f"Response id {packet.id} matches no pending request", code=ErrorCode.UNEXPECTED_ID)
        if packet.type != pending.expected_type:
            raise ProtocolError(
                f"Unexpected packet type {packet.type} for request {packet.id}",
                code=ErrorCode.UNEXPECTED_TYPE,
            )

        pending.fragments.append(packet.payload)
        if pending.sentinel_id is not None:
            return
        if self.may_be_truncated(packet.payload):
            sentinel_id = self._next_id()
            pending.sentinel_id = sentinel_id
            self._sentinels[sentinel_id] = pending.id
            logger.debug("Response %s may be truncated, sending sentinel %s", pending.id, sentinel_id)
            self._send_packet(Packet.build(sentinel_id, PacketType.INVALID))
            return
        del self._pending[pending.id]
        self._settle(pending)

    def may_be_truncated(self, payload: bytes) -> bool:
        if self.fragment_threshold <= 0:
            return True
        text = payload.decode(self.encoding, errors="replace")
        # peers count the truncation size in UTF-16 code units
        return len(text.encode("utf-16-le")) // 2 >= self.fragment_threshold

    def fail_all(self, exc: BaseException) -> None:
        pending_requests = list(self._pending.values())
        self._pending.clear()
        self._sentinels.clear()
        self._abandoned.clear()
        for pending in pending_requests:
            self._cancel_timer(pending)
            if not pending.future.done():
                pending.future.set_exception(exc)

    def _settle(self, pending: PendingRequest) -> None:
        self._cancel_timer(pending)
        if not pending.future.done():
            pending.future.set_result(pending.payload)

    def _expire(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        self._abandoned[request_id] = pending.sentinel_id
        while len(self._abandoned) > self.max_abandoned:
            oldest = next(iter(self._abandoned))
            sentinel_id = self._abandoned.pop(oldest)
            if sentinel_id is not None:
                self._sentinels.pop(sentinel_id, None)
        logger.warning("Request %s timed out after %ss", request_id, self.timeout)
        if not pending.future.done():
            pending.future.set_exception(RequestTimeoutError(f"No response for request {request_id} within {self.timeout}s"))
        if self._on_timeout is not None:
            self._on_timeout(request_id)

    def _discard_late(self, packet: Packet) -> None:
        logger.debug("Discarding late frame for abandoned request %s", packet.id)
        if self._abandoned[packet.id] is not None:
            return
        if self.may_be_truncated(packet.payload):
            sentinel_id = self._next_id()
            self._abandoned[packet.id] = sentinel_id
            self._sentinels[sentinel_id] = packet.id
            self._send_packet(Packet.build(sentinel_id, PacketType.INVALID))
        else:
            del self._abandoned[packet.id]

    @staticmethod
    def _cancel_timer(pending: PendingRequest) -> None:
        if pending.timer is not None:
            pending.timer.cancel()
            pending.timer = None


__all__ = ["PendingRequest", "ResponseCorrelator"]
