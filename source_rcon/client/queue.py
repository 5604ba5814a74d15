from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Deque, Generic, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(eq=False)
class QueuedItem(Generic[T]):
    body: T
    future: asyncio.Future = field(repr=False)


Dispatch = Callable[[QueuedItem], None]


class RequestQueue:
    """
    FIFO that admits at most ``max_pending`` items at a time.

    Admitted items are handed to ``dispatch``; an item keeps its slot until its
    future is done, whichever way it completes. The queue starts paused.
    """

    def __init__(self, dispatch: Dispatch, max_pending: int = 1) -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.max_pending = max_pending
        self._dispatch = dispatch
        self._waiting: Deque[QueuedItem] = deque()
        self._in_flight: Set[QueuedItem] = set()
        self._paused = True

    def __len__(self) -> int:
        return len(self._waiting)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def paused(self) -> bool:
        return self._paused

    def submit(self, body: T, future: Optional[asyncio.Future] = None) -> asyncio.Future:
        if future is None:
            future = asyncio.get_event_loop().create_future()
        self._waiting.append(QueuedItem(body, future))
        self._drain()
        return future

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False
        self._drain()

    def reject_all(self, exc: BaseException) -> None:
        """Fail every waiting and in-flight item and empty the queue."""
        items = list(self._in_flight) + list(self._waiting)
        self._in_flight.clear()
        self._waiting.clear()
        for item in items:
            if not item.future.done():
                item.future.set_exception(exc)
        if items:
            logger.debug("Rejected %s queued requests: %s", len(items), exc)

    def _drain(self) -> None:
        while not self._paused and self._waiting and len(self._in_flight) < self.max_pending:
            item = self._waiting.popleft()
            if item.future.done():
                continue
            self._in_flight.add(item)
            item.future.add_done_callback(lambda _f, item=item: self._release(item))
            try:
                self._dispatch(item)
            except Exception as exc:
                logger.warning("Dispatch failed: %s", exc)
                if not item.future.done():
                    item.future.set_exception(exc)

    def _release(self, item: QueuedItem) -> None:
        if item in self._in_flight:
            self._in_flight.discard(item)
            self._drain()


__all__ = ["QueuedItem", "RequestQueue"]
