from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterator

from .constants import LENGTH_PREFIX, MAX_INBOUND_FRAME_SIZE, MIN_FRAME_LENGTH, PREFIX_SIZE
from .errors import ProtocolError, TruncatedFrameError

READ_CHUNK_SIZE = 4096


class StreamFramer:
    """
    Splits an arbitrarily chunked byte stream into complete length-prefixed frames.

    Partial data is retained between calls to ``feed`` until the rest of the frame
    arrives. One framer serves exactly one connection.
    """

    def __init__(self, max_frame_size: int = MAX_INBOUND_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """Buffer ``chunk`` and return an iterator over the frames now complete."""
        self._buffer += chunk
        return self._drain()

    def _drain(self) -> Iterator[bytes]:
        while len(self._buffer) >= PREFIX_SIZE:
            (length,) = LENGTH_PREFIX.unpack_from(self._buffer, 0)
            if length < MIN_FRAME_LENGTH or length > self.max_frame_size:
                raise ProtocolError(f"Implausible frame length {length}, stream is desynchronized")
            end = PREFIX_SIZE + length
            if len(self._buffer) < end:
                return
            frame = bytes(self._buffer[:end])
            del self._buffer[:end]
            yield frame

    def finish(self) -> None:
        """Signal end of stream; leftover bytes mean the last frame was cut off."""
        if self._buffer:
            leftover = len(self._buffer)
            self._buffer.clear()
            raise TruncatedFrameError(f"Stream ended with {leftover} bytes of an incomplete frame")

    async def frames(self, reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
        """Yield frames read from ``reader`` in arrival order until EOF."""
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                self.finish()
                return
            for frame in self.feed(chunk):
                yield frame


__all__ = ["StreamFramer", "READ_CHUNK_SIZE"]
