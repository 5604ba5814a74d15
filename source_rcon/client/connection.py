from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Dict, List, Optional, Set, Union

from source_rcon.config import merge_config
from source_rcon.protocol.constants import REQUEST_ID_MODULO
from source_rcon.protocol.errors import (
    AuthenticationError,
    ErrorCode,
    ProtocolError,
    RconConnectionError,
    RconError,
    RequestTimeoutError,
)
from source_rcon.protocol.framing import StreamFramer
from source_rcon.protocol.packet import Packet, PacketType, ReservedId, check_capacity, decode_packet

from .correlator import ResponseCorrelator
from .queue import QueuedItem, RequestQueue
from .state import ConnectionEvent, ConnectionState

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Any]


class RconClient:
    """
    Source RCON client over a single TCP connection.

    Drives the authentication handshake, serializes commands through a bounded
    queue and correlates responses, reassembling the ones the peer truncated.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config = merge_config(config)
        self.host: str = self.config["host"]
        self.port: int = int(self.config["port"])
        self.password: str = self.config["password"]
        self.timeout: float = float(self.config["timeout"])
        self.connect_timeout: float = float(self.config["connect_timeout"])
        self.close_on_timeout: bool = bool(self.config["close_on_timeout"])
        self.encoding: str = self.config["encoding"]

        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self._state = ConnectionState.DISCONNECTED
        self._next_request_id = 0
        self._framer: Optional[StreamFramer] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._auth_id: Optional[int] = None
        self._auth_future: Optional[asyncio.Future] = None
        self._handlers: Dict[ConnectionEvent, List[EventHandler]] = defaultdict(list)
        self._handler_tasks: Set[asyncio.Task] = set()

        self._queue = RequestQueue(self._dispatch, max_pending=int(self.config["max_pending"]))
        self._correlator = ResponseCorrelator(
            self._write_packet,
            self._allocate_id,
            timeout=self.timeout,
            fragment_threshold=int(self.config["fragment_threshold"]),
            encoding=self.encoding,
            on_timeout=self._handle_timeout,
        )

    @classmethod
    async def open(
        cls,
        host: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> "RconClient":
        client = cls(config)
        await client.connect(host, port, password)
        return client

    async def __aenter__(self) -> "RconClient":
        if self._state is ConnectionState.DISCONNECTED:
            await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    async def connect(self, host: Optional[str] = None, port: Optional[int] = None, password: Optional[str] = None) -> None:
        if self._state is not ConnectionState.DISCONNECTED:
            raise RconConnectionError(f"Already {self._state.value}", code=ErrorCode.ALREADY_CONNECTED)
        host = host or self.host
        port = self.port if port is None else port
        password = self.password if password is None else password
        try:
            secret = password.encode(self.encoding)
        except UnicodeEncodeError as exc:
            raise AuthenticationError(f"Password cannot be encoded as {self.encoding}") from exc

        self._set_state(ConnectionState.CONNECTING)
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=self.connect_timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            self._set_state(ConnectionState.DISCONNECTED)
            error = RconConnectionError(f"Cannot connect to {host}:{port}: {exc!r}", code=ErrorCode.CONNECTION_FAILED)
            logger.warning("Connect to %s:%s failed: %r", host, port, exc)
            self._emit(ConnectionEvent.ERROR, error)
            raise error from exc
        except BaseException:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        if self._state is not ConnectionState.CONNECTING:
            writer.close()
            raise RconConnectionError("Client closed while connecting")

        self.reader, self.writer = reader, writer
        logger.info("Connected to %s:%s", host, port)
        self._emit(ConnectionEvent.CONNECT)
        self._next_request_id = 0
        self._framer = StreamFramer()
        self._receive_task = asyncio.create_task(self._receive_loop(), name="rcon-recv-loop")

        try:
            await self._authenticate(secret)
        except RconError as exc:
            await self._shutdown(exc)
            raise
        except BaseException as exc:
            await self._shutdown(RconConnectionError(f"Connect aborted: {exc!r}"))
            raise

        self._set_state(ConnectionState.READY)
        self._queue.resume()
        logger.info("Authenticated with %s:%s", host, port)
        self._emit(ConnectionEvent.AUTHENTICATED)

    async def close(self) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        task = self._receive_task
        await self._shutdown(None)
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("RCON client closed")

    async def send_command(self, command: str) -> str:
        """Execute ``command`` on the peer and return its complete response text."""
        payload = await self.send_raw(command.encode(self.encoding))
        return payload.decode(self.encoding, errors="replace")

    async def send_raw(self, body: bytes) -> bytes:
        if self._state is not ConnectionState.READY:
            raise RconConnectionError(f"Client is {self._state.value}, not ready", code=ErrorCode.NOT_READY)
        check_capacity(body)
        future = self._queue.submit(body)
        # the request keeps its slot until the peer answers, even if the caller goes away
        return await asyncio.shield(future)

    def register_handler(self, event: Union[str, ConnectionEvent], handler: EventHandler) -> None:
        self._handlers[ConnectionEvent(event)].append(handler)

    def remove_handler(self, event: Union[str, ConnectionEvent], handler: EventHandler) -> None:
        handlers = self._handlers.get(ConnectionEvent(event), [])
        if handler in handlers:
            handlers.remove(handler)

    async def _authenticate(self, secret: bytes) -> None:
        self._set_state(ConnectionState.AUTHENTICATING)
        self._auth_future = asyncio.get_event_loop().create_future()
        self._auth_id = self._allocate_id()
        try:
            self._write_packet(Packet.build(self._auth_id, PacketType.AUTH, secret))
            try:
                await asyncio.wait_for(self._auth_future, timeout=self.timeout)
            except asyncio.TimeoutError as exc:
                raise RequestTimeoutError(f"No auth response within {self.timeout}s") from exc
        finally:
            self._auth_future = None
            self._auth_id = None

    def _handle_auth_response(self, packet: Packet) -> None:
        future = self._auth_future
        if future is None or future.done():
            raise ProtocolError(f"Unexpected packet {packet.id} during authentication", code=ErrorCode.UNEXPECTED_ID)
        if packet.type == PacketType.RESPONSE_VALUE and packet.id == self._auth_id and not packet.payload:
            # Valve servers send an empty RESPONSE_VALUE ahead of the auth response
            logger.debug("Skipping empty response preceding auth response")
            return
        if packet.type != PacketType.AUTH_RESPONSE:
            raise ProtocolError(
                f"Unexpected packet type {packet.type} during authentication",
                code=ErrorCode.UNEXPECTED_TYPE,
            )
        if packet.id == ReservedId.AUTH_FAILED:
            future.set_exception(AuthenticationError("Authentication failed"))
            return
        if packet.id != self._auth_id:
            raise ProtocolError(
                f"Invalid auth response id (expected {self._auth_id}, got {packet.id})",
                code=ErrorCode.UNEXPECTED_ID,
            )
        future.set_result(packet)

    def _dispatch(self, item: QueuedItem) -> None:
        request_id = self._allocate_id()
        self._write_packet(Packet.build(request_id, PacketType.EXEC_COMMAND, item.body))
        self._correlator.register(request_id, item.future)

    def _allocate_id(self) -> int:
        while True:
            request_id = self._next_request_id
            self._next_request_id = (request_id + 1) % REQUEST_ID_MODULO
            if request_id != self._auth_id and request_id not in self._correlator:
                return request_id

    def _write_packet(self, packet: Packet) -> None:
        if self.writer is None or self.writer.is_closing():
            raise RconConnectionError("Transport is not open", code=ErrorCode.NOT_READY)
        self.writer.write(packet.encode())
        logger.debug("Sent packet id=%s type=%s (%s bytes)", packet.id, packet.type, len(packet.payload))

    async def _receive_loop(self) -> None:
        assert self.reader is not None and self._framer is not None
        reason: Optional[RconError]
        try:
            async for frame in self._framer.frames(self.reader):
                self._handle_packet(decode_packet(frame))
            reason = RconConnectionError("Connection closed by peer")
        except asyncio.CancelledError:
            return
        except RconError as exc:
            reason = exc
        except (ConnectionError, OSError) as exc:
            reason = RconConnectionError(f"Transport error: {exc!r}", code=ErrorCode.CONNECTION_FAILED)
        logger.error("Receive loop terminated: %s", reason)
        await self._shutdown(reason)

    def _handle_packet(self, packet: Packet) -> None:
        logger.debug("Received packet id=%s type=%s (%s bytes)", packet.id, packet.type, len(packet.payload))
        if self._state is ConnectionState.AUTHENTICATING:
            self._handle_auth_response(packet)
        elif self._state is ConnectionState.READY:
            self._correlator.handle(packet)
        else:
            logger.debug("Ignoring packet %s received while %s", packet.id, self._state.value)

    def _handle_timeout(self, request_id: int) -> None:
        if self.close_on_timeout:
            self._teardown(RequestTimeoutError(f"Request {request_id} timed out, closing connection"))

    async def _shutdown(self, reason: Optional[RconError]) -> None:
        writer = self.writer
        self._teardown(reason)
        if writer is not None:
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as exc:
                logger.debug("Error during writer cleanup: %s", exc)

    def _teardown(self, reason: Optional[RconError]) -> None:
        """Fail all outstanding work, close the transport and return to DISCONNECTED."""
        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSING):
            return
        self._set_state(ConnectionState.CLOSING)
        self._queue.pause()
        detail = f": {reason.message}" if reason is not None else ""
        closed = RconConnectionError(f"Connection closed{detail}")
        closed.__cause__ = reason
        self._queue.reject_all(closed)
        self._correlator.fail_all(closed)
        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_exception(reason or closed)

        if self.writer is not None:
            self.writer.close()
        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._receive_task = None
        self.reader = None
        self.writer = None
        self._framer = None
        self._set_state(ConnectionState.DISCONNECTED)

        if reason is not None:
            self._emit(ConnectionEvent.ERROR, reason)
        self._emit(ConnectionEvent.DISCONNECTED)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("State %s -> %s", self._state.value, state.value)
            self._state = state

    def _emit(self, event: ConnectionEvent, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
            except Exception as exc:
                logger.exception("Handler error for %s: %s", event.value, exc)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async handler failed: %s", task.exception())


__all__ = ["RconClient", "EventHandler"]
