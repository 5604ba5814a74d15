from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Set

from source_rcon.protocol.constants import DEFAULT_FRAGMENT_THRESHOLD, ENCODING
from source_rcon.protocol.errors import ProtocolError
from source_rcon.protocol.packet import Packet, PacketType, ReservedId, decode_packet

from .connection import PeerSession
from .router import CommandRouter, default_router

logger = logging.getLogger(__name__)


class RconServer:
    """
    Loopback RCON peer.

    Answers packets strictly in arrival order and reproduces the peer behaviour
    clients have to cope with: responses cut into ``fragment_size`` character
    frames, "Unknown request" answers for invalid packet types, the ``-1`` auth
    failure id and, with ``auth_preamble``, the empty RESPONSE_VALUE Valve servers
    send before the auth response.
    """

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        router: Optional[CommandRouter] = None,
        fragment_size: int = DEFAULT_FRAGMENT_THRESHOLD,
        auth_preamble: bool = False,
        encoding: str = ENCODING,
    ) -> None:
        self.host = host
        self.port = port
        self.password = password
        self.router = router or default_router()
        self.fragment_size = fragment_size
        self.auth_preamble = auth_preamble
        self.encoding = encoding
        self.received: List[Packet] = []
        self._sessions: Set[PeerSession] = set()
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def sessions(self) -> List[PeerSession]:
        return list(self._sessions)

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info("RCON server listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            for session in list(self._sessions):
                session.writer.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("RCON server stopped")

    def drop_connections(self) -> None:
        """Abort every client connection without a clean shutdown."""
        for session in list(self._sessions):
            session.writer.transport.abort()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session = PeerSession(reader=reader, writer=writer, peername=str(writer.get_extra_info("peername")))
        self._sessions.add(session)
        logger.info("Client %s connected", session.peername)
        try:
            async for frame in session.framer.frames(reader):
                packet = decode_packet(frame)
                self.received.append(packet)
                responses = await self._respond(packet, session)
                if responses is None:
                    logger.warning("Closing %s: command before authentication", session.peername)
                    break
                for response in responses:
                    writer.write(response.encode(limit=None))
                await writer.drain()
        except ProtocolError as exc:
            logger.warning("Protocol error for %s: %s", session.peername, exc)
        except (ConnectionResetError, ConnectionAbortedError, BrokenPipeError, OSError) as exc:
            logger.info("Client %s connection reset: %s", session.peername, exc)
        finally:
            self._sessions.discard(session)
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError) as exc:
                logger.debug("Error during writer cleanup: %s", exc)
            logger.info("Client %s disconnected", session.peername)

    async def _respond(self, packet: Packet, session: PeerSession) -> Optional[List[Packet]]:
        if packet.type == PacketType.AUTH:
            return self._authenticate(packet, session)
        if packet.type == PacketType.EXEC_COMMAND:
            if not session.authenticated:
                return None
            command = packet.payload.decode(self.encoding, errors="replace")
            output = await self.router.dispatch(command, session)
            return [Packet.build(packet.id, PacketType.RESPONSE_VALUE, chunk) for chunk in self._fragments(output)]
        text = f"Unknown request {packet.type & 0xFFFFFFFF:x}"
        return [Packet.build(packet.id, PacketType.RESPONSE_VALUE, text.encode(self.encoding))]

    def _authenticate(self, packet: Packet, session: PeerSession) -> List[Packet]:
        responses = []
        if self.auth_preamble:
            responses.append(Packet.build(packet.id, PacketType.RESPONSE_VALUE))
        if packet.payload.decode(self.encoding, errors="replace") == self.password:
            session.mark_authenticated()
            responses.append(Packet.build(packet.id, PacketType.AUTH_RESPONSE))
        else:
            logger.warning("Rejected password from %s", session.peername)
            responses.append(Packet.build(ReservedId.AUTH_FAILED, PacketType.AUTH_RESPONSE))
        return responses

    def _fragments(self, output: str) -> List[bytes]:
        if not output or self.fragment_size <= 0:
            return [output.encode(self.encoding)]
        step = self.fragment_size
        return [output[i : i + step].encode(self.encoding) for i in range(0, len(output), step)]


__all__ = ["RconServer"]
