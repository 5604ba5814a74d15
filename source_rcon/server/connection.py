from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from source_rcon.protocol.framing import StreamFramer


@dataclass(eq=False)
class PeerSession:
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    peername: str
    authenticated: bool = False
    framer: StreamFramer = field(default_factory=StreamFramer)

    def mark_authenticated(self) -> None:
        self.authenticated = True
