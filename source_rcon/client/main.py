from __future__ import annotations

import asyncio
import logging

from source_rcon.config import RCON_CONFIG, load_config
from source_rcon.protocol.errors import CapacityError, RconConnectionError, RconError

from .connection import RconClient
from .state import ConnectionEvent

logger = logging.getLogger(__name__)


class RconConsole:
    """Line-based console: every input line is sent as one command."""

    def __init__(self, client: RconClient) -> None:
        self.client = client
        client.register_handler(ConnectionEvent.DISCONNECTED, self._on_disconnected)

    async def run(self) -> None:
        logger.info("Console ready. Type 'quit' to exit.")
        loop = asyncio.get_event_loop()
        while self.client.ready:
            try:
                line = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                break
            command = line.strip()
            if not command:
                continue
            if command in ("quit", "exit"):
                break
            try:
                print(await self.client.send_command(command))
            except CapacityError as exc:
                print(f"Command too long: {exc.message}")
            except RconConnectionError as exc:
                print(f"Connection lost: {exc.message}")
                break
            except RconError as exc:
                print(f"Error: {exc.message}")

    def _on_disconnected(self) -> None:
        logger.info("Disconnected from %s:%s", self.client.host, self.client.port)


async def run_client() -> None:
    load_config()
    logging.basicConfig(level=RCON_CONFIG["log_level"])
    client = RconClient()
    console = RconConsole(client)

    await client.connect()
    try:
        await console.run()
    finally:
        await client.close()


if __name__ == "__main__":
    asyncio.run(run_client())
