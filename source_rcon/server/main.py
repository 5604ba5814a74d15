from __future__ import annotations

import asyncio
import logging

from source_rcon.config import RCON_CONFIG, load_config
from source_rcon.server import RconServer, default_router


async def run_server() -> None:
    load_config()
    logging.basicConfig(level=RCON_CONFIG["log_level"])

    server = RconServer(
        RCON_CONFIG["server_host"],
        RCON_CONFIG["server_port"],
        RCON_CONFIG["password"],
        router=default_router(),
        fragment_size=RCON_CONFIG["fragment_threshold"],
        encoding=RCON_CONFIG["encoding"],
    )
    await server.start()
    try:
        await asyncio.Event().wait()  # keep running
    finally:
        await server.stop()


if __name__ == "__main__":
    asyncio.run(run_server())
