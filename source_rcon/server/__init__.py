from .connection import PeerSession
from .router import CommandRouter, default_router
from .server import RconServer

__all__ = ["PeerSession", "CommandRouter", "default_router", "RconServer"]
