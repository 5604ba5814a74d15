from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Dict, Optional, TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .connection import PeerSession

Handler = Callable[[str, "PeerSession"], Union[str, Awaitable[str]]]


class CommandRouter:
    """Maps the first word of a command line to a handler returning the response text."""

    def __init__(self, fallback: Optional[Handler] = None) -> None:
        self._handlers: Dict[str, Handler] = {}
        self._fallback = fallback

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name.lower()] = handler

    async def dispatch(self, command: str, session: "PeerSession") -> str:
        name, _, args = command.strip().partition(" ")
        handler = self._handlers.get(name.lower())
        if handler is None:
            if self._fallback is None:
                return f"Unknown command: {name}"
            handler = self._fallback
            args = command
        result = handler(args, session)
        if inspect.isawaitable(result):
            result = await result
        return result


def default_router() -> CommandRouter:
    """Router with the handful of commands the development server answers."""
    router = CommandRouter()
    router.register("echo", lambda args, _session: args)
    router.register("repeat", _repeat)
    return router


def _repeat(args: str, _session: "PeerSession") -> str:
    count, _, text = args.partition(" ")
    try:
        return text * int(count)
    except ValueError:
        return "Usage: repeat <count> <text>"


__all__ = ["CommandRouter", "Handler", "default_router"]
