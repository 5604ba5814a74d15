from .connection import RconClient
from .correlator import PendingRequest, ResponseCorrelator
from .queue import QueuedItem, RequestQueue
from .state import ConnectionEvent, ConnectionState

__all__ = [
    "RconClient",
    "PendingRequest",
    "ResponseCorrelator",
    "QueuedItem",
    "RequestQueue",
    "ConnectionEvent",
    "ConnectionState",
]
