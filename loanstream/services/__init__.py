from loanstream.services.counters import Counters, CounterStore
from loanstream.services.live_broadcast import LiveBroadcaster
from loanstream.services.registry import Connection, ConnectionRegistry

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Counters",
    "CounterStore",
    "LiveBroadcaster",
]
