"""
In-process live broadcaster for the dashboard push channel.

- broadcast(message) serialises once and sends to every registered connection.
- A connection whose send fails or times out is dropped from the registry
  and its socket closed so the client reconnects; other connections are
  unaffected and the caller never sees the error.
"""
import asyncio
import logging
from typing import Callable

from pydantic import BaseModel

from loanstream.services.counters import CounterStore
from loanstream.services.messages import (
    CountsUpdate,
    Heartbeat,
    LoanEventData,
    RecordEvent,
    encode,
    utcnow,
)
from loanstream.services.registry import ConnectionRegistry

logger = logging.getLogger("loanstream.broadcast")


class LiveBroadcaster:
    """Fan-out of counts, record events and heartbeats to all registry members."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        counters: CounterStore,
        clock: Callable = utcnow,
    ):
        self._registry = registry
        self._counters = counters
        self._clock = clock
        self._sent = 0
        self._dropped = 0

    async def broadcast(self, message: BaseModel) -> int:
        """Send message to all connected clients. Returns how many received it."""
        try:
            payload = encode(message)
        except Exception:
            logger.exception("could not serialise %s; broadcast skipped", type(message).__name__)
            return 0

        members = self._registry.snapshot()
        if not members:
            return 0

        results = await asyncio.gather(
            *(conn.send(payload) for conn in members), return_exceptions=True
        )
        dead = [conn for conn, ok in zip(members, results) if ok is not True]
        if dead:
            self._dropped += len(dead)
            self._registry.remove_all(dead)
            await asyncio.gather(*(conn.close() for conn in dead), return_exceptions=True)
        delivered = len(members) - len(dead)
        self._sent += delivered
        return delivered

    async def notify_counts_changed(self) -> int:
        update = CountsUpdate.from_counters(self._counters.snapshot(), self._clock())
        return await self.broadcast(update)

    async def notify_record_event(self, record: LoanEventData) -> int:
        return await self.broadcast(RecordEvent(data=record, timestamp=self._clock()))

    async def heartbeat(self) -> int:
        return await self.broadcast(Heartbeat(timestamp=self._clock()))

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def subscriber_count(self) -> int:
        return len(self._registry)
