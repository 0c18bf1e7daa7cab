"""
Registry of live push-channel connections.

- Membership is an immutable frozenset swapped under a lock; readers iterate a
  point-in-time snapshot, so removals during a broadcast pass are safe.
- Each Connection serialises its own sends (FIFO lock) and bounds every send
  with a timeout; a slow or dead peer is reported as a failed delivery.
"""
from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import threading
from typing import Callable, Iterator, Protocol

from loanstream.services.counters import CounterStore
from loanstream.services.messages import CountsUpdate, encode, utcnow

logger = logging.getLogger("loanstream.registry")

_ids = itertools.count(1)


class Transport(Protocol):
    """Anything that can push text frames; Starlette's WebSocket satisfies this."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ConnectionState(str, enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection:
    """One live push channel. The registry holds it; it never owns the socket."""

    def __init__(self, transport: Transport, send_timeout: float = 5.0, label: str = ""):
        self.id = next(_ids)
        self.label = label or f"conn-{self.id}"
        self.transport = transport
        self.state = ConnectionState.OPEN
        self._send_timeout = send_timeout
        self._send_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    async def send(self, payload: str) -> bool:
        """Deliver one serialised message. Returns False (and marks closing) on failure."""
        async with self._send_lock:
            if not self.is_open:
                return False
            try:
                await asyncio.wait_for(
                    self.transport.send_text(payload), timeout=self._send_timeout
                )
                return True
            except asyncio.TimeoutError:
                logger.warning("%s: send timed out after %.1fs", self.label, self._send_timeout)
            except Exception as exc:
                logger.warning("%s: send failed: %s", self.label, exc)
            self.state = ConnectionState.CLOSING
            return False

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    async def close(self, code: int = 1001) -> None:
        """Close the socket so the peer sees the drop and reconnects."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING
        try:
            await asyncio.wait_for(self.transport.close(code=code), timeout=self._send_timeout)
        except Exception as exc:
            logger.debug("%s: close error: %s", self.label, exc)
        finally:
            self.state = ConnectionState.CLOSED

    def __repr__(self) -> str:
        return f"<Connection {self.label} {self.state.value}>"


class ConnectionRegistry:
    """Set of live connections; new members get the current counts immediately."""

    def __init__(self, counters: CounterStore, clock: Callable = utcnow):
        self._counters = counters
        self._clock = clock
        self._lock = threading.Lock()
        self._members: frozenset[Connection] = frozenset()

    async def register(self, conn: Connection) -> bool:
        """Add a connection and send it a catch-up snapshot. False if that send failed."""
        with self._lock:
            self._members = self._members | {conn}
        logger.info("%s registered (%d connected)", conn.label, len(self))

        catch_up = CountsUpdate.from_counters(self._counters.snapshot(), self._clock())
        if await conn.send(encode(catch_up)):
            return True
        self.unregister(conn)
        await conn.close()
        return False

    def unregister(self, conn: Connection) -> None:
        with self._lock:
            if conn not in self._members:
                return
            self._members = self._members - {conn}
        logger.info("%s unregistered (%d connected)", conn.label, len(self))

    def remove_all(self, conns: list[Connection]) -> None:
        if not conns:
            return
        with self._lock:
            self._members = self._members - set(conns)
        logger.info("pruned %d dead connection(s) (%d connected)", len(conns), len(self))

    def snapshot(self) -> tuple[Connection, ...]:
        return tuple(self._members)

    def __iter__(self) -> Iterator[Connection]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, conn: object) -> bool:
        return conn in self._members

    async def close_all(self, code: int = 1001) -> int:
        """Shutdown drain: empty the registry and close every former member."""
        with self._lock:
            members, self._members = self._members, frozenset()
        if members:
            await asyncio.gather(*(c.close(code=code) for c in members), return_exceptions=True)
        logger.info("closed %d connection(s) on shutdown", len(members))
        return len(members)
