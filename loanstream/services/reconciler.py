"""
Periodic background tasks for the live metrics.

- Reconcile: recount loans from storage, replace the in-memory counters and
  re-broadcast (even if nothing changed). A failed query skips the cycle and
  leaves the counters untouched.
- Heartbeat: broadcast a keepalive so silently dead connections fail a send
  and get pruned.
"""
import asyncio
import enum
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from loanstream.services.counters import Counters, CounterStore
from loanstream.services.live_broadcast import LiveBroadcaster
from loanstream.services.messages import CountsUpdate, utcnow

logger = logging.getLogger("loanstream.reconciler")


class LoopState(str, enum.Enum):
    IDLE = "idle"
    COMPUTING = "computing"
    BROADCASTING = "broadcasting"


class ReconciliationLoop:
    def __init__(
        self,
        counters: CounterStore,
        broadcaster: LiveBroadcaster,
        query_counts: Callable[[], Awaitable[Counters]],
        interval: float = 10.0,
        heartbeat_interval: Optional[float] = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._counters = counters
        self._broadcaster = broadcaster
        self._query_counts = query_counts
        self._interval = interval
        self._heartbeat_interval = heartbeat_interval
        self._sleep = sleep
        self._clock = clock
        self._running = False
        self._tasks: set[asyncio.Task[Any]] = set()
        self.state = LoopState.IDLE
        self.stats = {
            "cycles": 0,
            "failures": 0,
            "heartbeats": 0,
            "last_reconciled_at": None,
        }

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._spawn(self._reconcile_loop(), "metrics-reconcile")
        if self._heartbeat_interval:
            self._spawn(self._heartbeat_loop(), "ws-heartbeat")
        logger.info(
            "reconciler started: every %.1fs, heartbeat %s",
            self._interval,
            f"every {self._heartbeat_interval:.1f}s" if self._heartbeat_interval else "off",
        )

    async def stop(self) -> None:
        self._running = False
        for t in list(self._tasks):
            t.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.state = LoopState.IDLE
        logger.info("reconciler stopped")

    async def run_cycle(self) -> Optional[Counters]:
        """One reconcile pass. Returns the new counters, or None if the query failed."""
        self.state = LoopState.COMPUTING
        try:
            fresh = await self._query_counts()
        except asyncio.CancelledError:
            self.state = LoopState.IDLE
            raise
        except Exception as exc:
            self.stats["failures"] += 1
            self.state = LoopState.IDLE
            logger.warning("metrics sync failed, keeping last counts: %s", exc)
            return None

        self.state = LoopState.BROADCASTING
        try:
            self._counters.replace(fresh)
            await self._broadcaster.broadcast(CountsUpdate.from_counters(fresh, self._clock()))
        finally:
            self.state = LoopState.IDLE
        self.stats["cycles"] += 1
        self.stats["last_reconciled_at"] = self._clock()
        logger.debug("metrics synced: %s", fresh)
        return fresh

    async def _reconcile_loop(self) -> None:
        while self._running:
            await self._sleep(self._interval)
            try:
                await self.run_cycle()
            except Exception as exc:
                logger.warning("metrics sync error: %s", exc)

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await self._sleep(self._heartbeat_interval)
            try:
                await self._broadcaster.heartbeat()
                self.stats["heartbeats"] += 1
            except Exception as exc:
                logger.warning("heartbeat error: %s", exc)
