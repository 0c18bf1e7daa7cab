"""
Terminal dashboard for the loan push channel.

- Connects to the /ws endpoint, prints metrics and loan events as they arrive.
- Sends an application-level ping periodically; the server answers with pong.
- Reconnects with exponential backoff (1s doubling to 60s) whenever the
  channel drops; the server re-sends current counts on every reconnect.
"""
import argparse
import asyncio
import json
import logging
from typing import Any, Callable, Optional

import websockets
from pydantic import ValidationError

from loanstream.core.config import settings
from loanstream.services.messages import (
    BroadcastMessage,
    CountsUpdate,
    RecordEvent,
    decode,
)

logger = logging.getLogger("loanstream.watcher")

MAX_BACKOFF_SEC = 60


async def stop_pinger(task: asyncio.Task) -> None:
    """Cancel the ping task; a send that already failed is logged, not raised."""
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        logger.debug("ping task ended with error: %s", exc)


def format_message(msg: BroadcastMessage) -> Optional[str]:
    """One display line per message; None for keepalive traffic."""
    if isinstance(msg, CountsUpdate):
        d = msg.data
        rate = f"{d.success / d.total * 100:.1f}%" if d.total else "-"
        return f"[metrics] total={d.total} success={d.success} failed={d.failed} rate={rate}"
    if isinstance(msg, RecordEvent):
        d = msg.data
        amount = f"{d.loan_amount:,.2f}" if d.loan_amount is not None else "-"
        line = f"[{d.status:>7}] {d.applicant_id or '?'} amount={amount}"
        if d.error:
            line += f" error={d.error!r}"
        return line
    return None


class DashboardWatcher:
    def __init__(
        self,
        url: str,
        ping_interval: float = 25.0,
        output: Callable[[str], Any] = print,
    ):
        self.url = url
        self.ping_interval = ping_interval
        self.output = output
        self.latest: Optional[CountsUpdate] = None
        self.stats = {"status": "stopped", "received": 0, "invalid": 0, "reconnects": 0}
        self._running = False

    def handle(self, raw: str | bytes) -> Optional[BroadcastMessage]:
        self.stats["received"] += 1
        try:
            msg = decode(raw)
        except ValidationError as exc:
            self.stats["invalid"] += 1
            logger.debug("ignoring unknown message: %s", exc)
            return None
        if isinstance(msg, CountsUpdate):
            self.latest = msg
        line = format_message(msg)
        if line is not None:
            self.output(line)
        return msg

    async def run(self) -> None:
        self._running = True
        delay = 1
        while self._running:
            try:
                await self._stream()
                delay = 1
                if self._running:
                    logger.info("channel closed by server; reconnecting")
                    await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self.stats["reconnects"] += 1
                self.stats["status"] = f"reconnecting ({exc})"
                logger.warning("channel error: %s; retry in %ds", exc, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_BACKOFF_SEC)
        self.stats["status"] = "stopped"

    def stop(self) -> None:
        self._running = False

    async def _stream(self) -> None:
        async with websockets.connect(self.url, ping_interval=20, ping_timeout=30) as ws:
            self.stats["status"] = "live"
            logger.info("connected to %s", self.url)

            async def pinger():
                while True:
                    await asyncio.sleep(self.ping_interval)
                    await ws.send(json.dumps({"type": "ping"}))

            ping_task = asyncio.create_task(pinger())
            try:
                async for raw in ws:
                    if not self._running:
                        break
                    self.handle(raw)
            finally:
                await stop_pinger(ping_task)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Tail the loan dashboard push channel")
    parser.add_argument("--url", default=settings.WATCH_WS_URL)
    parser.add_argument("--ping", type=float, default=settings.WATCH_PING_SEC)
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    watcher = DashboardWatcher(args.url, ping_interval=args.ping)
    try:
        asyncio.run(watcher.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
