"""
Lifecycle of one dashboard push channel, independent of the web framework.

on_open   : register (client receives current counts right away)
on_message: parse one client frame, return the reply to send (or None)
on_close  : unregister; safe to call more than once
on_error  : log and unregister
"""
import json
import logging
from typing import Callable, Optional

from pydantic import BaseModel

from loanstream.services.messages import Pong, encode, utcnow
from loanstream.services.registry import Connection, ConnectionRegistry

logger = logging.getLogger("loanstream.channel")


class ChannelSession:
    def __init__(
        self,
        conn: Connection,
        registry: ConnectionRegistry,
        clock: Callable = utcnow,
    ):
        self.conn = conn
        self._registry = registry
        self._clock = clock

    async def on_open(self) -> bool:
        return await self._registry.register(self.conn)

    def on_message(self, raw: str) -> Optional[BaseModel]:
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("%s: unparseable message: %.200r", self.conn.label, raw)
            return None
        msg_type = data.get("type") if isinstance(data, dict) else None
        if msg_type == "ping":
            return Pong(timestamp=self._clock())
        logger.debug("%s: unknown message type: %r", self.conn.label, msg_type)
        return None

    async def reply(self, message: BaseModel) -> bool:
        """Send a reply to this client only, in order with broadcasts."""
        if await self.conn.send(encode(message)):
            return True
        self._registry.unregister(self.conn)
        await self.conn.close()
        return False

    def on_close(self, code: Optional[int] = None) -> None:
        self.conn.mark_closed()
        self._registry.unregister(self.conn)
        logger.debug("%s closed (code=%s)", self.conn.label, code)

    def on_error(self, exc: BaseException) -> None:
        logger.warning("%s: channel error: %s", self.conn.label, exc)
        self.on_close()
