"""Dashboard push channel: one WebSocket per client, no sub-protocols."""
import logging

from fastapi import WebSocket, WebSocketDisconnect

from loanstream.services.channel import ChannelSession
from loanstream.services.ingest_state import get_live_state
from loanstream.services.registry import Connection

logger = logging.getLogger("loanstream.ws")


def _label(websocket: WebSocket) -> str:
    client = websocket.client
    return f"ws-{client.host}:{client.port}" if client else "ws-unknown"


async def live_channel(websocket: WebSocket):
    """
    Accept, register (client gets current counts immediately), then answer
    pings until the client goes away. Broadcasts arrive through the registry.
    """
    live = get_live_state(websocket)
    await websocket.accept()
    conn = Connection(
        websocket,
        send_timeout=websocket.app.state.settings.WS_SEND_TIMEOUT_SEC,
        label=_label(websocket),
    )
    session = ChannelSession(conn, live.registry)
    if not await session.on_open():
        logger.info("%s dropped during catch-up", conn.label)
        return

    try:
        while True:
            raw = await websocket.receive_text()
            reply = session.on_message(raw)
            if reply is not None and not await session.reply(reply):
                break
    except WebSocketDisconnect as exc:
        session.on_close(exc.code)
        return
    except Exception as exc:
        session.on_error(exc)
        return
    session.on_close()
