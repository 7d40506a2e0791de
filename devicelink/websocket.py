"""WebSocket endpoint shared by devices and frontends.

Mount it in FastAPI via::

    app.add_api_websocket_route("/ws", relay_ws_handler)

The broker and router are read from ``app.state`` (see :func:`devicelink.server.create_app`).
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

from devicelink.broker import Broker
from devicelink.registry import Connection
from devicelink.router import MessageRouter

logger = logging.getLogger(__name__)


def start_writer(broker: Broker, conn: Connection) -> asyncio.Task:
    """Run the outbound writer for ``conn`` and reconcile the broker when it ends.

    The writer ends when the connection is closed or a send fails, and the
    broker must forget the connection in both cases.
    """
    writer = asyncio.create_task(conn.run_writer())
    writer.add_done_callback(lambda _task: broker.disconnect(conn))
    return writer


async def relay_ws_handler(websocket: WebSocket) -> None:
    """Serve one peer until it disconnects or the broker closes it."""
    broker: Broker = websocket.app.state.broker
    router: MessageRouter = websocket.app.state.router

    conn = broker.connect(websocket)
    writer: asyncio.Task | None = None

    try:
        await websocket.accept()
        writer = start_writer(broker, conn)
        async for raw in websocket.iter_text():
            router.route(conn, raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Error on connection %d", conn.conn_id)
    finally:
        broker.disconnect(conn)
        if writer is not None and not writer.done():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
