"""Routes for the TTS module server.

Endpoints
---------
WS   /        The TTS protocol socket. Text messages are JSON requests;
              the server answers with JSON replies and, for streamed
              generations, binary audio frames.

GET  /health  Returns server status, version, the loaded provider and
              the number of generations in flight.
"""

import asyncio
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from tts_module import __version__
from tts_module.protocol.correlation import ReplySender
from tts_module.server.dispatcher import MessageRouter

logger = logging.getLogger(__name__)

router = APIRouter()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Message handler failed", exc_info=exc)


# ---------------------------------------------------------------------------
# WS /
# ---------------------------------------------------------------------------


@router.websocket("/")
async def tts_socket(websocket: WebSocket) -> None:
    """Serve one client connection.

    Each text message is handled in its own task so a long generation never
    blocks an ``interrupt`` sent behind it.
    """
    await websocket.accept()
    connections: set = websocket.app.state.connections
    connection_id = id(websocket)
    connections.add(connection_id)
    logger.info("Socket connected: %s", websocket.client)

    sender = ReplySender(websocket.send_text, websocket.send_bytes)
    dispatcher = MessageRouter(
        websocket.app.state.registry,
        sender,
        on_close=websocket.app.state.on_close,
    )
    tasks: set[asyncio.Task] = set()

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.warning("Socket closed: %s", message.get("code"))
                break

            text = message.get("text")
            if text is None:
                logger.error(
                    "Received unhandled binary message (%d bytes)",
                    len(message.get("bytes") or b""),
                )
                continue

            task = asyncio.create_task(dispatcher.handle(text))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            task.add_done_callback(_log_task_failure)
    except WebSocketDisconnect as exc:
        logger.warning("Socket closed: %s", exc.code)
    finally:
        connections.discard(connection_id)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------


@router.get("/health")
async def health(request: Request) -> dict:
    """Return server health information.

    Used by the CLI ``status`` command.
    """
    registry = request.app.state.registry
    provider = registry.active
    return {
        "status": "ok",
        "version": __version__,
        "provider": registry.active_name,
        "in_flight": provider.in_flight if provider is not None else 0,
        "connections": len(request.app.state.connections),
    }
