"""WebSocket endpoint carrying the chat session protocol."""

import asyncio
import json
import uuid
from typing import Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..models.events import ErrorEvent, ProtocolEvent, parse_client_event
from ..services.connection_registry import ConnectionRegistry
from ..utils.logger import get_app_logger

router = APIRouter(tags=["websocket"])

# Connection registry (set by main.py)
registry: ConnectionRegistry = None
logger = get_app_logger()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Session event handler failed: {exc!r}")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Session protocol endpoint.

    Each inbound frame is handled in its own task so that a cancel-request is
    processed while a send-message turn is still waiting on the assistant.
    On disconnect the session is torn down and outstanding handlers are
    awaited, so a reply that already completed is still recorded.
    """
    await websocket.accept()
    connection_id = uuid.uuid4().hex

    async def send(event: ProtocolEvent) -> None:
        await websocket.send_json(event.to_wire())

    session = registry.connect(connection_id, send)
    tasks: Set[asyncio.Task] = set()

    try:
        while True:
            data = await websocket.receive_text()

            try:
                event = parse_client_event(json.loads(data))
            except json.JSONDecodeError:
                await send(ErrorEvent(message="Invalid JSON message"))
                continue
            except ValidationError as e:
                await send(ErrorEvent(message=f"Invalid event: {e.errors(include_url=False)}"))
                continue

            task = asyncio.create_task(session.handle(event))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            task.add_done_callback(_log_task_failure)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {connection_id}")

    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}")

    finally:
        await registry.disconnect(connection_id)
        # Teardown killed the assistant; let in-flight turns finish their writes
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"WebSocket connection closed: {connection_id}")
