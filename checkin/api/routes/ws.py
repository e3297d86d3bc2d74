"""WebSocket feed of queue snapshots for display screens."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from checkin.api.routes.schemas import queue_response
from checkin.ledger.errors import StoreUnavailableError
from checkin.ledger.models import QueueSnapshot
from checkin.ledger.watcher import LedgerView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


@router.websocket("/ws")
async def queue_feed(websocket: WebSocket) -> None:
    """Send the full queue snapshot on connect and after every change.

    Clients may send ``{"action": "ping"}`` and receive ``{"action": "pong"}``.
    """

    view: LedgerView | None = getattr(websocket.app.state, "ledger_view", None)
    await websocket.accept()
    if view is None:
        await websocket.close(code=1011, reason="Queue view is not configured")
        return

    subscriber_id = f"ws-{uuid4().hex[:8]}"
    queue: asyncio.Queue[QueueSnapshot] = asyncio.Queue(maxsize=16)

    def _enqueue(snapshot: QueueSnapshot) -> None:
        if queue.full():
            # Only the newest snapshot matters to a display.
            with contextlib.suppress(asyncio.QueueEmpty):
                queue.get_nowait()
        queue.put_nowait(snapshot)

    view.add_listener(_enqueue)
    logger.info("WebSocket connected: %s", subscriber_id)
    try:
        if view.snapshot is not None:
            _enqueue(view.snapshot)
        else:
            # refresh() notifies listeners, including this connection.
            with contextlib.suppress(StoreUnavailableError):
                await view.refresh()

        receive_task = asyncio.create_task(_handle_receive(websocket))
        send_task = asyncio.create_task(_handle_send(websocket, queue))
        _, pending = await asyncio.wait([receive_task, send_task], return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
    except WebSocketDisconnect:
        pass
    finally:
        view.remove_listener(_enqueue)
        logger.info("WebSocket disconnected: %s", subscriber_id)


async def _handle_receive(websocket: WebSocket) -> None:
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("action") == "ping":
                await websocket.send_json({"action": "pong"})
    except WebSocketDisconnect:
        return


async def _handle_send(websocket: WebSocket, queue: asyncio.Queue[QueueSnapshot]) -> None:
    try:
        while True:
            snapshot = await queue.get()
            payload = queue_response(snapshot).model_dump(mode="json")
            await websocket.send_json({"type": "snapshot", "data": payload})
    except WebSocketDisconnect:
        return
