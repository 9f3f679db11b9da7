"""WebSocket connection management with table engine integration."""

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.host import get_table
from api.schemas import ActionRequest, FundsPromptResponse, ResultResponse, TableStateResponse
from api.session import extract_session_id
from bjcore.engine import ActionInfo
from bjcore.errors import TableError
from bjcore.snapshot import TableSnapshot

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """Manage WebSocket connections and their snapshot queues."""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._queues: dict[str, asyncio.Queue] = {}

    async def connect(self, websocket: WebSocket, session_id: str) -> asyncio.Queue:
        """Accept and register a new connection."""
        await websocket.accept()
        self._connections[session_id] = websocket
        queue: asyncio.Queue = asyncio.Queue(maxsize=256)
        self._queues[session_id] = queue
        return queue

    def disconnect(self, session_id: str) -> None:
        """Remove a connection; the table stays cached for reconnection."""
        self._connections.pop(session_id, None)
        self._queues.pop(session_id, None)

    def queue_snapshot(self, session_id: str, snapshot: TableSnapshot, info: ActionInfo) -> None:
        """Queue a snapshot for async delivery."""
        queue = self._queues.get(session_id)
        if queue is None:
            return
        message = {
            "type": "snapshot",
            "cause": info.type,
            "state": TableStateResponse.from_snapshot(snapshot).model_dump(mode="json"),
        }
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Snapshot queue full for a table socket; dropping update")

    async def send_message(self, session_id: str, message: dict[str, Any]) -> None:
        """Send a message to a specific session."""
        websocket = self._connections.get(session_id)
        if websocket is None:
            return
        try:
            await websocket.send_json(message)
        except Exception:
            logger.debug("Send failed; connection likely closed")

    @property
    def active_connections(self) -> int:
        """Return number of active connections."""
        return len(self._connections)


# Global connection manager
manager = ConnectionManager()


@router.websocket("/table/{session_id}")
async def table_websocket(websocket: WebSocket, session_id: str) -> None:
    """
    WebSocket endpoint for real-time table updates.

    Messages from client:
    - {"action": "START_ROUND", "amount": 10}
    - {"action": "HIT"} (any table action)
    - {"type": "get_state"}

    Messages to client:
    - {"type": "snapshot", "cause": "...", "state": {...}}
    - {"type": "result", "result": {...}}
    - {"type": "funds", "prompt": {...}}
    - {"type": "error", "message": "..."}
    """
    if extract_session_id(session_id) is None:
        await websocket.close(code=4401)
        return

    queue = await manager.connect(websocket, session_id)
    table = await get_table(session_id)
    unsubscribe = table.engine.subscribe(
        lambda snapshot, info: manager.queue_snapshot(session_id, snapshot, info)
    )

    async def pump_snapshots() -> None:
        while True:
            message = await queue.get()
            await manager.send_message(session_id, message)

    pump = asyncio.create_task(pump_snapshots())

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_message(session_id, {"type": "error", "message": "Malformed JSON"})
                continue
            if not isinstance(data, dict):
                await manager.send_message(
                    session_id, {"type": "error", "message": "Message must be a JSON object"}
                )
                continue

            if data.get("type") == "get_state":
                await manager.send_message(session_id, {
                    "type": "snapshot",
                    "cause": "GET_STATE",
                    "state": TableStateResponse.from_snapshot(
                        table.engine.snapshot()
                    ).model_dump(mode="json"),
                })
                continue

            try:
                request = ActionRequest.model_validate(data)
            except ValidationError as exc:
                await manager.send_message(session_id, {
                    "type": "error",
                    "message": f"Invalid action message: {exc.errors()[0]['msg']}",
                })
                continue

            try:
                result = await table.run(request.action, request.amount)
            except TableError as exc:
                await manager.send_message(session_id, {"type": "error", "message": str(exc)})
                continue
            await table.save()

            if result is not None and not result.accepted and not result.funds_needed:
                await manager.send_message(session_id, {
                    "type": "error",
                    "message": result.reason or f"Cannot {request.action} now",
                })
            for item in table.adapter.take_results():
                await manager.send_message(session_id, {
                    "type": "result",
                    "result": ResultResponse.from_result(item).model_dump(mode="json"),
                })
            if table.adapter.pending_funds is not None:
                await manager.send_message(session_id, {
                    "type": "funds",
                    "prompt": FundsPromptResponse.from_request(
                        table.adapter.pending_funds
                    ).model_dump(mode="json"),
                })

    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        manager.disconnect(session_id)
