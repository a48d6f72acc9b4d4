"""
WebSocket Routes for live flow updates.

Renderers connect per session, receive the current snapshot and then one
message per committed mutation.
"""

from typing import Any, Dict, Set
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import logging

from flowedit.engine.graph import GraphEvent
from flowedit.storage.memory import session_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


class ConnectionManager:
    """Manages WebSocket connections."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, session_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        if session_id not in self.active_connections:
            self.active_connections[session_id] = set()
        self.active_connections[session_id].add(websocket)
        logger.info(f"WebSocket connected for session: {session_id}")

    def disconnect(self, websocket: WebSocket, session_id: str):
        """Remove a WebSocket connection."""
        if session_id in self.active_connections:
            self.active_connections[session_id].discard(websocket)
            if not self.active_connections[session_id]:
                del self.active_connections[session_id]
        logger.info(f"WebSocket disconnected for session: {session_id}")

    def count(self, session_id: str) -> int:
        return len(self.active_connections.get(session_id, ()))


# Global connection manager
manager = ConnectionManager()


@router.websocket("/ws/sessions/{session_id}")
async def websocket_session(websocket: WebSocket, session_id: str):
    """
    WebSocket endpoint for live updates of one editing session.

    Message format (server -> client), first message:
    ```json
    {"type": "snapshot", "flow": {"nodes": [...], "edges": [...], "connectingFrom": null, "version": 3}}
    ```

    Then one message per committed mutation:
    ```json
    {
        "type": "mutation",
        "kind": "fanout",
        "version": 4,
        "added_nodes": ["switch_output_3"],
        "updated_nodes": ["switch_1"],
        "removed_nodes": [],
        "added_edges": [],
        "removed_edges": [],
        "connectingFrom": null,
        "flow": {...}
    }
    ```
    """
    session = await session_storage.get(session_id)
    if not session:
        await websocket.close(code=4004, reason=f"Session '{session_id}' not found")
        return

    await manager.connect(websocket, session_id)

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def on_commit(event: GraphEvent) -> None:
        message = event.to_dict()
        message["flow"] = session.store.snapshot()
        loop.call_soon_threadsafe(queue.put_nowait, message)

    unsubscribe = session.store.subscribe(on_commit)
    receiver = None

    try:
        await websocket.send_json({
            "type": "snapshot",
            "session_id": session_id,
            "flow": session.store.snapshot(),
        })

        receiver = asyncio.ensure_future(websocket.receive_text())
        while True:
            sender = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)

            if sender in done:
                await websocket.send_json(sender.result())
            else:
                sender.cancel()

            if receiver in done:
                # Clients only ping; anything they send is answered with the snapshot
                receiver.result()
                await websocket.send_json({
                    "type": "snapshot",
                    "session_id": session_id,
                    "flow": session.store.snapshot(),
                })
                receiver = asyncio.ensure_future(websocket.receive_text())

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from session {session_id}")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
    finally:
        if receiver is not None and not receiver.done():
            receiver.cancel()
        unsubscribe()
        manager.disconnect(websocket, session_id)
