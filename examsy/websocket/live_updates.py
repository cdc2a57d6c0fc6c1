"""
WebSocket handler pushing mirror snapshots and session state to the local UI.
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from ..services.session_state import SessionState
from ..services.sync.live_mirror import LiveMirror, MirrorSnapshot

logger = logging.getLogger(__name__)


def serialize_documents(documents) -> list:
    return [document.model_dump(by_alias=True, mode="json") for document in documents.values()]


class ConnectionManager:
    """Manages WebSocket connections of UI observers."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self._outbox: Optional[asyncio.Queue] = None
        self._sender: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket, initial_messages: list):
        await websocket.accept()
        self.active_connections.add(websocket)

        for message in initial_messages:
            await self._send_to_websocket(websocket, message)

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    async def broadcast(self, message: dict):
        # Copy so disconnects during iteration are safe
        connections = self.active_connections.copy()

        failed_connections = []
        for websocket in connections:
            try:
                await self._send_to_websocket(websocket, message)
            except Exception:
                failed_connections.append(websocket)

        for websocket in failed_connections:
            self.disconnect(websocket)

    def queue_broadcast(self, message: dict) -> None:
        """Queue a broadcast from synchronous code running on the event loop.

        One sender task drains the queue, so every socket receives messages
        in the order they were queued.
        """
        if not self.active_connections:
            return
        if self._outbox is None:
            self._outbox = asyncio.Queue()
        if self._sender is None or self._sender.done():
            self._sender = asyncio.get_running_loop().create_task(self._send_queued())
        self._outbox.put_nowait(message)

    async def _send_queued(self):
        while True:
            message = await self._outbox.get()
            try:
                await self.broadcast(message)
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued broadcast has been sent."""
        if self._outbox is not None:
            await self._outbox.join()

    async def close(self) -> None:
        if self._sender is not None:
            self._sender.cancel()
            await asyncio.gather(self._sender, return_exceptions=True)
            self._sender = None

    async def _send_to_websocket(self, websocket: WebSocket, message: dict):
        await websocket.send_text(json.dumps(message))

    def get_active_connections_count(self) -> int:
        return len(self.active_connections)


class LiveUpdateService:
    """Turns mirror snapshots and state changes into UI messages."""

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager

    @staticmethod
    def _message(message_type: str, **data: Any) -> Dict[str, Any]:
        return {
            "type": message_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **data
        }

    def snapshot_message(self, snapshot: MirrorSnapshot, initial_load_complete: bool) -> dict:
        return self._message(
            "snapshot",
            collection=snapshot.collection,
            version=snapshot.version,
            initial_load_complete=initial_load_complete,
            documents=serialize_documents(snapshot.documents)
        )

    def state_message(self, state: SessionState) -> dict:
        return self._message("session_state", data=state.to_dict())

    def initial_messages(self, mirror: LiveMirror, state: SessionState) -> list:
        messages = [self._message(
            "connection_confirmed",
            initial_load_complete=mirror.initial_load_complete,
            message="Connected to live updates"
        )]
        for collection in mirror.collections:
            if collection.loaded:
                messages.append(self.snapshot_message(
                    MirrorSnapshot(collection.collection, collection.documents, collection.version),
                    mirror.initial_load_complete
                ))
        messages.append(self.state_message(state))
        return messages

    def attach(self, mirror: LiveMirror, state_machine) -> list:
        """Forward every snapshot and state change; returns the detach callables."""
        return [
            mirror.add_observer(lambda snapshot: self.connection_manager.queue_broadcast(
                self.snapshot_message(snapshot, mirror.initial_load_complete)
            )),
            state_machine.add_listener(lambda state: self.connection_manager.queue_broadcast(
                self.state_message(state)
            )),
        ]

    async def handle_websocket_messages(self, websocket: WebSocket):
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    await self.connection_manager._send_to_websocket(
                        websocket, {"type": "error", "message": "Invalid JSON format"}
                    )
                    continue

                message_type = message.get("type") if isinstance(message, dict) else None
                if message_type == "ping":
                    await self.connection_manager._send_to_websocket(
                        websocket,
                        {"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()}
                    )
                else:
                    await self.connection_manager._send_to_websocket(
                        websocket,
                        {"type": "error", "message": f"Unknown message type: {message_type}"}
                    )

        except WebSocketDisconnect:
            self.connection_manager.disconnect(websocket)
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            self.connection_manager.disconnect(websocket)
