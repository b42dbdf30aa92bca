"""WebSocket fan-out for real-time events."""

import asyncio
import json
import logging
import time

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

CLIENT_QUEUE_SIZE = 256


class EventBroadcaster:
    """
    Hands events to one bounded queue per connected client.

    publish() never awaits a socket, so engine observers that call it
    return immediately; each client's pump task does the sending. A
    client that falls behind loses its oldest events.
    """

    def __init__(self) -> None:
        self._queues: dict[WebSocket, asyncio.Queue] = {}

    @property
    def client_count(self) -> int:
        return len(self._queues)

    def subscribe(self, websocket: WebSocket) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)
        self._queues[websocket] = queue
        logger.info(f"WebSocket client connected. Total: {len(self._queues)}")
        return queue

    def unsubscribe(self, websocket: WebSocket) -> None:
        self._queues.pop(websocket, None)
        logger.info(f"WebSocket client disconnected. Total: {len(self._queues)}")

    def publish(self, event: str, data: dict) -> None:
        message = json.dumps({"event": event, "data": data, "ts": time.time()})
        for queue in self._queues.values():
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(message)

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Event handler compatible with TransferManager.on_event()."""
        self.publish(event_type, data)

    async def serve(self, websocket: WebSocket) -> None:
        """Accept a client and stream events to it until it disconnects."""
        await websocket.accept()
        queue = self.subscribe(websocket)
        pump = asyncio.create_task(self._pump(websocket, queue))
        try:
            while True:
                # Clients don't send anything; receiving detects the disconnect
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            pump.cancel()
            self.unsubscribe(websocket)

    async def _pump(self, websocket: WebSocket, queue: asyncio.Queue) -> None:
        try:
            while True:
                message = await queue.get()
                await websocket.send_text(message)
        except Exception as e:
            logger.debug(f"WebSocket send failed: {e!r}")
