"""Fire-and-forget fan-out of real-time events to connected UI observers.

Each observer owns an ``asyncio.Queue``. Publishing never blocks: a full queue
drops its oldest event to make room.
"""

import asyncio
import time
from typing import Any

from zapbot.logging_config import get_logger

logger = get_logger("broadcast_service")

EVENT_QR = "qr"
EVENT_CONNECTION_STATUS = "connection-status"
EVENT_MESSAGE = "message"


class EventBroadcaster:
    def __init__(self, max_queue_size: int = 200):
        self.max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        logger.info(f"Observer connected (total: {len(self._subscribers)})")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            return
        logger.info(f"Observer disconnected (total: {len(self._subscribers)})")

    def publish(self, event: str, data: Any) -> int:
        envelope = {"event": event, "data": data, "timestamp": time.time()}
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(envelope)
            except asyncio.QueueFull:
                try:
                    queue.get_nowait()
                    queue.put_nowait(envelope)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    pass
        return len(self._subscribers)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
