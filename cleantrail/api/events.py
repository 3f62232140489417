"""
In-process event fan-out and badge state for the HTTP surface.

``EventHub`` implements the broadcaster protocol by copying each
event onto a bounded queue per SSE subscriber.  ``MemoryBadge``
keeps the latest badge text and colour so the API can report them.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Mapping
from typing import Any

from cleantrail.utils import logger

log = logger.create_logger("Events")

SUBSCRIBER_QUEUE_SIZE = 100


def format_sse_event(event_type: str, data: Mapping[str, Any]) -> str:
    """Format a Server-Sent Event string."""
    return f"event: {event_type}\ndata: {json.dumps(dict(data))}\n\n"


class EventHub:
    """Broadcasts engine events to every connected subscriber."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def broadcast(self, event: Mapping[str, Any]) -> None:
        """Queue *event* for each subscriber; a full queue drops its oldest event."""
        payload = dict(event)
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                log.warn("Subscriber queue full, dropping oldest event")
            queue.put_nowait(payload)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._subscribers.discard(queue)

    async def stream(self) -> AsyncIterator[str]:
        """Yield formatted SSE strings until the consumer goes away."""
        queue = self.subscribe()
        log.debug("Subscriber connected", {"subscribers": self.subscriber_count})
        try:
            while True:
                event = await queue.get()
                yield format_sse_event(str(event.get("type", "message")), event)
        finally:
            self.unsubscribe(queue)
            log.debug("Subscriber disconnected", {"subscribers": self.subscriber_count})


class MemoryBadge:
    """Badge indicator that records the most recent text and colour."""

    def __init__(self) -> None:
        self.text = ""
        self.colour = ""

    async def set_badge(self, text: str, colour: str) -> None:
        self.text = text
        self.colour = colour

    def as_dict(self) -> dict[str, str]:
        return {"text": self.text, "colour": self.colour}
