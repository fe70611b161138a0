"""In-process fan-out of indexed events to ``onEvent`` subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)


class EventStream:
    """One subscriber's view of the event feed.

    Registered on creation; ``aclose`` unregisters it and ends iteration.
    """

    def __init__(self, watcher: "EventWatcher", max_queue_size: int):
        self._watcher = watcher
        self._queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False

    def push(self, event: Dict[str, Any]) -> None:
        if self._queue.full():
            # Slow subscriber: drop the oldest event rather than block publishers
            self._queue.get_nowait()
            logger.warning("Event subscriber queue full, dropping oldest event")
        self._queue.put_nowait(event)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def aclose(self) -> None:
        if not self.closed:
            self.closed = True
            self._watcher._unsubscribe(self)


class EventWatcher:
    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Set[EventStream] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get_event_iterator(self) -> EventStream:
        stream = EventStream(self, self.max_queue_size)
        self._subscribers.add(stream)
        logger.debug(f"onEvent subscriber added ({len(self._subscribers)} active)")
        return stream

    def publish(self, result_event: Dict[str, Any]) -> int:
        """Deliver a ``ResultEvent`` value to every subscriber; returns the delivery count."""
        subscribers = list(self._subscribers)
        for stream in subscribers:
            stream.push(result_event)
        return len(subscribers)

    def _unsubscribe(self, stream: EventStream) -> None:
        self._subscribers.discard(stream)
        logger.debug(f"onEvent subscriber removed ({len(self._subscribers)} active)")

    async def aclose(self) -> None:
        for stream in list(self._subscribers):
            await stream.aclose()
