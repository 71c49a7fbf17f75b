"""Pet event names and the queue that fans them out.

The lifecycle controller, the scheduler and the HTTP facade publish pet
transitions as Event values. Subscribers are plain async callables keyed by
event name; the SSE endpoint subscribes to every name in PUBLIC_EVENTS.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]

STATUS_CHANGED = "status_changed"
PET_DIED = "pet_died"
PET_FOUND_DEAD = "pet_found_dead"
PET_REVIVED = "pet_revived"
NEEDS_ATTENTION = "needs_attention"
DEATH_WARNING = "death_warning"
CARE_GIVEN = "care_given"
AUTO_COMMENT = "auto_comment"
HISTORY_CLEARED = "history_cleared"

PUBLIC_EVENTS = (
    STATUS_CHANGED,
    PET_DIED,
    PET_FOUND_DEAD,
    PET_REVIVED,
    NEEDS_ATTENTION,
    DEATH_WARNING,
    CARE_GIVEN,
    AUTO_COMMENT,
    HISTORY_CLEARED,
)


@dataclass(frozen=True)
class Event:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_sse(self) -> str:
        """One server-sent-events frame carrying this event."""
        payload = json.dumps(self.to_dict(), ensure_ascii=False)
        return f"event: {self.type}\ndata: {payload}\n\n"


class EventBus:
    """Bounded queue of pet events, drained by one background task.

    emit() never blocks the caller: when the queue is full the event is
    dropped and counted. Every handler for an event runs concurrently, and a
    handler that raises is logged and skipped.
    """

    def __init__(self, max_queue: int = 1000):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue)
        self._task: asyncio.Task | None = None
        self._running = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        logger.debug("%s subscribed to %s", handler.__qualname__, event_type)

    def off(self, event_type: str, handler: EventHandler) -> None:
        """Unsubscribe; a handler that was never registered is ignored."""
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event queue full, dropped %s (%d dropped so far)", event.type, self.dropped)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="pet-events")
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Cancel the worker, then deliver whatever is still queued."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            delivered = await self._drain()
            if delivered:
                logger.debug("Delivered %d queued events during shutdown", delivered)
        logger.info("Event bus stopped")

    async def _run(self) -> None:
        while self._running:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            except Exception:
                logger.exception("Dispatch of %s failed", event.type)

    async def _drain(self) -> int:
        count = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            await self._dispatch(event)
            count += 1

    async def _dispatch(self, event: Event) -> None:
        # Snapshot: a handler may call off() for itself while running
        handlers = tuple(self._handlers.get(event.type, ()))
        if handlers:
            await asyncio.gather(*(self._call(h, event) for h in handlers))

    async def _call(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except BaseException:
            logger.exception("%s failed handling %s", handler.__qualname__, event.type)
