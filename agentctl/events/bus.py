"""Event Bus — ordered push delivery of LogEvents to subscribers.

The supervisor publishes every LogEvent here. Subscribers are either
async callbacks or queue-backed streams consumed with ``async for``.
Once a subscriber detaches it silently stops receiving events.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from agentctl.types import LogEvent, LogKind

_logger = logging.getLogger(__name__)

EventHandler = Callable[[LogEvent], Awaitable[None]]


class EventStream:
    """Queue-backed subscription. Iterate it; close it to detach."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[LogEvent | None] = asyncio.Queue()
        self._closed = False

    async def _deliver(self, event: LogEvent) -> None:
        if not self._closed:
            await self._queue.put(event)

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(self, timeout: float | None = None) -> LogEvent | None:
        """Next event, or None once the stream is closed."""
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus.unsubscribe(self._deliver)
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[LogEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[LogEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class EventBus:
    """Async pub/sub for LogEvents with bounded history.

    Handlers run one after another in registration order, so every
    subscriber sees events in publish order.
    """

    def __init__(self, history_limit: int = 500) -> None:
        # Replaced, never mutated in place: publish iterates a snapshot.
        self._handlers: tuple[EventHandler, ...] = ()
        self._history: list[LogEvent] = []
        self._history_limit = history_limit

    def subscribe(self, handler: EventHandler) -> None:
        """Register a handler for every subsequent event."""
        if handler not in self._handlers:
            self._handlers = (*self._handlers, handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        self._handlers = tuple(h for h in self._handlers if h != handler)

    def open_stream(self) -> EventStream:
        stream = EventStream(self)
        self.subscribe(stream._deliver)
        return stream

    async def publish(self, event: LogEvent) -> LogEvent:
        """Record an event and push it to every current subscriber."""
        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        for handler in self._handlers:
            if handler not in self._handlers:
                continue  # detached mid-delivery
            try:
                await handler(event)
            except Exception:
                _logger.exception("Event subscriber %r failed on %s", handler, event.kind.value)
        return event

    def history(
        self,
        kind: LogKind | str | None = None,
        run_id: str | None = None,
        limit: int = 50,
    ) -> list[LogEvent]:
        """Recent events, oldest first, optionally filtered."""
        events = self._history
        if kind is not None:
            kind = LogKind(kind)
            events = [e for e in events if e.kind == kind]
        if run_id is not None:
            events = [e for e in events if e.run_id == run_id]
        if limit <= 0:
            return []
        return list(events[-limit:])

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
