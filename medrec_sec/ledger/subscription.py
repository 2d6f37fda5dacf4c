"""
Cancellable subscription to confirmed ledger events
"""

import asyncio
from typing import Callable, List, Optional
import structlog

from .events import EventFilter, LedgerEvent

logger = structlog.get_logger(__name__)

_CLOSED = object()


class Subscription:
    """
    Lazy, potentially infinite stream of confirmed events.

    Iterate with ``async for``; ``close()`` ends the iteration for every
    consumer. Usable as an async context manager.
    """

    def __init__(self, event_filter: Optional[EventFilter] = None,
                 on_close: Optional[Callable[["Subscription"], None]] = None):
        self.event_filter = event_filter or EventFilter()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False
        self.last_delivered = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: LedgerEvent) -> bool:
        """Queue an event if it matches the filter; called by the ledger"""
        if self._closed or not self.event_filter.matches(event):
            return False
        self._queue.put_nowait(event)
        return True

    def offer_all(self, events: List[LedgerEvent]) -> None:
        for event in events:
            self.offer(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)
        logger.debug("Subscription closed", last_delivered=self.last_delivered)

    async def next_event(self, timeout: Optional[float] = None) -> Optional[LedgerEvent]:
        """Next event, or None once closed; raises asyncio.TimeoutError on timeout"""
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # Keep the sentinel for any other waiting consumer
            self._queue.put_nowait(_CLOSED)
            return None
        self.last_delivered = item.sequence
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> LedgerEvent:
        event = await self.next_event()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
