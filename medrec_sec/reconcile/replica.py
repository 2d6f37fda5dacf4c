"""
Read replica
Keeps a state projection current by following a ledger subscription.
Serves views only; side-effecting authorization always reads the ledger.
"""

import asyncio
from typing import Any, Dict, Optional
import structlog

from .projection import StateProjection
from ..ledger.client import LedgerClient
from ..ledger.events import EventFilter
from ..ledger.subscription import Subscription

logger = structlog.get_logger(__name__)


class ReadReplica:
    """Projection refreshed on every confirmed event"""

    def __init__(self, ledger: LedgerClient, event_filter: Optional[EventFilter] = None):
        self.ledger = ledger
        self.event_filter = event_filter
        self.projection = StateProjection()
        self._subscription: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self._changed = asyncio.Condition()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._subscription = self.ledger.subscribe(self.event_filter)
        self._task = asyncio.create_task(self._follow())
        logger.info("Read replica started")

    async def _follow(self) -> None:
        async for event in self._subscription:
            self.projection.apply(event)
            async with self._changed:
                self._changed.notify_all()

    async def wait_until(self, sequence: int, timeout: Optional[float] = None) -> None:
        """Block until the replica has seen sequence; raises asyncio.TimeoutError"""
        async def _caught_up() -> None:
            async with self._changed:
                await self._changed.wait_for(lambda: self.projection.last_sequence >= sequence)

        await asyncio.wait_for(_caught_up(), timeout)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Read replica stopped", last_sequence=self.projection.last_sequence)

    def snapshot(self) -> Dict[str, Any]:
        return self.projection.snapshot()

    async def __aenter__(self) -> "ReadReplica":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
