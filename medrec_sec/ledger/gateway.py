"""
Timeout and error mapping around a LedgerClient

Every ledger call made by the registry, the consent engine and the
custody manager goes through here: reads and writes are bounded by the
configured timeout, and a rejected precondition is reported as a stale
state transition. Writes are never retried.
"""

import asyncio
from typing import Any, List, Optional
import structlog

from .client import LedgerClient
from .events import LedgerEvent, LedgerView, Mutation
from ..exceptions import LedgerRejectedError, LedgerTimeoutError, StaleStateError

logger = structlog.get_logger(__name__)


class LedgerGateway:
    """Bounded, error-mapped access to the permission ledger"""

    def __init__(self, client: LedgerClient, timeout_seconds: Optional[float] = None):
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, operation: str, awaitable) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning("Ledger call timed out", operation=operation, timeout=self.timeout_seconds)
            raise LedgerTimeoutError(operation, self.timeout_seconds or 0.0) from exc

    async def query(self, view: LedgerView, **params: Any) -> Any:
        return await self._bounded("query", self.client.query(view, **params))

    async def key_sequence(self, key: str) -> int:
        return await self.query(LedgerView.KEY_SEQUENCE, key=key)

    async def history(self, from_sequence: int = 1) -> List[LedgerEvent]:
        return await self._bounded("history", self.client.history(from_sequence))

    async def submit(self, mutation: Mutation, transition: str) -> LedgerEvent:
        """Submit once; a lost compare-and-swap surfaces as StaleStateError"""
        try:
            return await self._bounded("submit", self.client.submit(mutation))
        except LedgerRejectedError as exc:
            stale_keys = exc.details.get("stale_keys")
            if stale_keys:
                logger.info("Mutation lost to a concurrent change",
                            transition=transition, stale_keys=stale_keys)
                raise StaleStateError(transition, stale_keys, {"mutation_id": mutation.mutation_id}) from exc
            raise
