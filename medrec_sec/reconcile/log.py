"""
Event Reconciliation Log
Rebuilds identity/grant/document state from the ledger's ordered history
"""

from typing import Iterable, List, Optional
import structlog

from .projection import StateProjection
from ..config import CustodyConfig, get_custody_config
from ..ledger.client import LedgerClient
from ..ledger.events import EventFilter, LedgerEvent
from ..ledger.gateway import LedgerGateway
from ..ledger.subscription import Subscription
from ..utils.validators import validate_address

logger = structlog.get_logger(__name__)


class EventReconciliationLog:
    """Replay and subscription access to the append-only event history"""

    def __init__(self, ledger: LedgerClient, config: Optional[CustodyConfig] = None):
        self.config = config or get_custody_config()
        self.ledger = ledger
        self.gateway = LedgerGateway(ledger, self.config.ledger_timeout_seconds)

    async def history(self, from_sequence: int = 1) -> List[LedgerEvent]:
        return await self.gateway.history(from_sequence)

    async def events_for(self, address: str, kinds: Optional[Iterable[str]] = None) -> List[LedgerEvent]:
        """Past events involving an address, oldest first"""
        event_filter = EventFilter(
            addresses={validate_address(address)},
            kinds=set(kinds) if kinds is not None else None,
        )
        return [event for event in await self.history() if event_filter.matches(event)]

    @staticmethod
    def replay(events: Iterable[LedgerEvent], in_arrival_order: bool = False) -> StateProjection:
        """
        Project events into fresh state.

        By default events are sorted by sequence first. With in_arrival_order
        they are applied as given; the per-key sequence rule makes the
        result identical either way.
        """
        projection = StateProjection()
        if in_arrival_order:
            for event in events:
                projection.apply(event)
        else:
            projection.apply_all(list(events))
        return projection

    async def rebuild(self) -> StateProjection:
        """Current state rebuilt from the full history"""
        events = await self.history()
        projection = self.replay(events)
        logger.info("Rebuilt state from history", events=len(events),
                    last_sequence=projection.last_sequence,
                    identities=len(projection.identities), grants=len(projection.grants),
                    documents=len(projection.documents))
        return projection

    def subscribe(self, event_filter: Optional[EventFilter] = None) -> Subscription:
        """Live stream of confirmed events, history catch-up first"""
        return self.ledger.subscribe(event_filter)
