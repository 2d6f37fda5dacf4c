"""
In-process permission ledger

Serializes submissions behind a lock, checks every precondition against
the head sequence of its key, chains confirmed events by hash, persists
them through an EventStorage and fans them out to subscribers.
"""

import asyncio
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional
import structlog

from .client import LedgerClient
from .events import EventFilter, LedgerEvent, LedgerView, Mutation
from .storage import EventStorage, InMemoryEventStorage
from .subscription import Subscription
from ..crypto.hash import HashChain
from ..exceptions import LedgerRejectedError
from ..identity.models import Role
from ..reconcile.projection import StateProjection

logger = structlog.get_logger(__name__)


class LocalLedger(LedgerClient):
    """Ledger implementation for single-node deployments and tests"""

    def __init__(self, storage: Optional[EventStorage] = None,
                 confirm_delay: float = 0.0, block_size: int = 1):
        self.storage = storage or InMemoryEventStorage()
        self.confirm_delay = confirm_delay
        self.block_size = max(1, block_size)

        self._lock = asyncio.Lock()
        self._state = StateProjection()
        self._chain = HashChain()
        self._sequence = 0
        self._subscriptions: List[Subscription] = []

        self._views: Dict[LedgerView, Callable[..., Any]] = {
            LedgerView.IDENTITY: lambda address: self._state.get_identity(address),
            LedgerView.IDENTITIES: lambda role=None, active_only=True: self._state.list_identities(
                Role(role) if role is not None else None, active_only),
            LedgerView.GRANT: lambda subject, handler: self._state.get_grant(subject, handler),
            LedgerView.GRANTS_FOR_SUBJECT: lambda subject, state=None: self._state.grants_for_subject(subject, state),
            LedgerView.GRANTS_FOR_HANDLER: lambda handler, state=None: self._state.grants_for_handler(handler, state),
            LedgerView.DOCUMENT: lambda subject, content_hash: self._state.get_document(subject, content_hash),
            LedgerView.DOCUMENTS_FOR_SUBJECT: lambda subject: self._state.documents_for_subject(subject),
            LedgerView.DOCUMENTS_BY_HASH: lambda content_hash: self._state.documents_by_hash(content_hash),
            LedgerView.KEY_SEQUENCE: lambda key: self._state.sequence_of(key),
        }

        self._restore()

    def _restore(self) -> None:
        """Rebuild head state from persisted history"""
        events = self.storage.load_events()
        for event in events:
            self._state.apply(event)
            self._chain.add_entry(event.to_chain_string().encode('utf-8'))
            self._sequence = event.sequence
        if events:
            logger.info("Restored ledger history", events=len(events), head=self._sequence)

    @property
    def head(self) -> int:
        """Sequence of the last confirmed event"""
        return self._sequence

    async def submit(self, mutation: Mutation) -> LedgerEvent:
        if self.confirm_delay:
            # Cancellation here leaves the ledger untouched
            await asyncio.sleep(self.confirm_delay)

        async with self._lock:
            if self.storage.has_mutation(mutation.mutation_id):
                raise LedgerRejectedError(mutation.mutation_id, reason="duplicate_mutation")

            stale = sorted(
                key for key, expected in mutation.preconditions.items()
                if self._state.sequence_of(key) != expected
            )
            if stale:
                logger.info("Ledger rejected stale mutation",
                            mutation_id=mutation.mutation_id, kind=mutation.kind, stale_keys=stale)
                raise LedgerRejectedError(mutation.mutation_id, stale_keys=stale)

            event = self._confirm(mutation)
            for subscription in list(self._subscriptions):
                subscription.offer(event)

        logger.info("Ledger confirmed mutation",
                    sequence=event.sequence, kind=event.kind, key=event.key, actor=event.actor)
        return event

    def _confirm(self, mutation: Mutation) -> LedgerEvent:
        sequence = self._sequence + 1
        unsigned = LedgerEvent(
            sequence=sequence,
            block_number=(sequence - 1) // self.block_size + 1,
            tx_index=(sequence - 1) % self.block_size,
            mutation_id=mutation.mutation_id,
            kind=mutation.kind,
            actor=mutation.actor,
            key=mutation.key,
            payload=mutation.payload,
            timestamp=datetime.now(UTC),
            previous_hash=self._chain.current_hash,
        )
        chain_entry = unsigned.to_chain_string().encode('utf-8')
        event = unsigned.model_copy(update={"hash": self._chain.link(chain_entry)})

        # Persist first; a storage failure leaves head state unchanged
        self.storage.append_event(event)
        self._chain.add_entry(chain_entry)
        self._state.apply(event)
        self._sequence = sequence
        return event

    async def query(self, view: LedgerView, **params: Any) -> Any:
        reader = self._views[LedgerView(view)]
        result = reader(**params)
        if isinstance(result, list):
            return [item.model_copy(deep=True) for item in result]
        if hasattr(result, "model_copy"):
            return result.model_copy(deep=True)
        return result

    def subscribe(self, event_filter: Optional[EventFilter] = None) -> Subscription:
        subscription = Subscription(event_filter, on_close=self._unsubscribe)
        # History catch-up and registration happen without yielding, so no
        # confirmed event can fall between them
        subscription.offer_all(self.storage.load_events(subscription.event_filter.from_sequence))
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def history(self, from_sequence: int = 1) -> List[LedgerEvent]:
        return self.storage.load_events(from_sequence)

    def verify_chain(self) -> bool:
        """Recompute the hash chain over the stored history"""
        chain = HashChain()
        for event in self.storage.load_events():
            if event.previous_hash != chain.current_hash:
                logger.error("Ledger chain broken", sequence=event.sequence)
                return False
            chain.add_entry(event.to_chain_string().encode('utf-8'))
            if event.hash != chain.current_hash:
                logger.error("Ledger event hash mismatch", sequence=event.sequence)
                return False
        return True
