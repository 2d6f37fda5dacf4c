"""
Permission ledger client contract

The ledger is the authoritative, externally serialized source of truth.
Implementations confirm a mutation only when all of its preconditions
still hold, which turns every mutating call into a compare-and-swap.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from .events import EventFilter, LedgerEvent, LedgerView, Mutation
from .subscription import Subscription


class LedgerClient(ABC):
    """Already-connected client to the permission ledger"""

    @abstractmethod
    async def submit(self, mutation: Mutation) -> LedgerEvent:
        """
        Submit a conditional mutation.

        Returns the confirmed event. Raises LedgerRejectedError when a
        precondition no longer holds or the mutation id was already used.
        """

    @abstractmethod
    async def query(self, view: LedgerView, **params: Any) -> Any:
        """Read current state through one of the ledger's views"""

    @abstractmethod
    def subscribe(self, event_filter: Optional[EventFilter] = None) -> Subscription:
        """Stream of confirmed events, history first then live"""

    @abstractmethod
    async def history(self, from_sequence: int = 1) -> List[LedgerEvent]:
        """Confirmed events in sequence order"""
