"""
Permission ledger module
Client contract, local ledger, event model and event storage
"""

from .events import (
    EventFilter, LedgerEvent, LedgerView, Mutation,
    identity_key, grant_key, document_key,
)
from .client import LedgerClient
from .subscription import Subscription
from .storage import EventStorage, InMemoryEventStorage, SqlEventStorage
from .gateway import LedgerGateway
from .local import LocalLedger

__all__ = [
    "EventFilter",
    "LedgerEvent",
    "LedgerView",
    "Mutation",
    "identity_key",
    "grant_key",
    "document_key",
    "LedgerClient",
    "Subscription",
    "EventStorage",
    "InMemoryEventStorage",
    "SqlEventStorage",
    "LedgerGateway",
    "LocalLedger",
]
