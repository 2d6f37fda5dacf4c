"""
Ledger event models
Mutations submitted to the permission ledger and the confirmed events it emits
"""

import json
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Set
from pydantic import BaseModel, Field

from ..constants import StateKeyPrefixes
from ..utils.ids import generate_mutation_id


def identity_key(address: str) -> str:
    """State key of an identity record"""
    return StateKeyPrefixes.SEPARATOR.join((StateKeyPrefixes.IDENTITY, address))


def grant_key(subject: str, handler: str) -> str:
    """State key of a (subject, handler) grant"""
    return StateKeyPrefixes.SEPARATOR.join((StateKeyPrefixes.GRANT, subject, handler))


def document_key(subject: str, content_hash: str) -> str:
    """State key of a (subject, content hash) document index entry"""
    return StateKeyPrefixes.SEPARATOR.join((StateKeyPrefixes.DOCUMENT, subject, content_hash))


class LedgerView(str, Enum):
    """Read views answered by LedgerClient.query"""
    IDENTITY = "identity"                          # address
    IDENTITIES = "identities"                      # role (optional), active_only
    GRANT = "grant"                                # subject, handler
    GRANTS_FOR_SUBJECT = "grants_for_subject"      # subject
    GRANTS_FOR_HANDLER = "grants_for_handler"      # handler
    DOCUMENT = "document"                          # subject, content_hash
    DOCUMENTS_FOR_SUBJECT = "documents_for_subject"  # subject
    DOCUMENTS_BY_HASH = "documents_by_hash"        # content_hash
    KEY_SEQUENCE = "key_sequence"                  # key


class Mutation(BaseModel):
    """
    A conditional state change submitted to the ledger.

    preconditions maps state keys to the sequence the submitter read; the
    ledger confirms the mutation only if every key is still at that
    sequence (0 means the key has never been written).
    """
    mutation_id: str = Field(default_factory=generate_mutation_id)
    kind: str
    actor: str
    key: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    preconditions: Dict[str, int] = Field(default_factory=dict)


class LedgerEvent(BaseModel):
    """Immutable confirmed mutation; totally ordered by sequence"""
    model_config = {"frozen": True}

    sequence: int
    block_number: int
    tx_index: int
    mutation_id: str
    kind: str
    actor: str
    key: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Integrity
    previous_hash: str = ""
    hash: str = ""

    def to_chain_string(self) -> str:
        """Canonical form used for the hash chain"""
        chain_data = {
            "sequence": self.sequence,
            "block_number": self.block_number,
            "tx_index": self.tx_index,
            "mutation_id": self.mutation_id,
            "kind": self.kind,
            "actor": self.actor,
            "key": self.key,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }
        return json.dumps(chain_data, sort_keys=True, separators=(',', ':'), default=str)

    @property
    def addresses(self) -> FrozenSet[str]:
        """Addresses involved in this event (key parts that are addresses, plus actor)"""
        prefix, *parts = self.key.split(StateKeyPrefixes.SEPARATOR)
        if prefix == StateKeyPrefixes.DOCUMENT:
            # document:<subject>:<content hash>
            parts = parts[:1]
        involved = set(parts)
        involved.add(self.actor)
        return frozenset(involved)


class EventFilter(BaseModel):
    """Selects events for a subscription"""
    kinds: Optional[Set[str]] = None
    addresses: Optional[Set[str]] = None
    from_sequence: int = Field(default=1, description="First sequence to deliver, history included")

    def matches(self, event: LedgerEvent) -> bool:
        if event.sequence < self.from_sequence:
            return False
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.addresses is not None and not (event.addresses & self.addresses):
            return False
        return True
