"""
State projection over the ledger event history

Applies confirmed events to in-memory identity, grant and document tables.
Every event carries the full resulting record for its key, so the rule is
simply "highest sequence per key wins": an event at or below the sequence
already applied for its key is ignored. Removed documents leave their
sequence behind as a tombstone, so an older add arriving late can never
resurrect a later removal.
"""

from typing import Callable, Dict, List, Optional, Tuple
import structlog

from ..constants import LedgerEventKinds
from ..consent.models import AccessGrant, GrantState
from ..custody.models import Document
from ..identity.models import Identity, Role
from ..ledger.events import LedgerEvent

logger = structlog.get_logger(__name__)


class StateProjection:
    """Current identity/grant/document state derived from ledger events"""

    def __init__(self):
        self.identities: Dict[str, Identity] = {}
        self.grants: Dict[Tuple[str, str], AccessGrant] = {}
        self.documents: Dict[Tuple[str, str], Document] = {}
        self.key_sequences: Dict[str, int] = {}
        self.last_sequence = 0

        self._appliers: Dict[str, Callable[[LedgerEvent], None]] = {
            LedgerEventKinds.IDENTITY_ADDED: self._apply_identity,
            LedgerEventKinds.IDENTITY_UPDATED: self._apply_identity,
            LedgerEventKinds.IDENTITY_DEACTIVATED: self._apply_identity,
            LedgerEventKinds.ACCESS_REQUESTED: self._apply_grant,
            LedgerEventKinds.ACCESS_APPROVED: self._apply_grant,
            LedgerEventKinds.ACCESS_REJECTED: self._apply_grant,
            LedgerEventKinds.ACCESS_REVOKED: self._apply_grant,
            LedgerEventKinds.DOCUMENT_ADDED: self._apply_document_added,
            LedgerEventKinds.DOCUMENT_REMOVED: self._apply_document_removed,
        }

    # ------------------------------------------------------------------
    # Applying events
    # ------------------------------------------------------------------

    def apply(self, event: LedgerEvent) -> bool:
        """Apply one event; returns False when it is superseded or unknown"""
        applier = self._appliers.get(event.kind)
        if applier is None:
            logger.warning("Ignoring unknown ledger event kind", kind=event.kind, sequence=event.sequence)
            return False

        if event.sequence <= self.key_sequences.get(event.key, 0):
            logger.debug("Skipping superseded event", key=event.key, sequence=event.sequence)
            return False

        applier(event)
        self.key_sequences[event.key] = event.sequence
        self.last_sequence = max(self.last_sequence, event.sequence)
        return True

    def apply_all(self, events: List[LedgerEvent]) -> int:
        """Apply events in sequence order; returns how many took effect"""
        return sum(1 for event in sorted(events, key=lambda e: e.sequence) if self.apply(event))

    def _apply_identity(self, event: LedgerEvent) -> None:
        identity = Identity.model_validate({**event.payload["identity"], "sequence": event.sequence})
        self.identities[identity.address] = identity

    def _apply_grant(self, event: LedgerEvent) -> None:
        grant = AccessGrant.model_validate({**event.payload["grant"], "sequence": event.sequence})
        self.grants[(grant.subject, grant.handler)] = grant

    def _apply_document_added(self, event: LedgerEvent) -> None:
        document = Document.model_validate({**event.payload["document"], "sequence": event.sequence})
        self.documents[(document.subject, document.content_hash)] = document

    def _apply_document_removed(self, event: LedgerEvent) -> None:
        self.documents.pop((event.payload["subject"], event.payload["content_hash"]), None)

    # ------------------------------------------------------------------
    # Reading state
    # ------------------------------------------------------------------

    def sequence_of(self, key: str) -> int:
        return self.key_sequences.get(key, 0)

    def get_identity(self, address: str) -> Optional[Identity]:
        return self.identities.get(address)

    def list_identities(self, role: Optional[Role] = None, active_only: bool = True) -> List[Identity]:
        return [
            identity for identity in self.identities.values()
            if (role is None or identity.role == role) and (identity.active or not active_only)
        ]

    def get_grant(self, subject: str, handler: str) -> Optional[AccessGrant]:
        return self.grants.get((subject, handler))

    def grants_for_subject(self, subject: str, state: Optional[GrantState] = None) -> List[AccessGrant]:
        return [
            grant for (s, _), grant in self.grants.items()
            if s == subject and (state is None or grant.state == state)
        ]

    def grants_for_handler(self, handler: str, state: Optional[GrantState] = None) -> List[AccessGrant]:
        return [
            grant for (_, h), grant in self.grants.items()
            if h == handler and (state is None or grant.state == state)
        ]

    def get_document(self, subject: str, content_hash: str) -> Optional[Document]:
        return self.documents.get((subject, content_hash))

    def documents_for_subject(self, subject: str) -> List[Document]:
        docs = [doc for (s, _), doc in self.documents.items() if s == subject]
        return sorted(docs, key=lambda d: d.sequence)

    def documents_by_hash(self, content_hash: str) -> List[Document]:
        return [doc for (_, h), doc in self.documents.items() if h == content_hash]

    def snapshot(self) -> Dict[str, object]:
        """Plain-data view used to compare projections"""
        return {
            "last_sequence": self.last_sequence,
            "identities": {a: i.model_dump(mode="json") for a, i in sorted(self.identities.items())},
            "grants": {f"{s}/{h}": g.model_dump(mode="json") for (s, h), g in sorted(self.grants.items())},
            "documents": {f"{s}/{c}": d.model_dump(mode="json") for (s, c), d in sorted(self.documents.items())},
        }
