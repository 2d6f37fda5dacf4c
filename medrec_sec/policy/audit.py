"""
Access audit log
Tamper-evident trail of document read decisions (list/fetch)
"""

from typing import Dict, Any, Optional, List
from datetime import datetime, UTC
from pydantic import BaseModel, Field
import json
import structlog

from ..constants import AccessActions
from ..crypto.hash import HashChain, secure_hash
from ..utils.ids import generate_audit_id

logger = structlog.get_logger(__name__)


class AccessAuditEntry(BaseModel):
    """Individual read decision"""
    id: str = Field(default_factory=generate_audit_id)
    action: str
    outcome: str  # allowed, denied
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    subject: str
    caller: str
    content_hash: Optional[str] = None
    reason: Optional[str] = None

    # Integrity
    hash: Optional[str] = None
    previous_hash: Optional[str] = None

    def to_audit_string(self) -> str:
        """Convert to string for hashing"""
        audit_data = {
            "id": self.id,
            "action": self.action,
            "outcome": self.outcome,
            "timestamp": self.timestamp.isoformat(),
            "subject": self.subject,
            "caller": self.caller,
            "content_hash": self.content_hash,
            "reason": self.reason,
        }
        return json.dumps(audit_data, sort_keys=True, separators=(',', ':'))

    def compute_hash(self, previous_hash: str) -> str:
        """Compute hash for integrity verification"""
        return secure_hash(f"{previous_hash}:{self.to_audit_string()}".encode('utf-8'))


class AccessAuditLog:
    """Append-only audit of read decisions with a hash chain"""

    def __init__(self):
        self.entries: List[AccessAuditEntry] = []
        self.hash_chain = HashChain()

    def record(self, action: str, outcome: str, subject: str, caller: str,
               content_hash: Optional[str] = None, reason: Optional[str] = None) -> AccessAuditEntry:
        """Append a read decision"""
        entry = AccessAuditEntry(
            action=action,
            outcome=outcome,
            subject=subject,
            caller=caller,
            content_hash=content_hash,
            reason=reason,
        )
        entry.previous_hash = self.hash_chain.current_hash
        entry.hash = entry.compute_hash(entry.previous_hash)
        self.hash_chain.current_hash = entry.hash
        self.hash_chain.chain_length += 1
        self.entries.append(entry)

        log = logger.info if outcome == AccessActions.ALLOWED else logger.warning
        log("Access decision recorded", action=action, outcome=outcome,
            subject=subject, caller=caller, content_hash=content_hash)
        return entry

    def get_entries(self, subject: Optional[str] = None, caller: Optional[str] = None,
                    outcome: Optional[str] = None, limit: int = 100) -> List[AccessAuditEntry]:
        """Retrieve entries with filters (newest first)"""
        filtered = [
            e for e in self.entries
            if (subject is None or e.subject == subject)
            and (caller is None or e.caller == caller)
            and (outcome is None or e.outcome == outcome)
        ]
        return list(reversed(filtered))[:limit]

    def verify_integrity(self) -> bool:
        """Verify audit trail integrity"""
        previous_hash = HashChain().current_hash
        for entry in self.entries:
            if entry.previous_hash != previous_hash or entry.hash != entry.compute_hash(previous_hash):
                logger.error("Audit integrity violation", entry_id=entry.id)
                return False
            previous_hash = entry.hash

        logger.info("Audit integrity verified", entry_count=len(self.entries))
        return True

    def export(self, subject: Optional[str] = None) -> Dict[str, Any]:
        """Export audit trail for compliance"""
        entries = [e for e in self.entries if subject is None or e.subject == subject]
        return {
            "export_timestamp": datetime.now(UTC).isoformat(),
            "subject": subject,
            "entry_count": len(entries),
            "entries": [e.model_dump(mode="json") for e in entries],
            "integrity_verified": self.verify_integrity(),
        }
