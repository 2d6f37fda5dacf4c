"""
Orphan blob sweep

Unpins blobs that no document index entry or identity profile references.
Such blobs are left behind when an upload's index append fails after the
store accepted the bytes, or when a best-effort unpin did not go through.
Run it with candidates collected before the sweep starts, so blobs of
uploads still in flight are not considered.
"""

import asyncio
from typing import Iterable, Optional, Set
import structlog

from .locks import ContentLocks
from .models import SweepReport
from ..config import CustodyConfig, get_custody_config
from ..exceptions import CustodyError, StoreUnavailableError
from ..ledger.client import LedgerClient
from ..ledger.events import LedgerView
from ..ledger.gateway import LedgerGateway
from ..store.adapter import ContentStore

logger = structlog.get_logger(__name__)


class OrphanSweeper:
    """Reconciles the content store against the document index"""

    def __init__(self, ledger: LedgerClient, store: ContentStore,
                 config: Optional[CustodyConfig] = None,
                 locks: Optional[ContentLocks] = None):
        self.config = config or get_custody_config()
        self.gateway = LedgerGateway(ledger, self.config.ledger_timeout_seconds)
        self.store = store
        self.locks = locks or ContentLocks()

    async def _profile_refs(self) -> Set[str]:
        identities = await self.gateway.query(LedgerView.IDENTITIES, role=None, active_only=False)
        return {i.profile_ref for i in identities if i.profile_ref}

    async def sweep(self, candidate_hashes: Optional[Iterable[str]] = None) -> SweepReport:
        """Unpin unreferenced candidates; all pinned blobs when none are given"""
        if candidate_hashes is None:
            try:
                candidates = await asyncio.wait_for(self.store.list_pinned(), self.config.store_timeout_seconds)
            except asyncio.TimeoutError as exc:
                raise StoreUnavailableError("list_pinned", reason="timeout") from exc
        else:
            candidates = set(candidate_hashes)

        report = SweepReport(examined=len(candidates))
        profile_refs = await self._profile_refs()

        for content_hash in sorted(candidates):
            async with self.locks.hold(content_hash):
                documents = await self.gateway.query(LedgerView.DOCUMENTS_BY_HASH, content_hash=content_hash)
                if documents or content_hash in profile_refs:
                    report.referenced.append(content_hash)
                    continue
                try:
                    await asyncio.wait_for(self.store.unpin(content_hash), self.config.store_timeout_seconds)
                    report.unpinned.append(content_hash)
                except (CustodyError, asyncio.TimeoutError) as e:
                    logger.warning("Orphan unpin failed", content_hash=content_hash, error=str(e))
                    report.failed.append(content_hash)

        logger.info("Orphan sweep finished", examined=report.examined, referenced=len(report.referenced),
                    unpinned=len(report.unpinned), failed=len(report.failed))
        return report
