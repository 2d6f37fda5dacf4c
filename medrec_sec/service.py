"""
Service wiring
Builds the registry, consent engine, custody manager and their collaborators
around one ledger client and one content store
"""

from typing import Optional
import structlog

from .config import CustodyConfig, get_custody_config
from .consent.engine import AccessConsentEngine
from .custody.locks import ContentLocks
from .custody.manager import DocumentCustodyManager
from .custody.sweep import OrphanSweeper
from .identity.cascade import DeactivationCascade
from .identity.profiles import ProfileService
from .identity.registry import IdentityRegistry
from .ledger.client import LedgerClient
from .ledger.local import LocalLedger
from .ledger.storage import SqlEventStorage
from .policy.audit import AccessAuditLog
from .reconcile.log import EventReconciliationLog
from .store.adapter import ContentStore, create_content_store

logger = structlog.get_logger(__name__)


class CustodyServices:
    """Wired core components sharing one ledger and one store"""

    def __init__(self, ledger: LedgerClient, store: ContentStore,
                 config: Optional[CustodyConfig] = None):
        self.config = config or get_custody_config()
        self.ledger = ledger
        self.store = store

        self.registry = IdentityRegistry(ledger, self.config)
        self.consent = AccessConsentEngine(ledger, self.registry, self.config)
        self.audit = AccessAuditLog()
        self.content_locks = ContentLocks()
        self.custody = DocumentCustodyManager(ledger, self.registry, self.consent, store,
                                              self.config, self.audit, self.content_locks)
        self.registry.attach_cascade(DeactivationCascade(self.consent, self.custody))

        self.profiles = ProfileService(store, self.config)
        self.reconciliation = EventReconciliationLog(ledger, self.config)
        self.sweeper = OrphanSweeper(ledger, store, self.config, self.content_locks)

    async def start(self) -> None:
        root = await self.registry.bootstrap()
        logger.info("Custody services ready", root_admin=root.address)

    async def close(self) -> None:
        await self.store.close()


def build_services(ledger: Optional[LedgerClient] = None, store: Optional[ContentStore] = None,
                   config: Optional[CustodyConfig] = None) -> CustodyServices:
    """Wire services; defaults to a SQL-backed local ledger and the configured store"""
    config = config or get_custody_config()
    if ledger is None:
        ledger = LocalLedger(SqlEventStorage(config.ledger_database_url))
    if store is None:
        store = create_content_store(config)
    return CustodyServices(ledger, store, config)
