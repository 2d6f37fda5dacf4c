"""
MedRec Security & Custody Module
Consent state machine and document custody for subject-owned records
kept on a permission ledger and a content-addressed store
"""

__version__ = "0.1.0"

# Core exports
from .config import CustodyConfig, StoreBackend, get_custody_config, update_custody_config
from .exceptions import CustodyError

# Ledger first: its local implementation pulls in the state projection,
# which needs the identity, consent and custody models
from .ledger import (
    EventFilter, LedgerClient, LedgerEvent, LedgerGateway, LedgerView,
    LocalLedger, Mutation, SqlEventStorage, InMemoryEventStorage, Subscription,
)

# Identity registry
from .identity import (
    CascadeReport, DeactivationCascade, Identity, IdentityRegistry, ProfileService, Role,
)

# Consent engine
from .consent import AccessConsentEngine, AccessGrant, GrantAction, GrantState

# Document custody
from .custody import CleanupFailure, Document, DocumentCustodyManager, OrphanSweeper, SweepReport

# Content store
from .store import ContentStore, InMemoryContentStore, IpfsHttpStore, create_content_store

# Reconciliation
from .reconcile import EventReconciliationLog, ReadReplica, StateProjection

# Policy
from .policy import AccessAuditLog, Permission, check_permission

# Wiring
from .service import CustodyServices, build_services

__all__ = [
    # Config
    "CustodyConfig",
    "StoreBackend",
    "get_custody_config",
    "update_custody_config",
    "CustodyError",

    # Ledger
    "EventFilter",
    "LedgerClient",
    "LedgerEvent",
    "LedgerGateway",
    "LedgerView",
    "LocalLedger",
    "Mutation",
    "SqlEventStorage",
    "InMemoryEventStorage",
    "Subscription",

    # Identity
    "CascadeReport",
    "DeactivationCascade",
    "Identity",
    "IdentityRegistry",
    "ProfileService",
    "Role",

    # Consent
    "AccessConsentEngine",
    "AccessGrant",
    "GrantAction",
    "GrantState",

    # Custody
    "CleanupFailure",
    "Document",
    "DocumentCustodyManager",
    "OrphanSweeper",
    "SweepReport",

    # Store
    "ContentStore",
    "InMemoryContentStore",
    "IpfsHttpStore",
    "create_content_store",

    # Reconciliation
    "EventReconciliationLog",
    "ReadReplica",
    "StateProjection",

    # Policy
    "AccessAuditLog",
    "Permission",
    "check_permission",

    # Wiring
    "CustodyServices",
    "build_services",
]
