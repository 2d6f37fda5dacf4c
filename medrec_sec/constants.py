"""
Constants for the MedRec Security & Custody Module

Centralized identifiers for ledger events, state keys, error codes
and access audit actions.
"""

from typing import Final, Tuple

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "medrec-security-custody"
SERVICE_VERSION: Final[str] = "0.1.0"

# =============================================================================
# LEDGER EVENT KINDS
# =============================================================================

class LedgerEventKinds:
    """Names of confirmed ledger mutations"""
    # Identity registry
    IDENTITY_ADDED: Final[str] = "identity_added"
    IDENTITY_UPDATED: Final[str] = "identity_updated"
    IDENTITY_DEACTIVATED: Final[str] = "identity_deactivated"

    # Consent engine
    ACCESS_REQUESTED: Final[str] = "access_requested"
    ACCESS_APPROVED: Final[str] = "access_approved"
    ACCESS_REJECTED: Final[str] = "access_rejected"
    ACCESS_REVOKED: Final[str] = "access_revoked"

    # Document custody
    DOCUMENT_ADDED: Final[str] = "document_added"
    DOCUMENT_REMOVED: Final[str] = "document_removed"

    IDENTITY: Final[Tuple[str, ...]] = (IDENTITY_ADDED, IDENTITY_UPDATED, IDENTITY_DEACTIVATED)
    CONSENT: Final[Tuple[str, ...]] = (ACCESS_REQUESTED, ACCESS_APPROVED, ACCESS_REJECTED, ACCESS_REVOKED)
    DOCUMENT: Final[Tuple[str, ...]] = (DOCUMENT_ADDED, DOCUMENT_REMOVED)


# =============================================================================
# STATE KEYS
# =============================================================================

class StateKeyPrefixes:
    """Prefixes of the keys the ledger versions for compare-and-swap"""
    IDENTITY: Final[str] = "identity"
    GRANT: Final[str] = "grant"
    DOCUMENT: Final[str] = "document"

    SEPARATOR: Final[str] = ":"


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCodes:
    """Standardized error codes for the custody module"""
    UNKNOWN_ERROR: Final[str] = "UNKNOWN_ERROR"
    VALIDATION_ERROR: Final[str] = "VALIDATION_ERROR"

    # Authorization errors
    UNAUTHORIZED: Final[str] = "UNAUTHORIZED"
    ROLE_MISMATCH: Final[str] = "ROLE_MISMATCH"
    IDENTITY_INACTIVE: Final[str] = "IDENTITY_INACTIVE"
    CANNOT_DEACTIVATE_SELF: Final[str] = "CANNOT_DEACTIVATE_SELF"
    PROTECTED_IDENTITY: Final[str] = "PROTECTED_IDENTITY"

    # Lookup errors
    NOT_FOUND: Final[str] = "NOT_FOUND"
    ALREADY_EXISTS: Final[str] = "ALREADY_EXISTS"

    # State machine errors
    INVALID_STATE_TRANSITION: Final[str] = "INVALID_STATE_TRANSITION"
    STALE_STATE: Final[str] = "STALE_STATE"

    # External collaborator errors
    EXTERNAL_FAILURE: Final[str] = "EXTERNAL_FAILURE"
    LEDGER_REJECTED: Final[str] = "LEDGER_REJECTED"
    LEDGER_TIMEOUT: Final[str] = "LEDGER_TIMEOUT"
    STORE_WRITE_FAILED: Final[str] = "STORE_WRITE_FAILED"
    STORE_UNAVAILABLE: Final[str] = "STORE_UNAVAILABLE"
    BLOB_NOT_FOUND: Final[str] = "BLOB_NOT_FOUND"


# =============================================================================
# ACCESS AUDIT ACTIONS
# =============================================================================

class AccessActions:
    """Read actions recorded by the access audit log"""
    LIST_DOCUMENTS: Final[str] = "list_documents"
    FETCH_DOCUMENT: Final[str] = "fetch_document"

    ALLOWED: Final[str] = "allowed"
    DENIED: Final[str] = "denied"


# =============================================================================
# PROFILE BLOBS
# =============================================================================

class ProfileDefaults:
    """Profile blob conventions"""
    RAW_DATA_KEY: Final[str] = "rawData"
    ENCODING: Final[str] = "utf-8"
