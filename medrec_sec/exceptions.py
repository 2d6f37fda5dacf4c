"""
Custom Exceptions for the MedRec Security & Custody Module

Provides a unified exception hierarchy for identity management, consent
transitions, document custody and external collaborator failures.
Every error carries a machine-readable code and the offending identifiers
so a presentation layer can render its own message.
"""

from typing import Optional, Dict, Any

from .constants import ErrorCodes


class CustodyError(Exception):
    """
    Base exception for all custody module errors.

    Attributes:
        message: Default human-readable message
        error_code: Machine-readable error code
        details: Offending identifiers and context
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCodes.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# AUTHORIZATION ERRORS
# =============================================================================

class UnauthorizedError(CustodyError):
    """Raised when the caller lacks the required role or consent"""

    def __init__(
        self,
        action: str,
        caller: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        details["action"] = action
        if caller:
            details["caller"] = caller
        if reason:
            details["reason"] = reason
        super().__init__(
            message=f"Unauthorized: {action}",
            error_code=ErrorCodes.UNAUTHORIZED,
            details=details
        )


class RoleMismatchError(UnauthorizedError):
    """Raised when an identity does not hold the role an operation requires"""

    def __init__(self, address: str, expected_role: str, actual_role: str):
        super().__init__(
            action="role_check",
            caller=address,
            reason="role_mismatch",
            details={"expected_role": expected_role, "actual_role": actual_role}
        )
        self.error_code = ErrorCodes.ROLE_MISMATCH


class IdentityInactiveError(UnauthorizedError):
    """Raised when a deactivated identity is referenced by an operation"""

    def __init__(self, address: str):
        super().__init__(
            action="identity_check",
            reason="identity_inactive",
            details={"address": address}
        )
        self.error_code = ErrorCodes.IDENTITY_INACTIVE


class CannotDeactivateSelfError(UnauthorizedError):
    """Raised when an administrator tries to deactivate its own identity"""

    def __init__(self, address: str):
        super().__init__(action="deactivate_identity", caller=address, reason="self_deactivation")
        self.error_code = ErrorCodes.CANNOT_DEACTIVATE_SELF


class ProtectedIdentityError(UnauthorizedError):
    """Raised when the root administrator is targeted for deactivation"""

    def __init__(self, address: str, caller: Optional[str] = None):
        super().__init__(
            action="deactivate_identity",
            caller=caller,
            reason="protected_identity",
            details={"address": address}
        )
        self.error_code = ErrorCodes.PROTECTED_IDENTITY


# =============================================================================
# LOOKUP ERRORS
# =============================================================================

class NotFoundError(CustodyError):
    """Raised when a referenced identity, grant or document is absent"""

    def __init__(self, resource: str, identifier: Any, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["resource"] = resource
        details["identifier"] = identifier
        super().__init__(
            message=f"{resource} not found",
            error_code=ErrorCodes.NOT_FOUND,
            details=details
        )


class IdentityNotFoundError(NotFoundError):
    """Raised when no identity exists at an address"""

    def __init__(self, address: str, role_hint: Optional[str] = None):
        details = {"role_hint": role_hint} if role_hint else None
        super().__init__("identity", address, details)


class DocumentNotFoundError(NotFoundError):
    """Raised when no document index entry exists for a content hash"""

    def __init__(self, subject: str, content_hash: str):
        super().__init__("document", content_hash, {"subject": subject})


class AlreadyExistsError(CustodyError):
    """Raised when creating something that already exists"""

    def __init__(self, resource: str, identifier: Any, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["resource"] = resource
        details["identifier"] = identifier
        super().__init__(
            message=f"{resource} already exists",
            error_code=ErrorCodes.ALREADY_EXISTS,
            details=details
        )


# =============================================================================
# STATE MACHINE ERRORS
# =============================================================================

class InvalidStateTransitionError(CustodyError):
    """Raised when a state machine precondition is not met"""

    def __init__(
        self,
        transition: str,
        current_state: str,
        expected_states: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        details["transition"] = transition
        details["current_state"] = current_state
        if expected_states:
            details["expected_states"] = expected_states
        super().__init__(
            message=f"Invalid transition {transition} from {current_state}",
            error_code=ErrorCodes.INVALID_STATE_TRANSITION,
            details=details
        )


class StaleStateError(InvalidStateTransitionError):
    """Raised when the ledger confirmed a conflicting mutation first"""

    def __init__(self, transition: str, keys: list, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["stale_keys"] = keys
        super().__init__(transition, "stale", details=details)
        self.error_code = ErrorCodes.STALE_STATE


# =============================================================================
# EXTERNAL FAILURES
# =============================================================================

class ExternalFailureError(CustodyError):
    """Base exception for ledger and store failures"""

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCodes.EXTERNAL_FAILURE,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if operation:
            details["operation"] = operation
        super().__init__(message, error_code, details)

    @property
    def is_retryable(self) -> bool:
        """Only failures of read operations may be retried by the caller"""
        return self.details.get("operation") in {"query", "get", "history"}


class LedgerRejectedError(ExternalFailureError):
    """Raised by a ledger client when a mutation's preconditions fail"""

    def __init__(self, mutation_id: str, stale_keys: Optional[list] = None, reason: Optional[str] = None):
        details: Dict[str, Any] = {"mutation_id": mutation_id}
        if stale_keys:
            details["stale_keys"] = stale_keys
        if reason:
            details["reason"] = reason
        super().__init__("Ledger rejected mutation", ErrorCodes.LEDGER_REJECTED, "submit", details)


class LedgerTimeoutError(ExternalFailureError):
    """Raised when the ledger does not confirm within the configured timeout"""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            "Ledger call timed out",
            ErrorCodes.LEDGER_TIMEOUT,
            operation,
            {"timeout_seconds": timeout_seconds}
        )


class StoreWriteFailedError(ExternalFailureError):
    """Raised when the content store does not confirm a write"""

    def __init__(self, reason: Optional[str] = None):
        details = {"reason": reason} if reason else None
        super().__init__("Content store write failed", ErrorCodes.STORE_WRITE_FAILED, "put", details)


class StoreUnavailableError(ExternalFailureError):
    """Raised when the content store cannot be reached"""

    def __init__(self, operation: str, reason: Optional[str] = None):
        details = {"reason": reason} if reason else None
        super().__init__("Content store unavailable", ErrorCodes.STORE_UNAVAILABLE, operation, details)


class BlobNotFoundError(ExternalFailureError):
    """Raised when the content store holds no bytes for a hash"""

    def __init__(self, content_hash: str):
        super().__init__(
            "Blob not found in content store",
            ErrorCodes.BLOB_NOT_FOUND,
            "get",
            {"content_hash": content_hash}
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(CustodyError):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, ErrorCodes.VALIDATION_ERROR, details)
