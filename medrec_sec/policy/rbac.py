"""
Role-Based Access Control
Fixed role -> permission table for subjects, handlers and administrators
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional
import structlog

from ..exceptions import UnauthorizedError
from ..identity.models import Identity, Role

logger = structlog.get_logger(__name__)


class Permission(str, Enum):
    """System permissions"""
    # Identity management
    MANAGE_IDENTITIES = "manage_identities"
    UPDATE_OWN_IDENTITY = "update_own_identity"

    # Consent lifecycle
    REQUEST_ACCESS = "request_access"
    DECIDE_ACCESS = "decide_access"          # approve/reject own pending requests
    REVOKE_OWN_GRANT = "revoke_own_grant"
    CLEANUP_GRANTS = "cleanup_grants"        # reject/revoke on a subject's behalf

    # Document custody
    MANAGE_OWN_DOCUMENTS = "manage_own_documents"
    WRITE_WITH_CONSENT = "write_with_consent"
    READ_WITH_CONSENT = "read_with_consent"
    READ_ANY_DOCUMENTS = "read_any_documents"
    DELETE_ANY_DOCUMENT = "delete_any_document"


ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.SUBJECT: frozenset({
        Permission.UPDATE_OWN_IDENTITY,
        Permission.DECIDE_ACCESS,
        Permission.REVOKE_OWN_GRANT,
        Permission.MANAGE_OWN_DOCUMENTS,
    }),
    Role.HANDLER: frozenset({
        Permission.UPDATE_OWN_IDENTITY,
        Permission.REQUEST_ACCESS,
        Permission.WRITE_WITH_CONSENT,
        Permission.READ_WITH_CONSENT,
    }),
    Role.ADMINISTRATOR: frozenset({
        Permission.MANAGE_IDENTITIES,
        Permission.UPDATE_OWN_IDENTITY,
        Permission.CLEANUP_GRANTS,
        Permission.READ_ANY_DOCUMENTS,
        Permission.DELETE_ANY_DOCUMENT,
    }),
}


def role_has_permission(role: Role, permission: Permission) -> bool:
    """Check if role carries a permission"""
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def check_permission(identity: Optional[Identity], permission: Permission) -> bool:
    """Check if an active identity holds a permission through its role"""
    if identity is None or not identity.active:
        return False
    return role_has_permission(identity.role, permission)


def require_permission(identity: Optional[Identity], permission: Permission,
                       action: str, caller: Optional[str] = None) -> Identity:
    """Return identity if it holds permission; raise UnauthorizedError otherwise"""
    if check_permission(identity, permission):
        return identity

    if identity is None:
        reason = "unknown_caller"
    elif not identity.active:
        reason = "caller_inactive"
    else:
        reason = "missing_permission"

    logger.warning("Permission denied", action=action, caller=caller,
                   permission=permission.value, reason=reason)
    raise UnauthorizedError(action, caller=caller, reason=reason,
                            details={"permission": permission.value})
