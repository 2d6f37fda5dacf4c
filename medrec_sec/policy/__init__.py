"""
Policy enforcement module
Role permissions and the access audit trail
"""

from .rbac import Permission, ROLE_PERMISSIONS, role_has_permission, check_permission, require_permission
from .audit import AccessAuditEntry, AccessAuditLog

__all__ = [
    "Permission",
    "ROLE_PERMISSIONS",
    "role_has_permission",
    "check_permission",
    "require_permission",
    "AccessAuditEntry",
    "AccessAuditLog",
]
