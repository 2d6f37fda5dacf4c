"""
Identity/Role Registry module
Address -> role/active records, profiles and the deactivation cascade
"""

from .models import Identity, Role
from .cascade import CascadeReport, DeactivationCascade
from .registry import IdentityRegistry
from .profiles import ProfileService

__all__ = [
    "Identity",
    "Role",
    "CascadeReport",
    "DeactivationCascade",
    "IdentityRegistry",
    "ProfileService",
]
