"""
Access-Consent module
Grant state machine between subjects and handlers
"""

from .models import AccessGrant, GrantAction, GrantState, GRANT_TRANSITIONS
from .engine import AccessConsentEngine

__all__ = [
    "AccessGrant",
    "GrantAction",
    "GrantState",
    "GRANT_TRANSITIONS",
    "AccessConsentEngine",
]
