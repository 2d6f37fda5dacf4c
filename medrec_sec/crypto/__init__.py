"""
Hashing utilities for the custody module
Content addressing and tamper-evident chains
"""

from .hash import (
    HashError,
    HashChain,
    secure_hash,
    content_hash,
    verify_data_integrity,
)

__all__ = [
    "HashError",
    "HashChain",
    "secure_hash",
    "content_hash",
    "verify_data_integrity",
]
