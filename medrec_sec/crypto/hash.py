"""
Hashing utilities
Content addressing and hash chains for ledger and audit integrity
"""

import hashlib
from typing import Optional
import structlog

logger = structlog.get_logger(__name__)

GENESIS_SEED = b"genesis"


class HashError(Exception):
    """Base exception for hashing-related errors"""
    pass


def secure_hash(data: bytes, algorithm: str = 'sha256') -> str:
    """
    Create secure hash of data

    Args:
        data: Data to hash
        algorithm: Hash algorithm (sha256, sha512, blake2b)

    Returns:
        Hex-encoded hash string
    """
    if algorithm == 'sha256':
        hasher = hashlib.sha256()
    elif algorithm == 'sha512':
        hasher = hashlib.sha512()
    elif algorithm == 'blake2b':
        hasher = hashlib.blake2b()
    else:
        raise HashError(f"Unsupported hash algorithm: {algorithm}")

    hasher.update(data)
    return hasher.hexdigest()


def content_hash(data: bytes) -> str:
    """Content address of a blob: hex SHA-256 of its bytes"""
    return secure_hash(data, 'sha256')


def verify_data_integrity(data: bytes, expected_hash: str,
                          algorithm: str = 'sha256') -> bool:
    """True if data still hashes to expected_hash"""
    return secure_hash(data, algorithm) == expected_hash


class HashChain:
    """Running hash over appended entries; any rewrite changes every later link"""

    def __init__(self, initial_hash: Optional[str] = None):
        self.current_hash = initial_hash or secure_hash(GENESIS_SEED)
        self.chain_length = 0

    def link(self, data: bytes) -> str:
        """Hash that would result from appending data, without appending"""
        return secure_hash(self.current_hash.encode('utf-8') + data)

    def add_entry(self, data: bytes) -> str:
        self.current_hash = self.link(data)
        self.chain_length += 1

        logger.debug("Added hash chain entry",
                     length=self.chain_length,
                     hash=self.current_hash[:16])

        return self.current_hash
