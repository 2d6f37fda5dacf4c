"""
Input validators for the custody module

Provides validation utilities for ledger addresses, display names,
document names, content hashes and upload payloads.
"""

import re
from typing import Any, Optional

from ..exceptions import ValidationError

# =============================================================================
# REGEX PATTERNS
# =============================================================================

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
CONTENT_HASH_PATTERN = re.compile(r"^[A-Za-z0-9]{16,128}$")
CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x1f\x7f]")

MAX_DISPLAY_NAME_LENGTH = 128
MAX_DOCUMENT_NAME_LENGTH = 255

# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def normalize_address(address: str) -> str:
    """Lower-case an address so comparisons are case-insensitive"""
    return address.strip().lower()


def validate_address(address: Any, field_name: str = "address") -> str:
    """
    Validate and normalize a ledger address.

    Args:
        address: Address to validate
        field_name: Field name for error messages

    Returns:
        Normalized (lower-case) address

    Raises:
        ValidationError: If the address is missing or malformed
    """
    if address is None or (isinstance(address, str) and not address.strip()):
        raise ValidationError(f"{field_name} is required", field=field_name)

    if not isinstance(address, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)

    if not ADDRESS_PATTERN.match(address.strip()):
        raise ValidationError(f"{field_name} is not a valid address", field=field_name)

    return normalize_address(address)


def _validate_label(value: Any, field_name: str, max_length: int) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field_name} is required", field=field_name)

    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)

    value = value.strip()

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} exceeds maximum length",
            field=field_name,
            details={"max_length": max_length}
        )

    if CONTROL_CHARS_PATTERN.search(value):
        raise ValidationError(f"{field_name} contains control characters", field=field_name)

    return value


def validate_display_name(name: Any, field_name: str = "display_name") -> str:
    """Validate an identity display name"""
    return _validate_label(name, field_name, MAX_DISPLAY_NAME_LENGTH)


def validate_document_name(name: Any, field_name: str = "name") -> str:
    """Validate a document name (file name as shown to users)"""
    name = _validate_label(name, field_name, MAX_DOCUMENT_NAME_LENGTH)
    if "/" in name or "\\" in name:
        raise ValidationError(f"{field_name} must not contain path separators", field=field_name)
    return name


def validate_content_hash(content_hash: Any, field_name: str = "content_hash") -> str:
    """
    Validate a content hash as returned by the content store.

    Accepts hex digests and base58/base32 content identifiers.
    """
    if not isinstance(content_hash, str) or not content_hash.strip():
        raise ValidationError(f"{field_name} is required", field=field_name)

    content_hash = content_hash.strip()
    if not CONTENT_HASH_PATTERN.match(content_hash):
        raise ValidationError(f"{field_name} is not a valid content hash", field=field_name)

    return content_hash


def validate_document_bytes(data: Any, max_bytes: Optional[int] = None, field_name: str = "data") -> bytes:
    """Validate an upload payload"""
    if not isinstance(data, (bytes, bytearray)):
        raise ValidationError(f"{field_name} must be bytes", field=field_name)

    if len(data) == 0:
        raise ValidationError(f"{field_name} must not be empty", field=field_name)

    if max_bytes is not None and len(data) > max_bytes:
        raise ValidationError(
            f"{field_name} exceeds maximum size",
            field=field_name,
            details={"max_bytes": max_bytes, "size": len(data)}
        )

    return bytes(data)
