"""
Utility functions for the custody module
ID generation, address normalization and input validation
"""

from .ids import generate_mutation_id, generate_audit_id
from .validators import (
    normalize_address,
    validate_address,
    validate_display_name,
    validate_document_name,
    validate_content_hash,
    validate_document_bytes,
)

__all__ = [
    # ID generation
    "generate_mutation_id",
    "generate_audit_id",
    # Validators
    "normalize_address",
    "validate_address",
    "validate_display_name",
    "validate_document_name",
    "validate_content_hash",
    "validate_document_bytes",
]
