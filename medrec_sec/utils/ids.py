"""
ID generation
Unique identifiers for ledger mutations and audit entries
"""

import uuid


def generate_mutation_id() -> str:
    """Generate ledger mutation ID"""
    return f"mut_{uuid.uuid4().hex}"


def generate_audit_id() -> str:
    """Generate access audit entry ID"""
    return f"audit_{uuid.uuid4()}"
