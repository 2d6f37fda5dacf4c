"""
Custody configuration management
Ledger/store timeouts, root administrator and backend toggles
"""

from enum import Enum
from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field


class StoreBackend(str, Enum):
    """Supported content-addressed store backends"""
    MEMORY = "memory"
    IPFS = "ipfs"


class CustodyConfig(BaseSettings):
    """Consent and custody configuration settings"""

    # Identity settings
    root_admin_address: str = Field(
        default="0xd9073e73717fca172f29b55a0368ae41de35d237",
        description="Distinguished administrator that can never be deactivated"
    )
    root_admin_name: str = Field(default="Root Administrator")

    # Ledger settings
    ledger_timeout_seconds: float = Field(default=30.0, description="Timeout for ledger submit/query")
    ledger_database_url: str = Field(default="sqlite:///ledger.db")

    # Store settings
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY)
    store_timeout_seconds: float = Field(default=30.0, description="Timeout for store put/get/unpin")
    ipfs_api_url: str = Field(default="http://localhost:5001")

    # Custody settings
    max_document_bytes: int = Field(default=50 * 1024 * 1024, description="Upload size ceiling in bytes")
    audit_access_reads: bool = Field(default=True, description="Record list/fetch decisions in the access audit log")

    # Service settings
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Environment-specific overrides
    debug_mode: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    model_config = {"env_prefix": "MEDREC_SEC_", "case_sensitive": False}


# Global configuration instance
custody_config = CustodyConfig()


def get_custody_config() -> CustodyConfig:
    """Get the global custody configuration instance"""
    return custody_config


def update_custody_config(**kwargs) -> CustodyConfig:
    """Update custody configuration with new values"""
    global custody_config
    for key, value in kwargs.items():
        if hasattr(custody_config, key):
            setattr(custody_config, key, value)
    return custody_config
