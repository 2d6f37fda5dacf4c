"""
Identity data models
Address -> role/active records kept by the identity registry
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Role(str, Enum):
    """Roles an identity can hold; fixed for the identity's lifetime"""
    SUBJECT = "subject"              # Owner of the records
    HANDLER = "handler"              # Requests, reads and writes with consent
    ADMINISTRATOR = "administrator"  # Identity management and cleanup


class Identity(BaseModel):
    """Registered identity"""
    address: str = Field(..., description="Normalized ledger address")
    display_name: str
    role: Role
    active: bool = Field(default=True)
    profile_ref: Optional[str] = Field(default=None, description="Content hash of the profile blob")

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    deactivated_at: Optional[datetime] = Field(default=None)
    created_by: Optional[str] = Field(default=None)

    # Ledger position of the last confirmed event for this identity
    sequence: int = Field(default=0)

    def updated(self, display_name: str, profile_ref: Optional[str]) -> "Identity":
        """Copy with new name/profile; role is not touched"""
        return self.model_copy(update={
            "display_name": display_name,
            "profile_ref": profile_ref,
            "updated_at": datetime.now(UTC),
        })

    def deactivated(self) -> "Identity":
        """Soft-deleted copy"""
        now = datetime.now(UTC)
        return self.model_copy(update={
            "active": False,
            "updated_at": now,
            "deactivated_at": now,
        })
