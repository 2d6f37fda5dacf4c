"""
Document custody data models
"""

from datetime import datetime, UTC
from typing import List, Optional
from pydantic import BaseModel, Field


class Document(BaseModel):
    """Document index entry; holds a non-owning reference to the blob"""
    subject: str = Field(..., description="Subject the document belongs to")
    name: str
    content_hash: str = Field(..., description="Content address of the blob")
    uploaded_by: str = Field(..., description="Handler or subject that uploaded it")
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    size: Optional[int] = Field(default=None, description="Blob size in bytes")

    # Ledger position of the confirming event
    sequence: int = Field(default=0)


class CleanupFailure(BaseModel):
    """Best-effort blob removal that did not succeed"""
    content_hash: str
    subject: str
    error: str
    failed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SweepReport(BaseModel):
    """Outcome of an orphan-blob sweep"""
    examined: int = 0
    referenced: List[str] = Field(default_factory=list)
    unpinned: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
