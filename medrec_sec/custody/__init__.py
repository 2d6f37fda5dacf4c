"""
Document custody module
Content-addressed document index, upload/read/delete and orphan sweep
"""

from .locks import ContentLocks
from .models import CleanupFailure, Document, SweepReport
from .manager import DocumentCustodyManager
from .sweep import OrphanSweeper

__all__ = [
    "ContentLocks",
    "CleanupFailure",
    "Document",
    "SweepReport",
    "DocumentCustodyManager",
    "OrphanSweeper",
]
