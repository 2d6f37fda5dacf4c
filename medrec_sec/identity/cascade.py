"""
Deactivation cascade

Single owner of the cleanup that follows a confirmed identity deactivation.
For a subject: reject pending grants, then revoke approved grants, then
purge the document index with best-effort blob removal. Handlers and
administrators need no cleanup; the inactive flag already blocks them.
"""

from typing import TYPE_CHECKING, List
from pydantic import BaseModel, Field
import structlog

from .models import Identity, Role
from ..custody.models import CleanupFailure

if TYPE_CHECKING:
    from ..consent.engine import AccessConsentEngine
    from ..custody.manager import DocumentCustodyManager

logger = structlog.get_logger(__name__)


class CascadeReport(BaseModel):
    """What a deactivation cascade changed"""
    address: str
    role: Role
    rejected: List[str] = Field(default_factory=list, description="Handlers whose pending grant was rejected")
    revoked: List[str] = Field(default_factory=list, description="Handlers whose approved grant was revoked")
    documents_removed: List[str] = Field(default_factory=list, description="Content hashes removed from the index")
    cleanup_failures: List[CleanupFailure] = Field(default_factory=list)
    complete: bool = True


class DeactivationCascade:
    """Runs grant and document cleanup for deactivated identities"""

    def __init__(self, consent: "AccessConsentEngine", custody: "DocumentCustodyManager"):
        self.consent = consent
        self.custody = custody

    async def run(self, identity: Identity, actor: str) -> CascadeReport:
        report = CascadeReport(address=identity.address, role=identity.role)
        if identity.role != Role.SUBJECT:
            logger.info("No cascade needed", address=identity.address, role=identity.role.value)
            return report

        rejected, revoked, open_left = await self.consent.cascade_subject(identity.address, actor)
        report.rejected = rejected
        report.revoked = revoked

        removed, failures = await self.custody.purge_subject(identity.address, actor)
        report.documents_removed = removed
        report.cleanup_failures = failures

        report.complete = not open_left
        logger.info("Deactivation cascade finished", address=identity.address,
                    rejected=len(rejected), revoked=len(revoked),
                    documents_removed=len(removed), cleanup_failures=len(failures),
                    complete=report.complete)
        return report
