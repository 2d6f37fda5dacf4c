"""
Access-Consent Engine
Request/approve/reject/revoke lifecycle of (subject, handler) grants
"""

from typing import TYPE_CHECKING, Dict, List, Optional, Tuple
import structlog

from .models import AccessGrant, GrantAction, GrantState
from ..config import CustodyConfig, get_custody_config
from ..constants import LedgerEventKinds
from ..exceptions import InvalidStateTransitionError, UnauthorizedError
from ..identity.models import Identity, Role
from ..ledger.client import LedgerClient
from ..ledger.events import LedgerView, Mutation, grant_key, identity_key
from ..ledger.gateway import LedgerGateway
from ..policy.rbac import Permission, require_permission
from ..utils.validators import validate_address

if TYPE_CHECKING:
    from ..identity.registry import IdentityRegistry

logger = structlog.get_logger(__name__)

# How many read-decide-submit rounds the deactivation cascade makes before
# reporting grants it could not close
CASCADE_PASSES = 3

ACTION_EVENT_KINDS: Dict[GrantAction, str] = {
    GrantAction.REQUEST: LedgerEventKinds.ACCESS_REQUESTED,
    GrantAction.APPROVE: LedgerEventKinds.ACCESS_APPROVED,
    GrantAction.REJECT: LedgerEventKinds.ACCESS_REJECTED,
    GrantAction.REVOKE: LedgerEventKinds.ACCESS_REVOKED,
}


class AccessConsentEngine:
    """Sole owner of grant state; every transition is a compare-and-swap on the ledger"""

    def __init__(self, ledger: LedgerClient, registry: "IdentityRegistry",
                 config: Optional[CustodyConfig] = None):
        self.config = config or get_custody_config()
        self.gateway = LedgerGateway(ledger, self.config.ledger_timeout_seconds)
        self.registry = registry

    async def get_grant(self, subject: str, handler: str) -> AccessGrant:
        """Current grant record; NONE when the pair has never interacted"""
        subject = validate_address(subject, "subject")
        handler = validate_address(handler, "handler")
        grant = await self.gateway.query(LedgerView.GRANT, subject=subject, handler=handler)
        return grant or AccessGrant(subject=subject, handler=handler)

    async def _apply(self, grant: AccessGrant, action: GrantAction, actor: Identity,
                     preconditions: Dict[str, int]) -> AccessGrant:
        updated = grant.transition(action, actor.address)
        mutation = Mutation(
            kind=ACTION_EVENT_KINDS[action],
            actor=actor.address,
            key=grant_key(grant.subject, grant.handler),
            payload={"grant": updated.model_dump(mode="json", exclude={"sequence"})},
            preconditions={
                grant_key(grant.subject, grant.handler): grant.sequence,
                identity_key(actor.address): actor.sequence,
                **preconditions,
            },
        )
        event = await self.gateway.submit(mutation, action.value)

        logger.info("Grant transition confirmed", action=action.value, subject=grant.subject,
                    handler=grant.handler, state=updated.state.value, actor=actor.address,
                    sequence=event.sequence)
        return updated.model_copy(update={"sequence": event.sequence})

    async def _authorize_decision(self, subject: str, caller: str, own_permission: Permission,
                                  action: str, admin_allowed: bool) -> Identity:
        """The subject itself, or an administrator where cleanup is allowed"""
        caller_identity = await self.registry.find_identity(caller)
        if caller == subject:
            return require_permission(caller_identity, own_permission, action, caller)
        if admin_allowed and caller_identity is not None and caller_identity.role == Role.ADMINISTRATOR:
            return require_permission(caller_identity, Permission.CLEANUP_GRANTS, action, caller)

        logger.warning("Grant decision by a third party refused", action=action,
                       subject=subject, caller=caller)
        raise UnauthorizedError(action, caller=caller, reason="not_subject", details={"subject": subject})

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def request(self, subject: str, handler: str) -> AccessGrant:
        """Handler asks a subject for access; NONE/REJECTED/REVOKED -> PENDING"""
        subject_identity = await self.registry.require_active(validate_address(subject, "subject"), Role.SUBJECT)
        handler_identity = await self.registry.require_active(validate_address(handler, "handler"), Role.HANDLER)
        require_permission(handler_identity, Permission.REQUEST_ACCESS, "request_access", handler_identity.address)

        grant = await self.get_grant(subject_identity.address, handler_identity.address)
        return await self._apply(grant, GrantAction.REQUEST, handler_identity,
                                 {identity_key(subject_identity.address): subject_identity.sequence})

    async def approve(self, subject: str, handler: str, caller: str) -> AccessGrant:
        """PENDING -> APPROVED; only the subject may approve"""
        subject = validate_address(subject, "subject")
        actor = await self._authorize_decision(subject, validate_address(caller, "caller"),
                                               Permission.DECIDE_ACCESS, "approve_access", admin_allowed=False)
        grant = await self.get_grant(subject, handler)
        return await self._apply(grant, GrantAction.APPROVE, actor, {})

    async def reject(self, subject: str, handler: str, caller: str) -> AccessGrant:
        """PENDING -> REJECTED; by the subject or an administrator"""
        subject = validate_address(subject, "subject")
        actor = await self._authorize_decision(subject, validate_address(caller, "caller"),
                                               Permission.DECIDE_ACCESS, "reject_access", admin_allowed=True)
        grant = await self.get_grant(subject, handler)
        return await self._apply(grant, GrantAction.REJECT, actor, {})

    async def revoke(self, subject: str, handler: str, caller: str) -> AccessGrant:
        """APPROVED -> REVOKED; by the subject or an administrator"""
        subject = validate_address(subject, "subject")
        actor = await self._authorize_decision(subject, validate_address(caller, "caller"),
                                               Permission.REVOKE_OWN_GRANT, "revoke_access", admin_allowed=True)
        grant = await self.get_grant(subject, handler)
        return await self._apply(grant, GrantAction.REVOKE, actor, {})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def check(self, subject: str, handler: str) -> bool:
        """True iff the grant is APPROVED right now; never cached"""
        return (await self.get_grant(subject, handler)).is_valid()

    async def list_grants(self, subject: str, state: Optional[GrantState] = None) -> List[AccessGrant]:
        subject = validate_address(subject, "subject")
        return await self.gateway.query(LedgerView.GRANTS_FOR_SUBJECT, subject=subject, state=state)

    async def list_pending(self, subject: str) -> List[str]:
        return [g.handler for g in await self.list_grants(subject, GrantState.PENDING)]

    async def list_approved(self, subject: str) -> List[str]:
        return [g.handler for g in await self.list_grants(subject, GrantState.APPROVED)]

    async def list_accessible_subjects(self, handler: str) -> List[str]:
        """Subjects that currently approve this handler"""
        handler = validate_address(handler, "handler")
        grants = await self.gateway.query(LedgerView.GRANTS_FOR_HANDLER, handler=handler,
                                          state=GrantState.APPROVED)
        return [g.subject for g in grants]

    # ------------------------------------------------------------------
    # Deactivation cascade
    # ------------------------------------------------------------------

    async def cascade_subject(self, subject: str, actor: str) -> Tuple[List[str], List[str], List[str]]:
        """
        Close every open grant of a deactivated subject.

        Pending grants are rejected first, then approved grants are revoked.
        A grant that moves under us is picked up on the next pass.

        Returns:
            (rejected handlers, revoked handlers, handlers still open)
        """
        rejected: List[str] = []
        revoked: List[str] = []
        still_open: List[str] = []

        for _ in range(CASCADE_PASSES):
            for handler in await self.list_pending(subject):
                try:
                    await self.reject(subject, handler, actor)
                    rejected.append(handler)
                except InvalidStateTransitionError as e:
                    logger.info("Grant moved during cascade", subject=subject, handler=handler,
                                error_code=e.error_code)

            for handler in await self.list_approved(subject):
                try:
                    await self.revoke(subject, handler, actor)
                    revoked.append(handler)
                except InvalidStateTransitionError as e:
                    logger.info("Grant moved during cascade", subject=subject, handler=handler,
                                error_code=e.error_code)

            still_open = [g.handler for g in await self.list_grants(subject) if g.is_open()]
            if not still_open:
                break

        if still_open:
            logger.warning("Cascade left open grants", subject=subject, handlers=still_open)
        return rejected, revoked, still_open
