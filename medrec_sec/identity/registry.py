"""
Identity/Role Registry

Authoritative address -> role/active mapping. State lives on the permission
ledger; every mutation is submitted as a compare-and-swap on the target's
identity key and on the calling administrator's own key, so a caller that
was deactivated concurrently cannot slip a change through.
"""

from typing import Dict, List, Optional, Union
import structlog

from .cascade import CascadeReport, DeactivationCascade
from .models import Identity, Role
from ..config import CustodyConfig, get_custody_config
from ..constants import LedgerEventKinds
from ..exceptions import (
    AlreadyExistsError, CannotDeactivateSelfError, IdentityInactiveError,
    IdentityNotFoundError, ProtectedIdentityError, RoleMismatchError,
    StaleStateError,
)
from ..ledger.client import LedgerClient
from ..ledger.events import LedgerView, Mutation, identity_key
from ..ledger.gateway import LedgerGateway
from ..policy.rbac import Permission, require_permission
from ..utils.validators import validate_address, validate_content_hash, validate_display_name

logger = structlog.get_logger(__name__)


class IdentityRegistry:
    """Registry of identities backed by the permission ledger"""

    def __init__(self, ledger: LedgerClient, config: Optional[CustodyConfig] = None):
        self.config = config or get_custody_config()
        self.gateway = LedgerGateway(ledger, self.config.ledger_timeout_seconds)
        self.root_admin = validate_address(self.config.root_admin_address)
        self.cascade: Optional[DeactivationCascade] = None

    def attach_cascade(self, cascade: DeactivationCascade) -> None:
        """Install the procedure run after a confirmed deactivation"""
        self.cascade = cascade

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_identity(self, address: str) -> Optional[Identity]:
        """Current identity record, active or not, or None"""
        return await self.gateway.query(LedgerView.IDENTITY, address=validate_address(address))

    async def get_identity(self, address: str) -> Identity:
        identity = await self.find_identity(address)
        if identity is None:
            raise IdentityNotFoundError(validate_address(address))
        return identity

    async def resolve_role(self, address: str) -> Role:
        """Role held by an address; inactive identities keep their role"""
        return (await self.get_identity(address)).role

    async def require_active(self, address: str, role: Optional[Role] = None) -> Identity:
        """
        Fetch a fresh identity record and check it can take part in an operation.

        Raises IdentityNotFoundError when absent, IdentityInactiveError when
        deactivated and RoleMismatchError when it does not hold role.
        """
        address = validate_address(address)
        identity = await self.find_identity(address)
        if identity is None:
            raise IdentityNotFoundError(address, role_hint=role.value if role else None)
        if not identity.active:
            raise IdentityInactiveError(address)
        if role is not None and identity.role != role:
            raise RoleMismatchError(address, role.value, identity.role.value)
        return identity

    async def list_active(self, role: Optional[Union[Role, str]] = None) -> List[Identity]:
        role_value = Role(role).value if role is not None else None
        return await self.gateway.query(LedgerView.IDENTITIES, role=role_value, active_only=True)

    async def _authorize(self, caller: str, permission: Permission, action: str) -> Identity:
        caller = validate_address(caller)
        return require_permission(await self.find_identity(caller), permission, action, caller)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _submit(self, kind: str, identity: Identity, actor: str,
                      preconditions: Dict[str, int], transition: str) -> Identity:
        mutation = Mutation(
            kind=kind,
            actor=actor,
            key=identity_key(identity.address),
            payload={"identity": identity.model_dump(mode="json", exclude={"sequence"})},
            preconditions=preconditions,
        )
        event = await self.gateway.submit(mutation, transition)
        logger.info("Identity change confirmed", kind=kind, address=identity.address,
                    role=identity.role.value, actor=actor, sequence=event.sequence)
        return identity.model_copy(update={"sequence": event.sequence})

    async def bootstrap(self) -> Identity:
        """Create the root administrator if the ledger does not hold it yet"""
        existing = await self.find_identity(self.root_admin)
        if existing is not None:
            return existing

        root = Identity(
            address=self.root_admin,
            display_name=self.config.root_admin_name,
            role=Role.ADMINISTRATOR,
            created_by=self.root_admin,
        )
        try:
            return await self._submit(LedgerEventKinds.IDENTITY_ADDED, root, self.root_admin,
                                      {identity_key(self.root_admin): 0}, "bootstrap")
        except StaleStateError:
            # Another process bootstrapped first
            return await self.get_identity(self.root_admin)

    async def authorize_add(self, caller: str) -> Identity:
        return await self._authorize(caller, Permission.MANAGE_IDENTITIES, "add_identity")

    async def authorize_update(self, address: str, caller: str) -> Identity:
        """Callers update themselves; administrators update anyone"""
        address = validate_address(address)
        caller = validate_address(caller)
        permission = Permission.UPDATE_OWN_IDENTITY if caller == address else Permission.MANAGE_IDENTITIES
        return await self._authorize(caller, permission, "update_identity")

    async def add_identity(self, address: str, name: str, role: Union[Role, str],
                           profile_ref: Optional[str] = None, *, caller: str) -> Identity:
        """Register a new identity; administrators only"""
        admin = await self.authorize_add(caller)
        address = validate_address(address)
        identity = Identity(
            address=address,
            display_name=validate_display_name(name),
            role=Role(role),
            profile_ref=validate_content_hash(profile_ref) if profile_ref else None,
            created_by=admin.address,
        )

        existing = await self.find_identity(address)
        if existing is not None:
            # Deactivated addresses are never reused
            raise AlreadyExistsError("identity", address, {"active": existing.active})

        return await self._submit(
            LedgerEventKinds.IDENTITY_ADDED, identity, admin.address,
            {identity_key(address): 0, identity_key(admin.address): admin.sequence},
            "add_identity",
        )

    async def update_identity(self, address: str, name: str, profile_ref: Optional[str] = None,
                              *, caller: str) -> Identity:
        """Change display name and profile reference; the role never changes"""
        address = validate_address(address)
        actor = await self.authorize_update(address, caller)

        target = actor if actor.address == address else await self.get_identity(address)
        if not target.active:
            raise IdentityInactiveError(address)

        updated = target.updated(
            validate_display_name(name),
            validate_content_hash(profile_ref) if profile_ref else None,
        )
        return await self._submit(
            LedgerEventKinds.IDENTITY_UPDATED, updated, actor.address,
            {identity_key(address): target.sequence, identity_key(actor.address): actor.sequence},
            "update_identity",
        )

    async def deactivate_identity(self, address: str, *, caller: str) -> CascadeReport:
        """
        Soft-delete an identity and run the deactivation cascade.

        The deactivation is confirmed on the ledger first; the cascade then
        closes the subject's grants and purges its documents. If the cascade
        is interrupted it can be resumed with complete_deactivation.
        """
        address = validate_address(address)
        admin = await self._authorize(caller, Permission.MANAGE_IDENTITIES, "deactivate_identity")

        if address == self.root_admin:
            raise ProtectedIdentityError(address, caller=admin.address)
        if address == admin.address:
            raise CannotDeactivateSelfError(address)

        target = await self.find_identity(address)
        if target is None or not target.active:
            raise IdentityNotFoundError(address)

        deactivated = await self._submit(
            LedgerEventKinds.IDENTITY_DEACTIVATED, target.deactivated(), admin.address,
            {identity_key(address): target.sequence, identity_key(admin.address): admin.sequence},
            "deactivate_identity",
        )
        return await self._run_cascade(deactivated, admin.address)

    async def complete_deactivation(self, address: str, *, caller: str) -> CascadeReport:
        """Re-run the cascade for an identity that is already deactivated"""
        admin = await self._authorize(caller, Permission.MANAGE_IDENTITIES, "complete_deactivation")
        target = await self.get_identity(address)
        if target.active:
            raise IdentityNotFoundError(target.address, role_hint="inactive")
        return await self._run_cascade(target, admin.address)

    async def _run_cascade(self, identity: Identity, actor: str) -> CascadeReport:
        if self.cascade is None:
            logger.warning("No deactivation cascade attached", address=identity.address)
            return CascadeReport(address=identity.address, role=identity.role, complete=False)
        return await self.cascade.run(identity, actor)
