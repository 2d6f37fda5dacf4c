"""
Tests for the access-consent engine
"""

import asyncio
import pytest

from medrec_sec.consent.models import GrantState
from medrec_sec.exceptions import (
    IdentityInactiveError, IdentityNotFoundError, InvalidStateTransitionError,
    RoleMismatchError, StaleStateError, UnauthorizedError,
)
from medrec_sec.ledger.local import LocalLedger
from tests.helpers import (
    ADMIN, HANDLER_1, HANDLER_2, HANDLER_3, ROOT, STRANGER, SUBJECT, SUBJECT_2,
    grant_access, make_services, populate,
)


class TestConsentLifecycle:
    """Test request/approve/reject/revoke"""

    def setup_method(self):
        self.services = make_services()
        self.consent = self.services.consent

    @pytest.mark.asyncio
    async def test_request_creates_pending(self):
        await populate(self.services)

        grant = await self.consent.request(SUBJECT, HANDLER_1)

        assert grant.state == GrantState.PENDING
        assert grant.last_actor == HANDLER_1
        assert await self.consent.list_pending(SUBJECT) == [HANDLER_1]
        assert not await self.consent.check(SUBJECT, HANDLER_1)

    @pytest.mark.asyncio
    async def test_check_tracks_latest_confirmed_transition(self):
        await populate(self.services)

        assert not await self.consent.check(SUBJECT, HANDLER_1)
        await grant_access(self.services, SUBJECT, HANDLER_1)
        assert await self.consent.check(SUBJECT, HANDLER_1)

        await self.consent.revoke(SUBJECT, HANDLER_1, SUBJECT)
        assert not await self.consent.check(SUBJECT, HANDLER_1)

        await self.consent.request(SUBJECT, HANDLER_1)
        await self.consent.reject(SUBJECT, HANDLER_1, SUBJECT)
        assert not await self.consent.check(SUBJECT, HANDLER_1)

    @pytest.mark.asyncio
    async def test_rerequest_after_reject_and_revoke(self):
        await populate(self.services)

        await self.consent.request(SUBJECT, HANDLER_1)
        await self.consent.reject(SUBJECT, HANDLER_1, SUBJECT)
        again = await self.consent.request(SUBJECT, HANDLER_1)
        assert again.state == GrantState.PENDING
        assert again.cycle == 2

        await self.consent.approve(SUBJECT, HANDLER_1, SUBJECT)
        await self.consent.revoke(SUBJECT, HANDLER_1, ADMIN)
        third = await self.consent.request(SUBJECT, HANDLER_1)
        assert third.state == GrantState.PENDING
        assert third.cycle == 3

    @pytest.mark.asyncio
    async def test_rerequest_while_open_fails(self):
        await populate(self.services)

        await self.consent.request(SUBJECT, HANDLER_1)
        with pytest.raises(InvalidStateTransitionError):
            await self.consent.request(SUBJECT, HANDLER_1)

        await self.consent.approve(SUBJECT, HANDLER_1, SUBJECT)
        with pytest.raises(InvalidStateTransitionError):
            await self.consent.request(SUBJECT, HANDLER_1)

    @pytest.mark.asyncio
    async def test_request_validation(self):
        await populate(self.services)

        with pytest.raises(IdentityNotFoundError):
            await self.consent.request(STRANGER, HANDLER_1)
        with pytest.raises(IdentityNotFoundError):
            await self.consent.request(SUBJECT, STRANGER)
        with pytest.raises(RoleMismatchError):
            await self.consent.request(SUBJECT, SUBJECT_2)
        with pytest.raises(RoleMismatchError):
            await self.consent.request(HANDLER_2, HANDLER_1)

        await self.services.registry.deactivate_identity(SUBJECT_2, caller=ADMIN)
        with pytest.raises(IdentityInactiveError):
            await self.consent.request(SUBJECT_2, HANDLER_1)

    @pytest.mark.asyncio
    async def test_only_subject_approves(self):
        await populate(self.services)
        await self.consent.request(SUBJECT, HANDLER_1)

        for caller in (HANDLER_1, ADMIN, SUBJECT_2, ROOT):
            with pytest.raises(UnauthorizedError):
                await self.consent.approve(SUBJECT, HANDLER_1, caller)

        assert (await self.consent.get_grant(SUBJECT, HANDLER_1)).state == GrantState.PENDING

    @pytest.mark.asyncio
    async def test_admin_may_reject_and_revoke(self):
        await populate(self.services)

        await self.consent.request(SUBJECT, HANDLER_1)
        rejected = await self.consent.reject(SUBJECT, HANDLER_1, ADMIN)
        assert rejected.state == GrantState.REJECTED
        assert rejected.last_actor == ADMIN

        await grant_access(self.services, SUBJECT, HANDLER_2)
        revoked = await self.consent.revoke(SUBJECT, HANDLER_2, ROOT)
        assert revoked.state == GrantState.REVOKED

    @pytest.mark.asyncio
    async def test_handler_cannot_reject_or_revoke(self):
        await populate(self.services)
        await grant_access(self.services, SUBJECT, HANDLER_1)

        with pytest.raises(UnauthorizedError):
            await self.consent.revoke(SUBJECT, HANDLER_1, HANDLER_1)
        with pytest.raises(UnauthorizedError):
            await self.consent.revoke(SUBJECT, HANDLER_1, HANDLER_2)

    @pytest.mark.asyncio
    async def test_wrong_state_transitions(self):
        await populate(self.services)

        with pytest.raises(InvalidStateTransitionError):
            await self.consent.approve(SUBJECT, HANDLER_1, SUBJECT)
        with pytest.raises(InvalidStateTransitionError):
            await self.consent.revoke(SUBJECT, HANDLER_1, SUBJECT)

        await self.consent.request(SUBJECT, HANDLER_1)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await self.consent.revoke(SUBJECT, HANDLER_1, SUBJECT)
        assert exc_info.value.details["current_state"] == "pending"

    @pytest.mark.asyncio
    async def test_deactivated_subject_cannot_approve(self):
        await populate(self.services)
        await self.consent.request(SUBJECT, HANDLER_1)
        await self.services.registry.deactivate_identity(SUBJECT, caller=ADMIN)

        with pytest.raises(UnauthorizedError):
            await self.consent.approve(SUBJECT, HANDLER_1, SUBJECT)

    @pytest.mark.asyncio
    async def test_listings(self):
        await populate(self.services)
        await grant_access(self.services, SUBJECT, HANDLER_1)
        await grant_access(self.services, SUBJECT_2, HANDLER_1)
        await self.consent.request(SUBJECT, HANDLER_2)
        await self.consent.request(SUBJECT, HANDLER_3)
        await self.consent.reject(SUBJECT, HANDLER_3, SUBJECT)

        assert await self.consent.list_approved(SUBJECT) == [HANDLER_1]
        assert await self.consent.list_pending(SUBJECT) == [HANDLER_2]
        assert sorted(await self.consent.list_accessible_subjects(HANDLER_1)) == sorted([SUBJECT, SUBJECT_2])

        states = {g.handler: g.state for g in await self.consent.list_grants(SUBJECT)}
        assert states == {
            HANDLER_1: GrantState.APPROVED,
            HANDLER_2: GrantState.PENDING,
            HANDLER_3: GrantState.REJECTED,
        }


class TestConsentConcurrency:
    """Test compare-and-swap behaviour under racing callers"""

    def setup_method(self):
        # A confirmation delay makes both callers read PENDING before either confirms
        self.services = make_services(ledger=LocalLedger(confirm_delay=0.01))
        self.consent = self.services.consent

    @pytest.mark.asyncio
    async def test_concurrent_approve_and_reject(self):
        await populate(self.services)
        await self.consent.request(SUBJECT, HANDLER_1)

        results = await asyncio.gather(
            self.consent.approve(SUBJECT, HANDLER_1, SUBJECT),
            self.consent.reject(SUBJECT, HANDLER_1, SUBJECT),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidStateTransitionError)

        final = await self.consent.get_grant(SUBJECT, HANDLER_1)
        assert final.state == successes[0].state
        assert final.sequence == successes[0].sequence

    @pytest.mark.asyncio
    async def test_concurrent_requests_create_one_pending(self):
        await populate(self.services)

        results = await asyncio.gather(
            self.consent.request(SUBJECT, HANDLER_1),
            self.consent.request(SUBJECT, HANDLER_1),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, StaleStateError)) == 1
        grants = await self.consent.list_grants(SUBJECT)
        assert len(grants) == 1
        assert grants[0].cycle == 1
