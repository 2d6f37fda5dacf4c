"""
Tests for state reconstruction from the event history
"""

import asyncio
import random
import pytest

from medrec_sec.constants import LedgerEventKinds
from medrec_sec.consent.models import GrantState
from medrec_sec.ledger.events import EventFilter
from medrec_sec.reconcile.log import EventReconciliationLog
from medrec_sec.reconcile.replica import ReadReplica
from tests.helpers import (
    ADMIN, HANDLER_1, HANDLER_2, SUBJECT, SUBJECT_2, grant_access, make_services, populate,
)


async def busy_history(services):
    """A history where most keys are written more than once"""
    await populate(services)
    await grant_access(services, SUBJECT, HANDLER_1)
    await services.consent.request(SUBJECT, HANDLER_2)
    await services.consent.reject(SUBJECT, HANDLER_2, SUBJECT)
    await services.registry.update_identity(SUBJECT, "Alice B.", caller=SUBJECT)

    kept = await services.custody.upload(SUBJECT, "kept.pdf", b"kept document", SUBJECT)
    dropped = await services.custody.upload(SUBJECT, "dropped.pdf", b"dropped document", HANDLER_1)
    await services.custody.delete(SUBJECT, dropped, HANDLER_1)
    await services.consent.revoke(SUBJECT, HANDLER_1, SUBJECT)
    return kept, dropped


class TestReplay:
    """Test rebuilding projections from history"""

    def setup_method(self):
        self.services = make_services()
        self.log = self.services.reconciliation

    @pytest.mark.asyncio
    async def test_rebuild_matches_live_views(self):
        kept, dropped = await busy_history(self.services)

        projection = await self.log.rebuild()

        assert projection.last_sequence == self.services.ledger.head
        assert projection.get_identity(SUBJECT).display_name == "Alice B."
        assert projection.get_grant(SUBJECT, HANDLER_1).state == GrantState.REVOKED
        assert projection.get_grant(SUBJECT, HANDLER_2).state == GrantState.REJECTED
        assert [d.content_hash for d in projection.documents_for_subject(SUBJECT)] == [kept]
        assert projection.get_document(SUBJECT, dropped) is None

        live = await self.services.consent.get_grant(SUBJECT, HANDLER_1)
        assert projection.get_grant(SUBJECT, HANDLER_1).sequence == live.sequence

    @pytest.mark.asyncio
    async def test_arrival_order_does_not_matter(self):
        await busy_history(self.services)
        events = await self.log.history()
        expected = self.log.replay(events).snapshot()

        for seed in range(5):
            shuffled = list(events)
            random.Random(seed).shuffle(shuffled)
            assert self.log.replay(shuffled, in_arrival_order=True).snapshot() == expected

    @pytest.mark.asyncio
    async def test_late_add_never_resurrects_a_removal(self):
        _, dropped = await busy_history(self.services)
        events = await self.log.history()
        document_events = [e for e in events if e.kind in LedgerEventKinds.DOCUMENT]
        removal = next(e for e in document_events if e.kind == LedgerEventKinds.DOCUMENT_REMOVED)
        others = [e for e in events if e is not removal]

        projection = self.log.replay([removal] + others, in_arrival_order=True)

        assert projection.get_document(SUBJECT, dropped) is None
        assert projection.sequence_of(removal.key) == removal.sequence

    @pytest.mark.asyncio
    async def test_partial_history(self):
        await busy_history(self.services)
        events = await self.log.history()

        projection = self.log.replay(events[:2])

        assert projection.last_sequence == 2
        assert projection.get_identity(ADMIN) is not None
        assert projection.get_identity(SUBJECT) is None


class TestEventQueries:
    """Test address-scoped history and subscriptions"""

    def setup_method(self):
        self.services = make_services()
        self.log = self.services.reconciliation

    @pytest.mark.asyncio
    async def test_events_for_address(self):
        await busy_history(self.services)

        consent_events = await self.log.events_for(HANDLER_1, kinds=LedgerEventKinds.CONSENT)
        assert [e.kind for e in consent_events] == [
            LedgerEventKinds.ACCESS_REQUESTED,
            LedgerEventKinds.ACCESS_APPROVED,
            LedgerEventKinds.ACCESS_REVOKED,
        ]

        subject_events = await self.log.events_for(SUBJECT_2)
        assert [e.kind for e in subject_events] == [LedgerEventKinds.IDENTITY_ADDED]
        assert [e.sequence for e in consent_events] == sorted(e.sequence for e in consent_events)

    @pytest.mark.asyncio
    async def test_subscribe_filters_by_kind(self):
        await populate(self.services)
        subscription = self.log.subscribe(EventFilter(kinds=set(LedgerEventKinds.CONSENT)))

        await grant_access(self.services, SUBJECT, HANDLER_1)

        first = await subscription.next_event(timeout=1.0)
        second = await subscription.next_event(timeout=1.0)
        assert [first.kind, second.kind] == [LedgerEventKinds.ACCESS_REQUESTED, LedgerEventKinds.ACCESS_APPROVED]
        subscription.close()


class TestReadReplica:
    """Test the subscription-fed projection"""

    @pytest.mark.asyncio
    async def test_replica_follows_live_events(self):
        services = make_services()
        await populate(services)

        async with ReadReplica(services.ledger) as replica:
            assert replica.running
            await replica.wait_until(services.ledger.head, timeout=1.0)
            assert replica.projection.get_identity(HANDLER_1) is not None

            await grant_access(services, SUBJECT, HANDLER_1)
            await replica.wait_until(services.ledger.head, timeout=1.0)

            assert replica.projection.get_grant(SUBJECT, HANDLER_1).state == GrantState.APPROVED
            assert replica.snapshot() == (await services.reconciliation.rebuild()).snapshot()

        assert not replica.running

    @pytest.mark.asyncio
    async def test_wait_until_times_out(self):
        services = make_services()
        await services.start()

        async with ReadReplica(services.ledger) as replica:
            with pytest.raises(asyncio.TimeoutError):
                await replica.wait_until(services.ledger.head + 1, timeout=0.05)

    @pytest.mark.asyncio
    async def test_filtered_replica(self):
        services = make_services()
        await populate(services)
        await grant_access(services, SUBJECT, HANDLER_1)

        async with ReadReplica(services.ledger, EventFilter(addresses={SUBJECT_2})) as replica:
            subject_2 = await services.registry.get_identity(SUBJECT_2)
            await replica.wait_until(subject_2.sequence, timeout=1.0)
            assert list(replica.projection.identities) == [SUBJECT_2]
            assert replica.projection.grants == {}
