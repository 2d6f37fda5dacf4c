"""
Tests for the document custody manager and the orphan sweep
"""

import asyncio

import pytest

from medrec_sec.constants import AccessActions, LedgerEventKinds
from medrec_sec.exceptions import (
    AlreadyExistsError, DocumentNotFoundError, IdentityInactiveError,
    LedgerRejectedError, UnauthorizedError, ValidationError,
)
from medrec_sec.crypto.hash import content_hash
from tests.helpers import (
    ADMIN, HANDLER_1, HANDLER_2, STRANGER, SUBJECT, SUBJECT_2,
    FailingLedger, FlakyStore, SlowUnpinStore, grant_access, make_services, populate,
)

REPORT = b"%PDF-1.4 blood panel results"


class TestUpload:
    """Test upload authorization and ordering"""

    def setup_method(self):
        self.services = make_services()
        self.custody = self.services.custody
        self.consent = self.services.consent

    @pytest.mark.asyncio
    async def test_subject_round_trip(self):
        await populate(self.services)

        digest = await self.custody.upload(SUBJECT, "report.pdf", REPORT, SUBJECT)
        data = await self.custody.fetch(digest, SUBJECT, SUBJECT)

        assert data == REPORT
        assert digest == content_hash(REPORT)

    @pytest.mark.asyncio
    async def test_handler_with_approved_grant(self):
        await populate(self.services)
        await grant_access(self.services, SUBJECT, HANDLER_1)

        digest = await self.custody.upload(SUBJECT, "scan.png", b"\x89PNG scan", HANDLER_1)
        documents = await self.custody.list(SUBJECT, SUBJECT)

        assert [d.content_hash for d in documents] == [digest]
        assert documents[0].uploaded_by == HANDLER_1
        assert documents[0].name == "scan.png"
        assert documents[0].size == len(b"\x89PNG scan")

    @pytest.mark.asyncio
    async def test_handler_without_approved_grant(self):
        await populate(self.services)

        with pytest.raises(UnauthorizedError) as exc_info:
            await self.custody.upload(SUBJECT, "x.pdf", REPORT, HANDLER_1)
        assert exc_info.value.details["grant_state"] == "none"

        await self.consent.request(SUBJECT, HANDLER_1)
        with pytest.raises(UnauthorizedError) as exc_info:
            await self.custody.upload(SUBJECT, "x.pdf", REPORT, HANDLER_1)
        assert exc_info.value.details["grant_state"] == "pending"

        await self.consent.reject(SUBJECT, HANDLER_1, SUBJECT)
        with pytest.raises(UnauthorizedError) as exc_info:
            await self.custody.upload(SUBJECT, "x.pdf", REPORT, HANDLER_1)
        assert exc_info.value.details["grant_state"] == "rejected"

        assert self.services.store.blobs == {}

    @pytest.mark.asyncio
    async def test_other_roles_cannot_upload(self):
        await populate(self.services)

        with pytest.raises(UnauthorizedError):
            await self.custody.upload(SUBJECT, "x.pdf", REPORT, ADMIN)
        with pytest.raises(UnauthorizedError):
            await self.custody.upload(SUBJECT, "x.pdf", REPORT, SUBJECT_2)
        with pytest.raises(UnauthorizedError):
            await self.custody.upload(SUBJECT, "x.pdf", REPORT, STRANGER)

    @pytest.mark.asyncio
    async def test_inactive_subject(self):
        await populate(self.services)
        await self.services.registry.deactivate_identity(SUBJECT_2, caller=ADMIN)

        with pytest.raises(IdentityInactiveError):
            await self.custody.upload(SUBJECT_2, "x.pdf", REPORT, SUBJECT_2)

    @pytest.mark.asyncio
    async def test_inactive_handler_with_approved_grant(self):
        await populate(self.services)
        await grant_access(self.services, SUBJECT, HANDLER_1)
        await self.services.registry.deactivate_identity(HANDLER_1, caller=ADMIN)

        assert await self.consent.check(SUBJECT, HANDLER_1)
        with pytest.raises(UnauthorizedError) as exc_info:
            await self.custody.upload(SUBJECT, "x.pdf", REPORT, HANDLER_1)
        assert exc_info.value.details["reason"] == "caller_inactive"

    @pytest.mark.asyncio
    async def test_input_validation(self):
        await populate(self.services)

        with pytest.raises(ValidationError):
            await self.custody.upload(SUBJECT, "x.pdf", b"", SUBJECT)
        with pytest.raises(ValidationError):
            await self.custody.upload(SUBJECT, "../etc/passwd", REPORT, SUBJECT)

    @pytest.mark.asyncio
    async def test_size_limit(self):
        services = make_services(max_document_bytes=8)
        await populate(services)

        with pytest.raises(ValidationError):
            await services.custody.upload(SUBJECT, "big.bin", b"123456789", SUBJECT)

    @pytest.mark.asyncio
    async def test_duplicate_upload(self):
        await populate(self.services)
        await self.custody.upload(SUBJECT, "report.pdf", REPORT, SUBJECT)

        with pytest.raises(AlreadyExistsError):
            await self.custody.upload(SUBJECT, "copy.pdf", REPORT, SUBJECT)

    @pytest.mark.asyncio
    async def test_index_failure_leaves_orphan_for_sweep(self):
        ledger = FailingLedger()
        services = make_services(ledger=ledger)
        await populate(services)
        ledger.fail_kinds.add(LedgerEventKinds.DOCUMENT_ADDED)

        with pytest.raises(LedgerRejectedError):
            await services.custody.upload(SUBJECT, "report.pdf", REPORT, SUBJECT)

        digest = content_hash(REPORT)
        assert digest in services.store.pinned
        assert await services.custody.list(SUBJECT, SUBJECT) == []

        report = await services.sweeper.sweep()
        assert report.unpinned == [digest]
        assert digest not in services.store.pinned


class TestReadAccess:
    """Test list/fetch authorization and the access audit"""

    def setup_method(self):
        self.services = make_services()
        self.custody = self.services.custody

    async def _with_document(self) -> str:
        await populate(self.services)
        return await self.custody.upload(SUBJECT, "report.pdf", REPORT, SUBJECT)

    @pytest.mark.asyncio
    async def test_admin_and_approved_handler_can_read(self):
        digest = await self._with_document()
        await grant_access(self.services, SUBJECT, HANDLER_1)

        assert len(await self.custody.list(SUBJECT, ADMIN)) == 1
        assert await self.custody.fetch(digest, SUBJECT, HANDLER_1) == REPORT

    @pytest.mark.asyncio
    async def test_revoke_takes_effect_on_next_fetch(self):
        digest = await self._with_document()
        await grant_access(self.services, SUBJECT, HANDLER_1)
        assert await self.custody.fetch(digest, SUBJECT, HANDLER_1) == REPORT

        await self.services.consent.revoke(SUBJECT, HANDLER_1, SUBJECT)

        with pytest.raises(UnauthorizedError) as exc_info:
            await self.custody.fetch(digest, SUBJECT, HANDLER_1)
        assert exc_info.value.details["reason"] == "no_consent"

    @pytest.mark.asyncio
    async def test_unrelated_callers_are_refused(self):
        digest = await self._with_document()

        for caller in (HANDLER_2, SUBJECT_2, STRANGER):
            with pytest.raises(UnauthorizedError):
                await self.custody.list(SUBJECT, caller)
            with pytest.raises(UnauthorizedError):
                await self.custody.fetch(digest, SUBJECT, caller)

    @pytest.mark.asyncio
    async def test_fetch_unknown_document(self):
        await self._with_document()

        with pytest.raises(DocumentNotFoundError):
            await self.custody.fetch("f" * 64, SUBJECT, SUBJECT)

    @pytest.mark.asyncio
    async def test_fetch_with_missing_blob(self):
        digest = await self._with_document()
        del self.services.store.blobs[digest]

        with pytest.raises(DocumentNotFoundError) as exc_info:
            await self.custody.fetch(digest, SUBJECT, SUBJECT)
        assert exc_info.value.details["blob_missing"] is True

    @pytest.mark.asyncio
    async def test_decisions_are_audited(self):
        digest = await self._with_document()
        await self.custody.fetch(digest, SUBJECT, SUBJECT)
        with pytest.raises(UnauthorizedError):
            await self.custody.list(SUBJECT, HANDLER_2)

        audit = self.services.audit
        denied = audit.get_entries(outcome=AccessActions.DENIED)
        allowed = audit.get_entries(outcome=AccessActions.ALLOWED)

        assert [(e.action, e.caller, e.reason) for e in denied] == [
            (AccessActions.LIST_DOCUMENTS, HANDLER_2, "no_consent"),
        ]
        assert allowed[0].content_hash == digest
        assert audit.verify_integrity()

    @pytest.mark.asyncio
    async def test_audit_can_be_disabled(self):
        services = make_services(audit_access_reads=False)
        await populate(services)
        await services.custody.list(SUBJECT, SUBJECT)

        assert services.audit.entries == []


class TestDelete:
    """Test delete authorization and best-effort blob removal"""

    def setup_method(self):
        self.store = FlakyStore()
        self.services = make_services(store=self.store)
        self.custody = self.services.custody

    async def _handler_document(self) -> str:
        await populate(self.services)
        await grant_access(self.services, SUBJECT, HANDLER_1)
        await grant_access(self.services, SUBJECT, HANDLER_2)
        return await self.custody.upload(SUBJECT, "notes.txt", b"clinical notes", HANDLER_1)

    @pytest.mark.asyncio
    async def test_uploader_deletes(self):
        digest = await self._handler_document()

        await self.custody.delete(SUBJECT, digest, HANDLER_1)

        assert await self.custody.list(SUBJECT, SUBJECT) == []
        assert self.store.unpin_calls == [digest]
        assert digest not in self.store.pinned

    @pytest.mark.asyncio
    async def test_admin_deletes(self):
        digest = await self._handler_document()
        await self.custody.delete(SUBJECT, digest, ADMIN)
        assert await self.custody.list(SUBJECT, ADMIN) == []

    @pytest.mark.asyncio
    async def test_others_cannot_delete_even_with_read_access(self):
        digest = await self._handler_document()

        for caller in (HANDLER_2, SUBJECT, SUBJECT_2, STRANGER):
            with pytest.raises(UnauthorizedError):
                await self.custody.delete(SUBJECT, digest, caller)

        assert len(await self.custody.list(SUBJECT, SUBJECT)) == 1

    @pytest.mark.asyncio
    async def test_delete_missing_document(self):
        await populate(self.services)
        with pytest.raises(DocumentNotFoundError):
            await self.custody.delete(SUBJECT, "f" * 64, ADMIN)

    @pytest.mark.asyncio
    async def test_unpin_failure_is_recorded_not_raised(self):
        digest = await self._handler_document()
        self.store.unpin_available = False

        await self.custody.delete(SUBJECT, digest, HANDLER_1)

        assert await self.custody.list(SUBJECT, SUBJECT) == []
        assert [f.content_hash for f in self.custody.cleanup_failures] == [digest]
        assert self.custody.cleanup_failures[0].error == "STORE_UNAVAILABLE"

        self.store.unpin_available = True
        report = await self.services.sweeper.sweep([f.content_hash for f in self.custody.cleanup_failures])
        assert report.unpinned == [digest]

    @pytest.mark.asyncio
    async def test_shared_blob_is_kept_while_referenced(self):
        await populate(self.services)
        digest = await self.custody.upload(SUBJECT, "same.pdf", REPORT, SUBJECT)
        await self.custody.upload(SUBJECT_2, "same.pdf", REPORT, SUBJECT_2)

        await self.custody.delete(SUBJECT, digest, SUBJECT)

        assert self.store.unpin_calls == []
        assert await self.custody.fetch(digest, SUBJECT_2, SUBJECT_2) == REPORT

    @pytest.mark.asyncio
    async def test_reupload_after_delete(self):
        await populate(self.services)
        digest = await self.custody.upload(SUBJECT, "report.pdf", REPORT, SUBJECT)
        await self.custody.delete(SUBJECT, digest, SUBJECT)

        again = await self.custody.upload(SUBJECT, "report-v2.pdf", REPORT, SUBJECT)

        assert again == digest
        documents = await self.custody.list(SUBJECT, SUBJECT)
        assert [d.name for d in documents] == ["report-v2.pdf"]


class TestBlobReleaseRaces:
    """Test uploads of the same bytes arriving while the blob is being unpinned"""

    def setup_method(self):
        self.store = SlowUnpinStore()
        self.services = make_services(store=self.store)
        self.custody = self.services.custody

    async def _upload_during_unpin(self, release) -> str:
        """Start release, wait for its unpin, upload the same bytes, then let the unpin finish"""
        release_task = asyncio.create_task(release)
        await self.store.unpin_started.wait()

        self.store.first_put_done.clear()
        upload_task = asyncio.create_task(self.custody.upload(SUBJECT_2, "scan.pdf", REPORT, SUBJECT_2))
        await self.store.first_put_done.wait()

        self.store.release_unpin.set()
        await release_task
        return await upload_task

    @pytest.mark.asyncio
    async def test_upload_during_delete_keeps_blob(self):
        await populate(self.services)
        digest = await self.custody.upload(SUBJECT, "scan.pdf", REPORT, SUBJECT)
        puts_before = self.store.put_calls

        uploaded = await self._upload_during_unpin(self.custody.delete(SUBJECT, digest, SUBJECT))

        assert uploaded == digest
        assert digest in self.store.pinned
        assert await self.custody.fetch(digest, SUBJECT_2, SUBJECT_2) == REPORT
        assert await self.custody.list(SUBJECT, SUBJECT) == []
        # Stored again after the unpin went through
        assert self.store.put_calls == puts_before + 2
        assert len(self.services.content_locks) == 0

    @pytest.mark.asyncio
    async def test_upload_during_orphan_sweep_keeps_blob(self):
        await populate(self.services)
        orphan = await self.store.put(REPORT)

        uploaded = await self._upload_during_unpin(self.services.sweeper.sweep([orphan]))

        assert uploaded == orphan
        assert await self.custody.fetch(orphan, SUBJECT_2, SUBJECT_2) == REPORT
        documents = await self.custody.list(SUBJECT_2, SUBJECT_2)
        assert [d.content_hash for d in documents] == [orphan]


class TestOrphanSweep:
    """Test the store/index reconciliation"""

    @pytest.mark.asyncio
    async def test_referenced_blobs_and_profiles_are_kept(self):
        services = make_services()
        await populate(services)
        profile_ref = await services.profiles.save_profile({"email": "alice@example.org"})
        await services.registry.update_identity(SUBJECT, "Alice", profile_ref, caller=SUBJECT)
        digest = await services.custody.upload(SUBJECT, "report.pdf", REPORT, SUBJECT)
        orphan = await services.store.put(b"left behind")

        report = await services.sweeper.sweep()

        assert report.examined == 3
        assert sorted(report.referenced) == sorted([digest, profile_ref])
        assert report.unpinned == [orphan]
        assert report.failed == []
