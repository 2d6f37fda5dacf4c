"""
Document Custody Manager

Owns the per-subject document index. Blob bytes belong to the content
store; an index entry only holds the content hash. Writes go store first,
index second. Deletes go index first, blob second, and the blob step is
best effort: its failures are recorded and logged, never raised.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Dict, List, Optional, Tuple
import structlog

from .locks import ContentLocks
from .models import CleanupFailure, Document
from ..config import CustodyConfig, get_custody_config
from ..constants import AccessActions, LedgerEventKinds
from ..exceptions import (
    AlreadyExistsError, BlobNotFoundError, CustodyError, DocumentNotFoundError,
    InvalidStateTransitionError, StoreUnavailableError, StoreWriteFailedError,
    UnauthorizedError,
)
from ..identity.models import Identity, Role
from ..ledger.client import LedgerClient
from ..ledger.events import LedgerEvent, LedgerView, Mutation, document_key, grant_key, identity_key
from ..ledger.gateway import LedgerGateway
from ..policy.audit import AccessAuditLog
from ..policy.rbac import Permission, check_permission, require_permission
from ..store.adapter import ContentStore
from ..utils.validators import (
    validate_address, validate_content_hash, validate_document_bytes, validate_document_name,
)

if TYPE_CHECKING:
    from ..consent.engine import AccessConsentEngine
    from ..identity.registry import IdentityRegistry

logger = structlog.get_logger(__name__)


class DocumentCustodyManager:
    """Upload, list, fetch and delete documents under the subject's consent"""

    def __init__(self, ledger: LedgerClient, registry: "IdentityRegistry",
                 consent: "AccessConsentEngine", store: ContentStore,
                 config: Optional[CustodyConfig] = None,
                 audit: Optional[AccessAuditLog] = None,
                 locks: Optional[ContentLocks] = None):
        self.config = config or get_custody_config()
        self.gateway = LedgerGateway(ledger, self.config.ledger_timeout_seconds)
        self.registry = registry
        self.consent = consent
        self.store = store
        self.audit = audit or AccessAuditLog()
        self.locks = locks or ContentLocks()

        # Blobs whose removal did not succeed; input for the orphan sweep
        self.cleanup_failures: List[CleanupFailure] = []

    async def _store_call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.config.store_timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning("Content store call timed out", operation=operation,
                           timeout=self.config.store_timeout_seconds)
            if operation == "put":
                raise StoreWriteFailedError(reason="timeout") from exc
            raise StoreUnavailableError(operation, reason="timeout") from exc

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def _authorize_upload(self, subject: Identity, uploader: str) -> Tuple[Identity, Dict[str, int]]:
        """Uploader is the subject, or an active handler holding an approved grant"""
        if uploader == subject.address:
            require_permission(subject, Permission.MANAGE_OWN_DOCUMENTS, "upload_document", uploader)
            return subject, {}

        handler = require_permission(await self.registry.find_identity(uploader),
                                     Permission.WRITE_WITH_CONSENT, "upload_document", uploader)
        grant = await self.consent.get_grant(subject.address, handler.address)
        if not grant.is_valid():
            logger.warning("Upload refused without consent", subject=subject.address,
                           handler=handler.address, grant_state=grant.state.value)
            raise UnauthorizedError("upload_document", caller=uploader, reason="no_consent",
                                    details={"subject": subject.address, "grant_state": grant.state.value})
        return handler, {grant_key(subject.address, handler.address): grant.sequence}

    async def upload(self, subject: str, name: str, data: bytes, uploader: str) -> str:
        """
        Store bytes and index them under the subject; returns the content hash.

        If the index append fails after the store accepted the bytes, the
        blob is left for the orphan sweep and the error is raised unchanged.
        """
        name = validate_document_name(name)
        data = validate_document_bytes(data, self.config.max_document_bytes)
        subject_identity = await self.registry.require_active(validate_address(subject, "subject"), Role.SUBJECT)
        uploader_identity, grant_preconditions = await self._authorize_upload(
            subject_identity, validate_address(uploader, "uploader"))

        content_hash = await self._store_call("put", self.store.put(data))
        async with self.locks.hold(content_hash):
            # A release may have unpinned the blob between the put and the lock
            if not await self._store_call("is_pinned", self.store.is_pinned(content_hash)):
                logger.info("Blob released during upload; storing again", content_hash=content_hash)
                await self._store_call("put", self.store.put(data))
            event = await self._append_document(subject_identity, uploader_identity, grant_preconditions,
                                                name, content_hash, len(data))

        logger.info("Document uploaded", subject=subject_identity.address, content_hash=content_hash,
                    uploaded_by=uploader_identity.address, size=len(data), sequence=event.sequence)
        return content_hash

    async def _append_document(self, subject_identity: Identity, uploader_identity: Identity,
                               grant_preconditions: Dict[str, int], name: str,
                               content_hash: str, size: int) -> LedgerEvent:
        doc_key = document_key(subject_identity.address, content_hash)
        try:
            existing = await self.gateway.query(LedgerView.DOCUMENT, subject=subject_identity.address,
                                                content_hash=content_hash)
            if existing is not None:
                raise AlreadyExistsError("document", content_hash, {"subject": subject_identity.address})

            document = Document(
                subject=subject_identity.address,
                name=name,
                content_hash=content_hash,
                uploaded_by=uploader_identity.address,
                size=size,
            )
            mutation = Mutation(
                kind=LedgerEventKinds.DOCUMENT_ADDED,
                actor=uploader_identity.address,
                key=doc_key,
                payload={"document": document.model_dump(mode="json", exclude={"sequence"})},
                preconditions={
                    doc_key: await self.gateway.key_sequence(doc_key),
                    identity_key(subject_identity.address): subject_identity.sequence,
                    identity_key(uploader_identity.address): uploader_identity.sequence,
                    **grant_preconditions,
                },
            )
            return await self.gateway.submit(mutation, "upload_document")
        except AlreadyExistsError:
            raise
        except CustodyError as e:
            logger.error("Document index append failed; blob left for sweep",
                         subject=subject_identity.address, content_hash=content_hash,
                         error_code=e.error_code)
            raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _audit(self, action: str, outcome: str, subject: str, caller: str,
               content_hash: Optional[str] = None, reason: Optional[str] = None) -> None:
        if self.config.audit_access_reads:
            self.audit.record(action, outcome, subject, caller, content_hash=content_hash, reason=reason)

    async def _authorize_read(self, subject: str, caller: str, action: str,
                              content_hash: Optional[str] = None) -> Identity:
        """Subject, administrator, or an active handler whose grant is approved right now"""
        caller_identity = await self.registry.find_identity(caller)
        reason: Optional[str] = None

        if caller == subject and check_permission(caller_identity, Permission.MANAGE_OWN_DOCUMENTS):
            pass
        elif check_permission(caller_identity, Permission.READ_ANY_DOCUMENTS):
            pass
        elif check_permission(caller_identity, Permission.READ_WITH_CONSENT):
            subject_identity = await self.registry.find_identity(subject)
            if subject_identity is None or not subject_identity.active:
                reason = "subject_inactive"
            elif not await self.consent.check(subject, caller):
                reason = "no_consent"
        elif caller_identity is None:
            reason = "unknown_caller"
        elif not caller_identity.active:
            reason = "caller_inactive"
        else:
            reason = "missing_permission"

        if reason is not None:
            self._audit(action, AccessActions.DENIED, subject, caller, content_hash, reason)
            raise UnauthorizedError(action, caller=caller, reason=reason, details={"subject": subject})

        self._audit(action, AccessActions.ALLOWED, subject, caller, content_hash)
        return caller_identity

    async def list(self, subject: str, caller: str) -> List[Document]:
        """Document metadata of a subject; never includes bytes"""
        subject = validate_address(subject, "subject")
        await self._authorize_read(subject, validate_address(caller, "caller"), AccessActions.LIST_DOCUMENTS)
        return await self.gateway.query(LedgerView.DOCUMENTS_FOR_SUBJECT, subject=subject)

    async def fetch(self, content_hash: str, subject: str, caller: str) -> bytes:
        """Bytes of one indexed document; authorization is re-checked on every call"""
        content_hash = validate_content_hash(content_hash)
        subject = validate_address(subject, "subject")
        await self._authorize_read(subject, validate_address(caller, "caller"),
                                   AccessActions.FETCH_DOCUMENT, content_hash)

        document = await self.gateway.query(LedgerView.DOCUMENT, subject=subject, content_hash=content_hash)
        if document is None:
            raise DocumentNotFoundError(subject, content_hash)

        try:
            return await self._store_call("get", self.store.get(content_hash))
        except BlobNotFoundError as e:
            logger.error("Indexed document has no blob", subject=subject, content_hash=content_hash)
            error = DocumentNotFoundError(subject, content_hash)
            error.details["blob_missing"] = True
            raise error from e

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def _remove_from_index(self, document: Document, actor: Identity) -> None:
        doc_key = document_key(document.subject, document.content_hash)
        mutation = Mutation(
            kind=LedgerEventKinds.DOCUMENT_REMOVED,
            actor=actor.address,
            key=doc_key,
            payload={"subject": document.subject, "content_hash": document.content_hash},
            preconditions={doc_key: document.sequence, identity_key(actor.address): actor.sequence},
        )
        event = await self.gateway.submit(mutation, "delete_document")
        logger.info("Document removed from index", subject=document.subject,
                    content_hash=document.content_hash, actor=actor.address, sequence=event.sequence)

    async def _release_blob(self, subject: str, content_hash: str) -> Optional[CleanupFailure]:
        """Best-effort unpin; skipped while another index entry still references the hash"""
        try:
            # Held from the reference check through the unpin so uploads of the same bytes wait
            async with self.locks.hold(content_hash):
                if await self.gateway.query(LedgerView.DOCUMENTS_BY_HASH, content_hash=content_hash):
                    logger.debug("Blob still referenced; keeping it", content_hash=content_hash)
                    return None
                await self._store_call("unpin", self.store.unpin(content_hash))
        except CustodyError as e:
            failure = CleanupFailure(content_hash=content_hash, subject=subject, error=e.error_code)
            self.cleanup_failures.append(failure)
            logger.warning("Blob removal failed", subject=subject, content_hash=content_hash,
                           error_code=e.error_code, details=e.details)
            return failure

        logger.debug("Blob unpinned", content_hash=content_hash)
        return None

    async def delete(self, subject: str, content_hash: str, caller: str) -> None:
        """Remove a document; allowed to its uploader or an administrator"""
        subject = validate_address(subject, "subject")
        content_hash = validate_content_hash(content_hash)
        caller = validate_address(caller, "caller")

        caller_identity = await self.registry.find_identity(caller)
        if caller_identity is None or not caller_identity.active:
            reason = "unknown_caller" if caller_identity is None else "caller_inactive"
            logger.warning("Delete refused", caller=caller, reason=reason)
            raise UnauthorizedError("delete_document", caller=caller, reason=reason)

        document = await self.gateway.query(LedgerView.DOCUMENT, subject=subject, content_hash=content_hash)
        if document is None:
            raise DocumentNotFoundError(subject, content_hash)

        if caller != document.uploaded_by and not check_permission(caller_identity, Permission.DELETE_ANY_DOCUMENT):
            logger.warning("Delete refused", subject=subject, content_hash=content_hash,
                           caller=caller, uploaded_by=document.uploaded_by)
            raise UnauthorizedError("delete_document", caller=caller, reason="not_uploader",
                                    details={"subject": subject, "content_hash": content_hash})

        await self._remove_from_index(document, caller_identity)
        await self._release_blob(subject, content_hash)

    async def purge_subject(self, subject: str, actor: str) -> Tuple[List[str], List[CleanupFailure]]:
        """Remove every index entry of a subject; used by the deactivation cascade"""
        subject = validate_address(subject, "subject")
        admin = require_permission(await self.registry.find_identity(actor),
                                   Permission.DELETE_ANY_DOCUMENT, "purge_documents", actor)

        removed: List[str] = []
        failures: List[CleanupFailure] = []
        for document in await self.gateway.query(LedgerView.DOCUMENTS_FOR_SUBJECT, subject=subject):
            try:
                await self._remove_from_index(document, admin)
            except InvalidStateTransitionError as e:
                logger.info("Document changed during purge", subject=subject,
                            content_hash=document.content_hash, error_code=e.error_code)
                continue
            removed.append(document.content_hash)
            failure = await self._release_blob(subject, document.content_hash)
            if failure is not None:
                failures.append(failure)

        return removed, failures
