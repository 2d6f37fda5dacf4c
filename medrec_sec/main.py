"""
MedRec Security & Custody - FastAPI Application
Identity management, consent lifecycle and document custody over HTTP.
The caller identity is passed explicitly in the X-Caller-Address header.
"""

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import base64
import binascii
import structlog

from pydantic import BaseModel, Field

from .config import StoreBackend, get_custody_config
from .constants import SERVICE_NAME, SERVICE_VERSION
from .exceptions import (
    AlreadyExistsError, CustodyError, ExternalFailureError, InvalidStateTransitionError,
    LedgerTimeoutError, NotFoundError, UnauthorizedError, ValidationError,
)
from .consent.models import GrantState
from .identity.models import Role
from .policy.rbac import Permission, require_permission
from .service import CustodyServices, build_services
from .utils.validators import normalize_address

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Initialized by the lifespan unless injected beforehand (tests)
services: Optional[CustodyServices] = None


class IdentityIn(BaseModel):
    address: str
    name: str
    role: Role
    profile_ref: Optional[str] = None
    profile: Optional[Dict[str, Any]] = Field(default=None, description="Stored as a blob; sets profile_ref")


class IdentityUpdateIn(BaseModel):
    name: str
    profile_ref: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None


class DocumentIn(BaseModel):
    name: str
    data_base64: str


class CustodyConfigOut(BaseModel):
    """Non-sensitive settings exposed to operators"""
    root_admin_address: str
    store_backend: StoreBackend
    ledger_timeout_seconds: float
    store_timeout_seconds: float
    max_document_bytes: int
    audit_access_reads: bool
    debug_mode: bool
    log_level: str


def status_for(exc: CustodyError) -> int:
    """HTTP status for an error kind"""
    if isinstance(exc, UnauthorizedError):
        return 401 if exc.details.get("reason") in ("unknown_caller", "missing_caller") else 403
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (AlreadyExistsError, InvalidStateTransitionError)):
        return 409
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, LedgerTimeoutError):
        return 504
    if isinstance(exc, ExternalFailureError):
        return 502
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global services

    logger.info("Starting MedRec Security & Custody", version=SERVICE_VERSION)
    if services is None:
        services = build_services()
    await services.start()

    yield

    logger.info("Shutting down MedRec Security & Custody")
    await services.close()


app = FastAPI(
    title="MedRec Security & Custody",
    description="Consent state machine and document custody for subject-owned records",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_custody_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CustodyError)
async def custody_error_handler(request: Request, exc: CustodyError) -> JSONResponse:
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.info
    log("Request failed", path=request.url.path, error_code=exc.error_code, status=status)
    return JSONResponse(status_code=status, content={"detail": exc.to_dict()})


def get_services() -> CustodyServices:
    if services is None:
        raise ExternalFailureError("Custody services not available", operation="startup")
    return services


def caller_address(x_caller_address: Optional[str] = Header(default=None)) -> str:
    if not x_caller_address:
        raise UnauthorizedError("request", reason="missing_caller")
    return x_caller_address


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy" if services is not None else "starting",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


@app.get("/config", response_model=CustodyConfigOut)
async def get_config(svc: CustodyServices = Depends(get_services)) -> CustodyConfigOut:
    """
    Return the effective custody configuration.

    Intended for operator dashboards; database URLs and store endpoints
    are left out.
    """
    settings = svc.config
    return CustodyConfigOut(
        root_admin_address=settings.root_admin_address,
        store_backend=settings.store_backend,
        ledger_timeout_seconds=settings.ledger_timeout_seconds,
        store_timeout_seconds=settings.store_timeout_seconds,
        max_document_bytes=settings.max_document_bytes,
        audit_access_reads=settings.audit_access_reads,
        debug_mode=settings.debug_mode,
        log_level=settings.log_level,
    )


# =============================================================================
# IDENTITIES
# =============================================================================

@app.get("/identities")
async def list_identities(role: Optional[Role] = None, svc: CustodyServices = Depends(get_services)):
    identities = await svc.registry.list_active(role)
    return {"identities": [i.model_dump(mode="json") for i in identities]}


@app.get("/identities/{address}")
async def get_identity(address: str, svc: CustodyServices = Depends(get_services)):
    identity = await svc.registry.get_identity(address)
    return identity.model_dump(mode="json")


@app.get("/identities/{address}/profile")
async def get_profile(address: str, svc: CustodyServices = Depends(get_services)):
    identity = await svc.registry.get_identity(address)
    if not identity.profile_ref:
        return {"address": identity.address, "profile": {}}
    profile = await svc.profiles.load_profile(identity.profile_ref)
    return {"address": identity.address, "profile_ref": identity.profile_ref, "profile": profile}


@app.post("/identities", status_code=201)
async def add_identity(body: IdentityIn, caller: str = Depends(caller_address),
                       svc: CustodyServices = Depends(get_services)):
    await svc.registry.authorize_add(caller)
    profile_ref = body.profile_ref
    if body.profile is not None:
        profile_ref = await svc.profiles.save_profile(body.profile)
    identity = await svc.registry.add_identity(body.address, body.name, body.role, profile_ref, caller=caller)
    return identity.model_dump(mode="json")


@app.put("/identities/{address}")
async def update_identity(address: str, body: IdentityUpdateIn, caller: str = Depends(caller_address),
                          svc: CustodyServices = Depends(get_services)):
    await svc.registry.authorize_update(address, caller)
    profile_ref = body.profile_ref
    if body.profile is not None:
        profile_ref = await svc.profiles.save_profile(body.profile)
    identity = await svc.registry.update_identity(address, body.name, profile_ref, caller=caller)
    return identity.model_dump(mode="json")


@app.delete("/identities/{address}")
async def deactivate_identity(address: str, caller: str = Depends(caller_address),
                              svc: CustodyServices = Depends(get_services)):
    report = await svc.registry.deactivate_identity(address, caller=caller)
    return report.model_dump(mode="json")


# =============================================================================
# GRANTS
# =============================================================================

@app.post("/grants/{subject}/request", status_code=201)
async def request_access(subject: str, caller: str = Depends(caller_address),
                         svc: CustodyServices = Depends(get_services)):
    """The calling handler asks the subject for access"""
    grant = await svc.consent.request(subject, caller)
    return grant.model_dump(mode="json")


@app.post("/grants/{subject}/{handler}/{action}")
async def decide_access(subject: str, handler: str, action: str, caller: str = Depends(caller_address),
                        svc: CustodyServices = Depends(get_services)):
    decisions = {
        "approve": svc.consent.approve,
        "reject": svc.consent.reject,
        "revoke": svc.consent.revoke,
    }
    if action not in decisions:
        raise ValidationError(f"unknown grant action {action}", field="action")
    grant = await decisions[action](subject, handler, caller)
    return grant.model_dump(mode="json")


@app.get("/grants/{subject}")
async def list_grants(subject: str, svc: CustodyServices = Depends(get_services)):
    grants = await svc.consent.list_grants(subject)
    return {
        "subject": normalize_address(subject),
        "grants": [g.model_dump(mode="json") for g in grants],
        "pending": [g.handler for g in grants if g.state == GrantState.PENDING],
        "approved": [g.handler for g in grants if g.is_valid()],
    }


@app.get("/grants/{subject}/{handler}")
async def get_grant(subject: str, handler: str, svc: CustodyServices = Depends(get_services)):
    grant = await svc.consent.get_grant(subject, handler)
    return {**grant.model_dump(mode="json"), "approved": grant.is_valid()}


@app.get("/handlers/{handler}/subjects")
async def accessible_subjects(handler: str, svc: CustodyServices = Depends(get_services)):
    return {"handler": normalize_address(handler), "subjects": await svc.consent.list_accessible_subjects(handler)}


# =============================================================================
# DOCUMENTS
# =============================================================================

@app.post("/documents/{subject}", status_code=201)
async def upload_document(subject: str, body: DocumentIn, caller: str = Depends(caller_address),
                          svc: CustodyServices = Depends(get_services)):
    try:
        data = base64.b64decode(body.data_base64.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValidationError("data_base64 is not valid base64", field="data_base64") from exc

    content_hash = await svc.custody.upload(subject, body.name, data, caller)
    return {"subject": normalize_address(subject), "content_hash": content_hash}


@app.get("/documents/{subject}")
async def list_documents(subject: str, caller: str = Depends(caller_address),
                         svc: CustodyServices = Depends(get_services)):
    documents = await svc.custody.list(subject, caller)
    return {"subject": normalize_address(subject), "documents": [d.model_dump(mode="json") for d in documents]}


@app.get("/documents/{subject}/{content_hash}")
async def fetch_document(subject: str, content_hash: str, caller: str = Depends(caller_address),
                         svc: CustodyServices = Depends(get_services)):
    data = await svc.custody.fetch(content_hash, subject, caller)
    return Response(content=data, media_type="application/octet-stream")


@app.delete("/documents/{subject}/{content_hash}", status_code=204)
async def delete_document(subject: str, content_hash: str, caller: str = Depends(caller_address),
                          svc: CustodyServices = Depends(get_services)):
    await svc.custody.delete(subject, content_hash, caller)
    return Response(status_code=204)


# =============================================================================
# EVENTS
# =============================================================================

@app.get("/events")
async def list_events(from_sequence: int = 1, address: Optional[str] = None,
                      svc: CustodyServices = Depends(get_services)):
    if address is not None:
        events = [e for e in await svc.reconciliation.events_for(address) if e.sequence >= from_sequence]
    else:
        events = await svc.reconciliation.history(from_sequence)
    return {"events": [e.model_dump(mode="json") for e in events]}


# =============================================================================
# AUDIT & MAINTENANCE
# =============================================================================

@app.get("/audit/{subject}")
async def export_audit(subject: str, caller: str = Depends(caller_address),
                       svc: CustodyServices = Depends(get_services)):
    """Access decisions on a subject's documents; for the subject or an administrator"""
    subject = normalize_address(subject)
    identity = await svc.registry.find_identity(caller)
    permission = Permission.MANAGE_OWN_DOCUMENTS if normalize_address(caller) == subject \
        else Permission.READ_ANY_DOCUMENTS
    require_permission(identity, permission, "export_audit", caller)
    return svc.audit.export(subject)


@app.post("/maintenance/sweep")
async def sweep_orphans(caller: str = Depends(caller_address),
                        svc: CustodyServices = Depends(get_services)):
    """Unpin blobs no document or profile references"""
    require_permission(await svc.registry.find_identity(caller),
                       Permission.DELETE_ANY_DOCUMENT, "sweep_orphans", caller)
    # Failures recorded while the sweep runs stay tracked for the next one
    swept = list(svc.custody.cleanup_failures)
    report = await svc.sweeper.sweep([f.content_hash for f in swept] or None)
    settled = {id(f) for f in swept if f.content_hash not in report.failed}
    svc.custody.cleanup_failures = [f for f in svc.custody.cleanup_failures if id(f) not in settled]
    return report.model_dump(mode="json")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "MedRec Security & Custody",
        "version": SERVICE_VERSION,
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
