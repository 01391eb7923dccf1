"""API router for guardrail-engine.

All endpoints are registered here and included in main.py under the /api/v1
prefix. Routes are thin: validation, gating and persistence live in the
schema registry, the gate evaluator and the service layer. Every route
requires the ``x-afu9-sub`` subject header; lawbook writes require an admin
subject.

Endpoints:
- POST  /lawbooks/versions                   Create a lawbook version (201 new, 200 existing)
- GET   /lawbooks/versions                   List versions, newest first
- GET   /lawbooks/versions/{id}              Get a version
- POST  /lawbooks/versions/{id}/activate     Activate a version
- GET   /lawbooks/active                     Get the active version (404 when none)
- POST  /validate/{schema_id}                Validate and normalize a document
- POST  /change-requests/policy-check        Semantic change request check
- POST  /work-plans/compile                  Compile a work plan to an issue draft
- POST  /gates/{kind}                        Evaluate a gate (always 200)
- POST  /remediation/runs                    Plan a remediation run (201 new, 200 existing)
- POST  /hash                                Canonical content hash of a JSON value
- POST  /idempotency-keys                    Build an idempotency key
"""

import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Query, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from guardrail_engine.adapters.database import get_db_session
from guardrail_engine.adapters.repositories import LawbookRepository, RemediationRunRepository
from guardrail_engine.api.auth import get_app_settings, get_current_subject, require_admin
from guardrail_engine.api.schemas import (
    GateRequest,
    HashRequest,
    HashResponse,
    IdempotencyKeyRequest,
    IdempotencyKeyResponse,
    LawbookActivateResponse,
    LawbookVersionCreateResponse,
    LawbookVersionListResponse,
    LawbookVersionResponse,
    PolicyCheckRequest,
    RemediationRunRequest,
    RemediationRunResponse,
    ValidateResponse,
    WorkPlanCompileResponse,
)
from guardrail_engine.compilers.work_plan import compile_work_plan_to_issue_draft
from guardrail_engine.core.canonical import canonical_json
from guardrail_engine.core.hashing import hash_text, short_hash
from guardrail_engine.core.idempotency import build_idempotency_key, compute_inputs_hash
from guardrail_engine.core.services import GateService, LawbookService, RemediationService
from guardrail_engine.errors import NotFoundError, ValidationError
from guardrail_engine.gates.evaluator import GATE_KINDS
from guardrail_engine.observability import get_logger
from guardrail_engine.schemas.registry import SCHEMA_IDS, SCHEMA_ISSUE_DRAFT, SCHEMA_WORK_PLAN, document_hash, validate
from guardrail_engine.settings import Settings

logger = get_logger(__name__)

router = APIRouter(tags=["guardrails"])

Subject = Annotated[str, Depends(get_current_subject)]
AdminSubject = Annotated[str, Depends(require_admin)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]


# ---------------------------------------------------------------------------
# Dependency factories: wire repositories and services together
# ---------------------------------------------------------------------------


def get_lawbook_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: AppSettings,
) -> LawbookService:
    """Construct LawbookService with its repository.

    Args:
        session: Request-scoped DB session.
        settings: Service settings.

    Returns:
        Fully wired LawbookService instance.
    """
    return LawbookService(
        lawbook_repo=LawbookRepository(session),
        max_validation_errors=settings.max_validation_errors,
        hash_prefix_length=settings.hash_prefix_length,
    )


def get_gate_service(
    lawbook_service: Annotated[LawbookService, Depends(get_lawbook_service)],
    settings: AppSettings,
) -> GateService:
    """Construct GateService on top of the lawbook service."""
    return GateService(
        lawbook_service=lawbook_service,
        default_lawbook_id=settings.default_lawbook_id,
        key_max_length=settings.idempotency_key_max_length,
    )


def get_remediation_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    lawbook_service: Annotated[LawbookService, Depends(get_lawbook_service)],
    settings: AppSettings,
) -> RemediationService:
    """Construct RemediationService with its repository and the lawbook service."""
    return RemediationService(
        run_repo=RemediationRunRepository(session),
        lawbook_service=lawbook_service,
        default_lawbook_id=settings.default_lawbook_id,
    )


# ---------------------------------------------------------------------------
# Lawbook endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/lawbooks/versions",
    response_model=LawbookVersionCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_lawbook_version(
    lawbook: Annotated[Any, Body()],
    response: Response,
    subject: AdminSubject,
    service: Annotated[LawbookService, Depends(get_lawbook_service)],
) -> LawbookVersionCreateResponse:
    """Create a lawbook version; an identical existing version is returned with 200."""
    logger.info("POST /lawbooks/versions", subject=subject)
    result = await service.create_version(lawbook, created_by=subject)
    if result.is_existing:
        response.status_code = status.HTTP_200_OK
    return result


@router.get("/lawbooks/versions", response_model=LawbookVersionListResponse)
async def list_lawbook_versions(
    subject: Subject,
    settings: AppSettings,
    service: Annotated[LawbookService, Depends(get_lawbook_service)],
    lawbook_id: Annotated[str | None, Query(alias="lawbookId")] = None,
    limit: Annotated[int, Query(ge=1)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> LawbookVersionListResponse:
    """List lawbook versions, newest first. ``limit`` is capped at the configured maximum."""
    resolved_id = lawbook_id or settings.default_lawbook_id
    bounded = min(limit, settings.max_list_limit)
    versions = await service.list_versions(resolved_id, bounded, offset)
    return LawbookVersionListResponse(lawbook_id=resolved_id, versions=versions, limit=bounded, offset=offset)


@router.get("/lawbooks/versions/{version_id}", response_model=LawbookVersionResponse)
async def get_lawbook_version(
    version_id: uuid.UUID,
    subject: Subject,
    service: Annotated[LawbookService, Depends(get_lawbook_service)],
) -> LawbookVersionResponse:
    return await service.get_version(version_id)


@router.post("/lawbooks/versions/{version_id}/activate", response_model=LawbookActivateResponse)
async def activate_lawbook_version(
    version_id: uuid.UUID,
    subject: AdminSubject,
    service: Annotated[LawbookService, Depends(get_lawbook_service)],
) -> LawbookActivateResponse:
    """Make a version the active version of its lawbook."""
    logger.info("POST /lawbooks/versions/{id}/activate", version_id=str(version_id), subject=subject)
    return await service.activate(version_id, activated_by=subject)


@router.get("/lawbooks/active", response_model=LawbookVersionResponse)
async def get_active_lawbook(
    subject: Subject,
    settings: AppSettings,
    service: Annotated[LawbookService, Depends(get_lawbook_service)],
    lawbook_id: Annotated[str | None, Query(alias="lawbookId")] = None,
) -> LawbookVersionResponse | JSONResponse:
    """Return the active version, or 404 with ``notConfigured`` when none is active."""
    resolved_id = lawbook_id or settings.default_lawbook_id
    version = await service.get_active_version(resolved_id)
    if version is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "NotFoundError",
                "message": f"No active lawbook configured for '{resolved_id}'. Deny by default.",
                "notConfigured": True,
            },
        )
    return version


# ---------------------------------------------------------------------------
# Document endpoints
# ---------------------------------------------------------------------------


@router.post("/validate/{schema_id}", response_model=ValidateResponse)
async def validate_document(
    schema_id: str,
    document: Annotated[Any, Body()],
    subject: Subject,
    settings: AppSettings,
) -> ValidateResponse:
    """Validate and normalize a document; 422 with the ordered issue list when invalid."""
    if schema_id not in SCHEMA_IDS:
        raise NotFoundError(message=f"Unknown schema '{schema_id}'", resource="schema", resource_id=schema_id)
    result = validate(schema_id, document, settings.max_validation_errors)
    if not result.success or result.data is None:
        raise ValidationError(message=f"Document is not a valid {schema_id}", issues=list(result.errors))
    return ValidateResponse(
        schema_id=schema_id,
        data=result.data.to_document(),
        hash=document_hash(schema_id, result.data),
    )


@router.post("/change-requests/policy-check")
async def check_change_request(
    request: PolicyCheckRequest,
    subject: Subject,
    service: Annotated[GateService, Depends(get_gate_service)],
) -> dict[str, Any]:
    """Run the semantic change request check. The report carries ``ok``; the status is always 200."""
    report = await service.check_change_request(request.change_request, request.lawbook_id)
    return report.to_dict()


@router.post("/work-plans/compile", response_model=WorkPlanCompileResponse)
async def compile_work_plan(
    work_plan: Annotated[Any, Body()],
    subject: Subject,
    settings: AppSettings,
) -> WorkPlanCompileResponse:
    """Validate a work plan and compile it into an issue draft."""
    result = validate(SCHEMA_WORK_PLAN, work_plan, settings.max_validation_errors)
    if not result.success or result.data is None:
        raise ValidationError(message="Document is not a valid work_plan", issues=list(result.errors))
    compiled = compile_work_plan_to_issue_draft(result.data)
    return WorkPlanCompileResponse(
        draft=compiled.draft.to_document(),
        body_hash=compiled.body_hash,
        draft_hash=document_hash(SCHEMA_ISSUE_DRAFT, compiled.draft),
    )


# ---------------------------------------------------------------------------
# Gate and remediation endpoints
# ---------------------------------------------------------------------------


@router.post("/gates/{kind}")
async def evaluate_gate(
    kind: str,
    request: GateRequest,
    subject: Subject,
    service: Annotated[GateService, Depends(get_gate_service)],
) -> dict[str, Any]:
    """Evaluate a gate. DENY and HOLD are verdicts, returned with status 200."""
    if kind not in GATE_KINDS:
        raise NotFoundError(message=f"Unknown gate kind '{kind}'", resource="gate", resource_id=kind)
    verdict = await service.evaluate(kind, request.params, request.lawbook_id)
    return verdict.to_wire()


@router.post(
    "/remediation/runs",
    response_model=RemediationRunResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_remediation_run(
    request: RemediationRunRequest,
    response: Response,
    subject: Subject,
    service: Annotated[RemediationService, Depends(get_remediation_service)],
) -> RemediationRunResponse:
    """Plan a remediation run; an existing run with the same key is returned with 200."""
    logger.info(
        "POST /remediation/runs",
        incident_key=request.incident_key,
        playbook_id=request.playbook_id,
        subject=subject,
    )
    run = await service.execute_playbook(
        incident_key=request.incident_key,
        playbook_id=request.playbook_id,
        inputs=request.inputs,
        evidence=request.evidence,
        incident_category=request.incident_category,
        lawbook_id=request.lawbook_id,
    )
    if run.is_existing:
        response.status_code = status.HTTP_200_OK
    return run


# ---------------------------------------------------------------------------
# Utility endpoints
# ---------------------------------------------------------------------------


@router.post("/hash", response_model=HashResponse)
async def hash_value(request: HashRequest, subject: Subject, settings: AppSettings) -> HashResponse:
    """Return the canonical encoding of a JSON value and its content hash."""
    canonical = canonical_json(request.value)
    digest = hash_text(canonical)
    return HashResponse(hash=digest, hash_prefix=short_hash(digest, settings.hash_prefix_length), canonical=canonical)


@router.post("/idempotency-keys", response_model=IdempotencyKeyResponse)
async def create_idempotency_key(request: IdempotencyKeyRequest, subject: Subject) -> IdempotencyKeyResponse:
    """Build ``scope:actionId:hash(inputs)``."""
    return IdempotencyKeyResponse(
        key=build_idempotency_key(request.scope, request.action_id, request.inputs),
        inputs_hash=compute_inputs_hash(request.inputs),
    )
