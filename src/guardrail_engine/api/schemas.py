"""Pydantic request and response schemas for the guardrail engine API.

Wire names are camelCase; models accept snake_case too so services can build
them by field name. Documents being validated or gated travel as raw JSON
values and are checked by the strict document schemas, not here.

Resources:
- LawbookVersion: create, list, get and activate lawbook versions
- Validation: validate documents by schema ID
- ChangeRequest: semantic policy check
- WorkPlan: compile to an issue draft
- Gate: evaluate a gate against the active lawbook
- RemediationRun: plan a playbook run
- Hash and idempotency key utilities
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for API models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Lawbook schemas
# ---------------------------------------------------------------------------


class LawbookVersionResponse(ApiModel):
    """Response schema for a stored lawbook version."""

    id: uuid.UUID = Field(description="Version UUID")
    lawbook_id: str = Field(description="Lawbook identifier")
    lawbook_version: str = Field(description="Author-assigned version label")
    created_at: datetime = Field(description="Creation timestamp (UTC)")
    created_by: str = Field(description="admin | system")
    lawbook_hash: str = Field(description="Full SHA-256 of the canonical document")
    lawbook_hash_prefix: str = Field(description="Display prefix of the hash; never compare on it")
    schema_version: str = Field(description="Lawbook schema version")
    lawbook: dict[str, Any] = Field(description="Normalized lawbook document")


class LawbookVersionCreateResponse(ApiModel):
    """Response for creating a lawbook version."""

    version: LawbookVersionResponse
    is_existing: bool = Field(description="True when an identical version already existed")


class LawbookVersionListResponse(ApiModel):
    """Page of lawbook versions, newest first."""

    lawbook_id: str
    versions: list[LawbookVersionResponse]
    limit: int
    offset: int


class LawbookActivateResponse(ApiModel):
    """Response for activating a lawbook version."""

    lawbook_id: str = Field(description="Lawbook whose pointer moved")
    active_lawbook_version_id: uuid.UUID = Field(description="Newly active version")
    previous_lawbook_version_id: uuid.UUID | None = Field(description="Version active before, if any")
    version: LawbookVersionResponse


# ---------------------------------------------------------------------------
# Document schemas
# ---------------------------------------------------------------------------


class ValidateResponse(ApiModel):
    """A validated, normalized document and its identity hash."""

    schema_id: str = Field(description="Schema the document validated against")
    data: dict[str, Any] = Field(description="Normalized document")
    hash: str = Field(description="Full content hash of the normalized document")


class PolicyCheckRequest(ApiModel):
    """Request body for a change request policy check."""

    change_request: Any = Field(description="Change request document to check")
    lawbook_id: str | None = Field(default=None, description="Lawbook whose allow-lists apply")


class WorkPlanCompileResponse(ApiModel):
    """Compiled issue draft."""

    draft: dict[str, Any] = Field(description="Normalized issue draft")
    body_hash: str = Field(description="Display prefix of the body hash")
    draft_hash: str = Field(description="Full content hash of the draft")


# ---------------------------------------------------------------------------
# Gate and remediation schemas
# ---------------------------------------------------------------------------


class GateRequest(ApiModel):
    """Request body for a gate evaluation."""

    params: Any = Field(description="Gate parameters for the requested kind")
    lawbook_id: str | None = Field(default=None, description="Lawbook to evaluate against")


class RemediationRunRequest(ApiModel):
    """Request body for planning a remediation run."""

    incident_key: str = Field(min_length=1, max_length=200, description="Stable incident key")
    playbook_id: str = Field(min_length=1, max_length=100, description="Playbook to run")
    incident_category: str | None = Field(default=None, max_length=100)
    inputs: dict[str, Any] = Field(default_factory=dict, description="Run inputs; key order is irrelevant")
    evidence: list[dict[str, Any]] = Field(default_factory=list, max_length=200)
    lawbook_id: str | None = Field(default=None)


class RemediationRunResponse(ApiModel):
    """A persisted remediation run."""

    id: uuid.UUID
    run_key: str
    incident_key: str
    playbook_id: str
    playbook_version: str
    status: str = Field(description="PLANNED | SKIPPED")
    skip_reason: str | None
    lawbook_version: str | None
    inputs_hash: str
    plan: dict[str, Any] = Field(description="Plan with every gate verdict")
    created_at: datetime
    is_existing: bool = Field(description="True when a run with this key already existed")


# ---------------------------------------------------------------------------
# Utility schemas
# ---------------------------------------------------------------------------


class HashRequest(ApiModel):
    value: Any = Field(description="JSON value to hash")


class HashResponse(ApiModel):
    hash: str = Field(description="Full SHA-256 hex digest of the canonical encoding")
    hash_prefix: str = Field(description="Display prefix")
    canonical: str = Field(description="Canonical JSON encoding")


class IdempotencyKeyRequest(ApiModel):
    scope: str = Field(min_length=1, max_length=200)
    action_id: str = Field(min_length=1, max_length=200)
    inputs: Any = Field(default=None)


class IdempotencyKeyResponse(ApiModel):
    key: str
    inputs_hash: str
