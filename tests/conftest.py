"""Test fixtures for guardrail-engine.

Provides:
- fixed_now: A pinned UTC evaluation clock
- lawbook_document: A complete, valid lawbook in wire form
- lawbook: The same lawbook parsed into LawbookV1
- issue_draft_document / change_request_document / work_plan_document: valid documents
- make_version_row: Builds LawbookVersion rows for repository mocks
- mock_lawbook_repo: A mock ILawbookRepository
- mock_run_repo: A mock IRemediationRunRepository
"""

import copy
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from guardrail_engine.core.models import LawbookVersion
from guardrail_engine.schemas.lawbook import LawbookV1, compute_lawbook_hash
from guardrail_engine.schemas.registry import SCHEMA_LAWBOOK, validate

_LAWBOOK: dict[str, Any] = {
    "version": "0.7.0",
    "lawbookId": "AFU9-LAWBOOK",
    "lawbookVersion": "2025-12-30.1",
    "createdAt": "2025-12-30T10:00:00.000Z",
    "createdBy": "system",
    "notes": "Baseline guardrails",
    "github": {
        "allowedRepos": [
            {"owner": "adaefler-art", "repo": "codefactory-control", "branches": ["main", "develop"]},
        ],
    },
    "determinism": {"requireDeterminismGate": True, "requirePostDeployVerification": True},
    "remediation": {
        "enabled": True,
        "allowedPlaybooks": ["rerun-post-deploy-verification", "redeploy-lkg", "service-health-reset"],
        "allowedActions": [
            "RUN_VERIFICATION",
            "ROLLBACK_DEPLOY",
            "SNAPSHOT_SERVICE_STATE",
            "FORCE_NEW_DEPLOYMENT",
            "POLL_SERVICE_HEALTH",
            "UPDATE_INCIDENT_STATUS",
        ],
        "maxRunsPerIncident": 3,
        "cooldownMinutes": 15,
    },
    "automationPolicy": {
        "enforcementMode": "strict",
        "policies": [
            {
                "actionType": "rerun_job",
                "allowedEnvs": ["staging", "prod"],
                "cooldownSeconds": 300,
                "maxRunsPerWindow": 3,
                "windowSeconds": 3600,
                "idempotencyKeyTemplate": ["owner", "repo", "runId"],
            },
            {
                "actionType": "merge_pr",
                "allowedEnvs": ["staging"],
                "requiresApproval": True,
                "approvalsRequired": 2,
            },
        ],
    },
    "evidence": {
        "maxEvidenceItems": 100,
        "requiredKindsByCategory": {"workflow_failure": ["workflow_run", "error_log"]},
    },
    "enforcement": {"requiredFields": ["lawbookVersion"], "strictMode": True},
    "ui": {"displayName": "AFU-9 Default Lawbook"},
}

_ISSUE_DRAFT: dict[str, Any] = {
    "issueDraftVersion": "1.0",
    "title": "Add deterministic gate verdicts",
    "body": "Canonical-ID: I811\n\nGate verdicts must be reproducible.",
    "type": "issue",
    "canonicalId": "I811",
    "labels": ["v0.8", "epic:E81", "guardrails"],
    "dependsOn": ["I810"],
    "priority": "P1",
    "acceptanceCriteria": ["Verdicts are reproducible", "Reasons are sorted by code"],
    "verify": {"commands": ["npm run repo:verify"], "expected": ["All checks pass"]},
    "guards": {"env": "development", "prodBlocked": True},
}

_CHANGE_REQUEST: dict[str, Any] = {
    "crVersion": "0.7.0",
    "canonicalId": "CR-2026-01-01-001",
    "title": "Harden lawbook activation",
    "motivation": "Activation must be auditable and idempotent.",
    "scope": {"summary": "Lawbook activation", "inScope": ["activation"], "outOfScope": ["UI"]},
    "targets": {
        "repo": {"owner": "adaefler-art", "repo": "codefactory-control"},
        "branch": "main",
        "components": ["lawbook", "api"],
    },
    "changes": {
        "files": [
            {"path": "src/lawbook/activate.py", "changeType": "modify", "rationale": "Record events"},
        ],
    },
    "acceptanceCriteria": ["Activation appends an event"],
    "tests": {"required": ["test_activate_records_event"]},
    "risks": {"items": [{"risk": "Pointer race", "impact": "low", "mitigation": "Single statement update"}]},
    "rollout": {"steps": ["Deploy", "Activate"], "rollbackPlan": "Re-activate previous version"},
    "evidence": [
        {"kind": "github_issue", "repo": {"owner": "adaefler-art", "repo": "codefactory-control"}, "number": 42},
        {
            "kind": "file_snippet",
            "repo": {"owner": "adaefler-art", "repo": "codefactory-control"},
            "branch": "main",
            "path": "src/lawbook/activate.py",
            "startLine": 1,
            "endLine": 20,
        },
    ],
    "constraints": {"lawbookVersion": "2025-12-30.1"},
    "metadata": {"createdAt": "2026-01-01T00:00:00Z", "createdBy": "intent", "tags": ["lawbook", "audit"]},
}

_WORK_PLAN: dict[str, Any] = {
    "goals": [
        {
            "id": "6f1c1a9e-3b8f-4f57-9d7c-2f9f5f0b1a01",
            "text": "Ship deterministic gates",
            "priority": "HIGH",
            "completed": False,
        },
        {
            "id": "6f1c1a9e-3b8f-4f57-9d7c-2f9f5f0b1a02",
            "text": "Document the lawbook",
            "priority": "LOW",
            "completed": True,
        },
    ],
    "context": "Tracks I811 for epic E81 in v0.8 on layer B.\nVerify with: `pytest -q`",
    "options": [
        {
            "id": "6f1c1a9e-3b8f-4f57-9d7c-2f9f5f0b1a03",
            "title": "Pure functions",
            "description": "Keep gates side-effect free",
            "pros": ["Testable"],
            "cons": [],
        },
    ],
    "todos": [
        {"id": "6f1c1a9e-3b8f-4f57-9d7c-2f9f5f0b1a04", "text": "Write tests", "completed": False},
        {"id": "6f1c1a9e-3b8f-4f57-9d7c-2f9f5f0b1a05", "text": "Add API", "completed": True},
    ],
    "notes": "Follows CID:I805. Keep reasons sorted.",
}


@pytest.fixture()
def fixed_now() -> datetime:
    """Return a pinned evaluation clock."""
    return datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture()
def lawbook_document() -> dict[str, Any]:
    """Return a fresh copy of a complete, valid lawbook in wire form."""
    return copy.deepcopy(_LAWBOOK)


@pytest.fixture()
def lawbook(lawbook_document: dict[str, Any]) -> LawbookV1:
    """Return the fixture lawbook parsed and normalized."""
    result = validate(SCHEMA_LAWBOOK, lawbook_document)
    assert result.success, result.errors
    return result.data


@pytest.fixture()
def issue_draft_document() -> dict[str, Any]:
    return copy.deepcopy(_ISSUE_DRAFT)


@pytest.fixture()
def change_request_document() -> dict[str, Any]:
    return copy.deepcopy(_CHANGE_REQUEST)


@pytest.fixture()
def work_plan_document() -> dict[str, Any]:
    return copy.deepcopy(_WORK_PLAN)


@pytest.fixture()
def make_version_row() -> Callable[..., LawbookVersion]:
    """Return a factory for LawbookVersion rows as a repository would return them."""

    def factory(lawbook: LawbookV1, version_id: uuid.UUID | None = None) -> LawbookVersion:
        return LawbookVersion(
            id=version_id or uuid.uuid4(),
            lawbook_id=lawbook.lawbook_id,
            lawbook_version=lawbook.lawbook_version,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
            created_by=lawbook.created_by,
            lawbook_json=lawbook.to_document(),
            lawbook_hash=compute_lawbook_hash(lawbook),
            schema_version="0.7.0",
        )

    return factory


@pytest.fixture()
def mock_lawbook_repo() -> AsyncMock:
    """Create a mock ILawbookRepository with no versions stored."""
    repo = AsyncMock()
    repo.get_version.return_value = None
    repo.get_version_by_hash.return_value = None
    repo.get_active_version.return_value = None
    repo.list_versions.return_value = []
    return repo


@pytest.fixture()
def mock_run_repo() -> AsyncMock:
    """Create a mock IRemediationRunRepository with no runs stored."""
    repo = AsyncMock()
    repo.get_by_run_key.return_value = None
    repo.count_planned_runs.return_value = 0
    repo.last_planned_run_at.return_value = None
    return repo
