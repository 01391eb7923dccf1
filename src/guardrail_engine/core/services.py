"""Core business logic services for the guardrail engine.

Three service classes:
- LawbookService: lawbook version lifecycle (create, list, get, activate) and
  resolution of the active snapshot
- GateService: gate evaluation and change request policy checks against the
  active snapshot
- RemediationService: idempotent planning and persistence of playbook runs

Services accept injected repositories through their constructors and contain
no framework code. Policy decisions are delegated to the pure gate and
planner functions; services only load the snapshot, persist and log.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pydantic

from guardrail_engine.api.schemas import (
    LawbookActivateResponse,
    LawbookVersionCreateResponse,
    LawbookVersionResponse,
    RemediationRunResponse,
)
from guardrail_engine.core.hashing import short_hash
from guardrail_engine.core.idempotency import build_idempotency_key
from guardrail_engine.core.interfaces import ILawbookRepository, IRemediationRunRepository
from guardrail_engine.core.models import (
    EVENT_VERSION_ACTIVATED,
    EVENT_VERSION_CREATED,
    LawbookVersion,
    RemediationRun,
)
from guardrail_engine.errors import NotFoundError, ValidationError
from guardrail_engine.gates.evaluator import gate
from guardrail_engine.gates.evidence import EvidenceRecord
from guardrail_engine.gates.params import DEFAULT_KEY_MAX_LENGTH
from guardrail_engine.gates.verdict import GateVerdict
from guardrail_engine.observability import get_logger
from guardrail_engine.playbooks.definitions import get_playbook
from guardrail_engine.playbooks.planner import plan_run
from guardrail_engine.schemas.change_request_policy import ChangeRequestReport, validate_change_request_policy
from guardrail_engine.schemas.lawbook import (
    DEFAULT_LAWBOOK_ID,
    LAWBOOK_SCHEMA_VERSION,
    LawbookV1,
    compute_lawbook_hash,
)
from guardrail_engine.schemas.registry import SCHEMA_LAWBOOK, validate

logger = get_logger(__name__)


@dataclass(frozen=True)
class LawbookSnapshot:
    """Immutable view of the active lawbook, consumed by the pure gates.

    Attributes:
        version_id: ID of the stored version.
        lawbook_hash: Full content hash of the version.
        lawbook: The parsed lawbook.
    """

    version_id: uuid.UUID
    lawbook_hash: str
    lawbook: LawbookV1

    @property
    def lawbook_version(self) -> str:
        return self.lawbook.lawbook_version

    def allowed_repo_pairs(self) -> list[tuple[str, str]]:
        return [(repo.owner, repo.repo) for repo in self.lawbook.github.allowed_repos]

    def allowed_branches(self) -> list[str]:
        """Union of the branch lists of every allowed repository that declares one."""
        branches: set[str] = set()
        for repo in self.lawbook.github.allowed_repos:
            branches.update(repo.branches or ())
        return sorted(branches)


def _version_to_response(version: LawbookVersion, prefix_length: int) -> LawbookVersionResponse:
    return LawbookVersionResponse(
        id=version.id,
        lawbook_id=version.lawbook_id,
        lawbook_version=version.lawbook_version,
        created_at=version.created_at,
        created_by=version.created_by,
        lawbook_hash=version.lawbook_hash,
        lawbook_hash_prefix=short_hash(version.lawbook_hash, prefix_length),
        schema_version=version.schema_version,
        lawbook=version.lawbook_json,
    )


def _run_to_response(run: RemediationRun, is_existing: bool) -> RemediationRunResponse:
    return RemediationRunResponse(
        id=run.id,
        run_key=run.run_key,
        incident_key=run.incident_key,
        playbook_id=run.playbook_id,
        playbook_version=run.playbook_version,
        status=run.status,
        skip_reason=run.skip_reason,
        lawbook_version=run.lawbook_version,
        inputs_hash=run.inputs_hash,
        plan=run.plan_json,
        created_at=run.created_at,
        is_existing=is_existing,
    )


class LawbookService:
    """Lawbook version lifecycle.

    Versions are immutable and identified by content hash. Creating a lawbook
    that is already stored returns the stored version. Activation only moves
    the active pointer.

    Args:
        lawbook_repo: Repository implementing ILawbookRepository.
        max_validation_errors: Cap on issues reported for a rejected lawbook.
        hash_prefix_length: Display length of hash prefixes.
    """

    def __init__(
        self,
        lawbook_repo: ILawbookRepository,
        max_validation_errors: int = 100,
        hash_prefix_length: int = 12,
    ) -> None:
        self._lawbook_repo = lawbook_repo
        self._max_validation_errors = max_validation_errors
        self._hash_prefix_length = hash_prefix_length

    async def create_version(self, raw: Any, created_by: str) -> LawbookVersionCreateResponse:
        """Validate, normalize and store a lawbook version.

        Args:
            raw: The submitted lawbook document.
            created_by: Subject creating the version, recorded on the event.

        Returns:
            The stored version and whether it already existed.

        Raises:
            ValidationError: If the document is not a valid lawbook.
        """
        result = validate(SCHEMA_LAWBOOK, raw, self._max_validation_errors)
        if not result.success or result.data is None:
            raise ValidationError(message="Lawbook validation failed", issues=list(result.errors))

        lawbook: LawbookV1 = result.data
        lawbook_hash = compute_lawbook_hash(lawbook)
        version, is_existing = await self._lawbook_repo.create_version(
            lawbook_id=lawbook.lawbook_id,
            lawbook_version=lawbook.lawbook_version,
            created_by=lawbook.created_by,
            lawbook_json=lawbook.to_document(),
            lawbook_hash=lawbook_hash,
            schema_version=LAWBOOK_SCHEMA_VERSION,
        )

        if not is_existing:
            await self._lawbook_repo.record_event(
                event_type=EVENT_VERSION_CREATED,
                lawbook_id=lawbook.lawbook_id,
                lawbook_version_id=version.id,
                event_json={"lawbookHash": lawbook_hash, "lawbookVersion": lawbook.lawbook_version},
                created_by=created_by,
            )

        logger.info(
            "Lawbook version created" if not is_existing else "Lawbook version already exists",
            version_id=str(version.id),
            lawbook_id=lawbook.lawbook_id,
            lawbook_hash=short_hash(lawbook_hash, self._hash_prefix_length),
            is_existing=is_existing,
        )
        return LawbookVersionCreateResponse(
            version=_version_to_response(version, self._hash_prefix_length),
            is_existing=is_existing,
        )

    async def get_version(self, version_id: uuid.UUID) -> LawbookVersionResponse:
        """Get a lawbook version by ID.

        Raises:
            NotFoundError: If the version does not exist.
        """
        version = await self._lawbook_repo.get_version(version_id)
        if version is None:
            raise NotFoundError(
                message=f"Lawbook version {version_id} not found",
                resource="lawbook_version",
                resource_id=str(version_id),
            )
        return _version_to_response(version, self._hash_prefix_length)

    async def list_versions(
        self,
        lawbook_id: str = DEFAULT_LAWBOOK_ID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LawbookVersionResponse]:
        """List versions of a lawbook, newest first.

        Args:
            lawbook_id: Lawbook identifier.
            limit: Page size, already bounded by the caller.
            offset: Rows to skip.

        Returns:
            The page of versions.
        """
        versions = await self._lawbook_repo.list_versions(lawbook_id, limit, offset)
        return [_version_to_response(version, self._hash_prefix_length) for version in versions]

    async def activate(self, version_id: uuid.UUID, activated_by: str) -> LawbookActivateResponse:
        """Make a stored version the active version of its lawbook.

        Args:
            version_id: Version to activate.
            activated_by: Subject performing the activation.

        Returns:
            The new pointer and the previously active version ID.

        Raises:
            NotFoundError: If the version does not exist.
        """
        version = await self._lawbook_repo.get_version(version_id)
        if version is None:
            raise NotFoundError(
                message=f"Lawbook version {version_id} not found",
                resource="lawbook_version",
                resource_id=str(version_id),
            )

        previous = await self._lawbook_repo.get_active_version(version.lawbook_id)
        pointer = await self._lawbook_repo.set_active(version.lawbook_id, version.id)
        await self._lawbook_repo.record_event(
            event_type=EVENT_VERSION_ACTIVATED,
            lawbook_id=version.lawbook_id,
            lawbook_version_id=version.id,
            event_json={
                "lawbookHash": version.lawbook_hash,
                "lawbookVersion": version.lawbook_version,
                "previousVersionId": str(previous.id) if previous is not None else None,
            },
            created_by=activated_by,
        )

        logger.info(
            "Lawbook version activated",
            lawbook_id=version.lawbook_id,
            version_id=str(version.id),
            previous_version_id=str(previous.id) if previous is not None else None,
        )
        return LawbookActivateResponse(
            lawbook_id=pointer.lawbook_id,
            active_lawbook_version_id=pointer.active_lawbook_version_id,
            previous_lawbook_version_id=previous.id if previous is not None else None,
            version=_version_to_response(version, self._hash_prefix_length),
        )

    async def get_active_version(self, lawbook_id: str = DEFAULT_LAWBOOK_ID) -> LawbookVersionResponse | None:
        version = await self._lawbook_repo.get_active_version(lawbook_id)
        return _version_to_response(version, self._hash_prefix_length) if version is not None else None

    async def get_active(self, lawbook_id: str = DEFAULT_LAWBOOK_ID) -> LawbookSnapshot | None:
        """Resolve the active lawbook into an immutable snapshot.

        A stored document that no longer parses is treated as absent, so the
        gates deny by default instead of evaluating a partial policy.

        Args:
            lawbook_id: Lawbook identifier.

        Returns:
            The snapshot, or None when no valid version is active.
        """
        version = await self._lawbook_repo.get_active_version(lawbook_id)
        if version is None:
            return None

        result = validate(SCHEMA_LAWBOOK, version.lawbook_json, self._max_validation_errors)
        if not result.success or result.data is None:
            logger.error(
                "Active lawbook version failed validation",
                lawbook_id=lawbook_id,
                version_id=str(version.id),
                issue_count=len(result.errors),
            )
            return None
        return LawbookSnapshot(version_id=version.id, lawbook_hash=version.lawbook_hash, lawbook=result.data)


class GateService:
    """Evaluates gates and change request policy against the active lawbook.

    Each call loads exactly one snapshot, so a concurrent activation can never
    mix two lawbook versions within one evaluation.

    Args:
        lawbook_service: Resolves the active snapshot.
        default_lawbook_id: Lawbook used when a request names none.
        key_max_length: Default ``maxLength`` for idempotency_key gates that do not set one.
    """

    def __init__(
        self,
        lawbook_service: LawbookService,
        default_lawbook_id: str = DEFAULT_LAWBOOK_ID,
        key_max_length: int = DEFAULT_KEY_MAX_LENGTH,
    ) -> None:
        self._lawbook_service = lawbook_service
        self._default_lawbook_id = default_lawbook_id
        self._key_max_length = key_max_length

    async def evaluate(self, kind: str, params: Any, lawbook_id: str | None = None) -> GateVerdict:
        """Evaluate a gate against the active lawbook.

        Args:
            kind: Gate kind.
            params: Gate parameters.
            lawbook_id: Lawbook to consult; the default lawbook when None.

        Returns:
            The verdict; DENY with LAWBOOK_MISSING when no lawbook is active.

        Raises:
            ValueError: If the gate kind is unknown.
        """
        if kind == "idempotency_key" and isinstance(params, dict) and not {"maxLength", "max_length"} & params.keys():
            params = {**params, "maxLength": self._key_max_length}
        snapshot = await self._lawbook_service.get_active(lawbook_id or self._default_lawbook_id)
        verdict = gate(kind, params, snapshot.lawbook if snapshot is not None else None)
        logger.info(
            "Gate evaluated",
            gate_kind=kind,
            verdict=verdict.verdict,
            reason_codes=[item.code for item in verdict.reasons],
            lawbook_version=verdict.lawbook_version,
        )
        return verdict

    async def check_change_request(self, raw: Any, lawbook_id: str | None = None) -> ChangeRequestReport:
        """Run the change request policy check with the active lawbook's allow-lists.

        Without an active lawbook the target allow-list checks are skipped; the
        structural and size checks still apply.
        """
        snapshot = await self._lawbook_service.get_active(lawbook_id or self._default_lawbook_id)
        report = validate_change_request_policy(
            raw,
            allowed_repos=snapshot.allowed_repo_pairs() if snapshot is not None else None,
            allowed_branches=snapshot.allowed_branches() if snapshot is not None else None,
        )
        logger.info(
            "Change request checked",
            ok=report.ok,
            error_count=len(report.errors),
            warning_count=len(report.warnings),
        )
        return report


class RemediationService:
    """Plans and records remediation runs.

    Args:
        run_repo: Repository implementing IRemediationRunRepository.
        lawbook_service: Resolves the active snapshot.
        default_lawbook_id: Lawbook used when a request names none.
    """

    def __init__(
        self,
        run_repo: IRemediationRunRepository,
        lawbook_service: LawbookService,
        default_lawbook_id: str = DEFAULT_LAWBOOK_ID,
    ) -> None:
        self._run_repo = run_repo
        self._lawbook_service = lawbook_service
        self._default_lawbook_id = default_lawbook_id

    async def execute_playbook(
        self,
        incident_key: str,
        playbook_id: str,
        inputs: dict[str, Any] | None = None,
        evidence: Iterable[dict[str, Any] | EvidenceRecord] = (),
        incident_category: str | None = None,
        lawbook_id: str | None = None,
        now: datetime | None = None,
    ) -> RemediationRunResponse:
        """Plan a playbook run and persist it idempotently.

        A run with the same run key (incident, playbook and inputs hash) is
        returned unchanged with ``is_existing`` set. Otherwise the run is
        planned against the active lawbook and stored as PLANNED or SKIPPED.

        Args:
            incident_key: Stable incident key.
            playbook_id: Built-in playbook ID.
            inputs: Run inputs.
            evidence: Evidence records attached to the incident.
            incident_category: Incident category.
            lawbook_id: Lawbook to consult; the default lawbook when None.
            now: Pinned evaluation clock.

        Returns:
            The stored run.

        Raises:
            NotFoundError: If the playbook is unknown.
            ValidationError: If an evidence record is malformed.
        """
        playbook = get_playbook(playbook_id)
        if playbook is None:
            raise NotFoundError(
                message=f"Playbook '{playbook_id}' not found",
                resource="playbook",
                resource_id=playbook_id,
            )

        run_inputs = dict(inputs or {})
        run_key = build_idempotency_key(incident_key, playbook.id, run_inputs)
        existing = await self._run_repo.get_by_run_key(run_key)
        if existing is not None:
            logger.info("Existing remediation run returned", run_id=str(existing.id), playbook_id=playbook.id)
            return _run_to_response(existing, is_existing=True)

        records = _parse_evidence(evidence)
        snapshot = await self._lawbook_service.get_active(lawbook_id or self._default_lawbook_id)
        plan = plan_run(
            playbook,
            incident_key,
            run_inputs,
            snapshot.lawbook if snapshot is not None else None,
            evidence=records,
            incident_category=incident_category,
            current_run_count=await self._run_repo.count_planned_runs(incident_key),
            last_run_at=await self._run_repo.last_planned_run_at(incident_key),
            now=now,
        )
        run, is_existing = await self._run_repo.create_run(plan)

        logger.info(
            "Remediation run planned" if plan.planned else "Remediation run skipped",
            run_id=str(run.id),
            playbook_id=playbook.id,
            status=plan.status,
            skip_reason=plan.skip_reason,
            lawbook_version=plan.lawbook_version,
        )
        return _run_to_response(run, is_existing=is_existing)


def _parse_evidence(evidence: Iterable[dict[str, Any] | EvidenceRecord]) -> list[EvidenceRecord]:
    records = []
    for index, item in enumerate(evidence):
        if isinstance(item, EvidenceRecord):
            records.append(item)
            continue
        try:
            records.append(EvidenceRecord.model_validate(item))
        except pydantic.ValidationError as exc:
            raise ValidationError(
                message=f"Invalid evidence record at index {index}",
                field=f"evidence.{index}",
            ) from exc
    return records
