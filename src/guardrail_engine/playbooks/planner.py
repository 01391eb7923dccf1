"""Deterministic remediation run planning.

``plan_run`` is a pure function: the same playbook, incident, inputs, evidence
and lawbook snapshot always produce the same plan (apart from the verdicts'
``generatedAt``). Gates are consulted in a fixed order and the first denial
skips the run:

1. ``playbook`` gate (allow-list, category evidence kinds, run count, cooldown)
2. ``action`` gate for every distinct step action type
3. ``evidence`` gate for the playbook's evidence predicates
4. ``idempotency_key`` gate for the run key

A skipped plan still carries its run key so that persisting it under the key
is idempotent as well.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from guardrail_engine.core.idempotency import build_idempotency_key, compute_inputs_hash
from guardrail_engine.gates.evaluator import (
    gate_action_allowed,
    gate_evidence,
    gate_idempotency_key_format,
    gate_playbook_allowed,
)
from guardrail_engine.gates.evidence import EvidenceRecord, unsatisfied_predicates
from guardrail_engine.gates.verdict import GateVerdict
from guardrail_engine.playbooks.definitions import PlaybookDefinition
from guardrail_engine.schemas.lawbook import LawbookV1

RUN_PLANNED = "PLANNED"
RUN_SKIPPED = "SKIPPED"

SKIP_LAWBOOK_DENIED = "LAWBOOK_DENIED"
SKIP_EVIDENCE_MISSING = "EVIDENCE_MISSING"
SKIP_INVALID_RUN_KEY = "INVALID_RUN_KEY"

RunStatus = Literal["PLANNED", "SKIPPED"]
SkipReason = Literal["LAWBOOK_DENIED", "EVIDENCE_MISSING", "INVALID_RUN_KEY"]


class PlannedStep(BaseModel):
    """A step with its resolved inputs and idempotency key."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    step_id: str
    action_type: str
    title: str
    resolved_inputs: dict[str, Any]
    idempotency_key: str


class RunPlan(BaseModel):
    """Outcome of planning one playbook run for one incident.

    Attributes:
        playbook_id: Planned playbook.
        playbook_version: Version of the playbook definition.
        incident_key: Stable incident key the run belongs to.
        status: PLANNED, or SKIPPED when a gate denied.
        skip_reason: LAWBOOK_DENIED, EVIDENCE_MISSING or INVALID_RUN_KEY.
        message: Reason of the first non-ALLOW verdict, or a planned summary.
        run_key: ``incident_key:playbook_id:inputs_hash``.
        inputs_hash: SHA-256 of the canonical run inputs.
        lawbook_version: Version of the lawbook consulted, None when none was active.
        verdicts: Every gate verdict evaluated, in evaluation order.
        missing_evidence: Unsatisfied evidence predicates, described.
        steps: Planned steps; empty for a skipped run.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    playbook_id: str
    playbook_version: str
    incident_key: str
    status: RunStatus
    skip_reason: SkipReason | None = None
    message: str
    run_key: str
    inputs_hash: str
    lawbook_version: str | None
    verdicts: tuple[GateVerdict, ...]
    missing_evidence: tuple[str, ...] = Field(default=())
    steps: tuple[PlannedStep, ...] = Field(default=())

    @property
    def planned(self) -> bool:
        return self.status == RUN_PLANNED

    def to_wire(self) -> dict[str, Any]:
        document = self.model_dump(mode="json", by_alias=True)
        document["verdicts"] = [verdict.to_wire() for verdict in self.verdicts]
        return document


def _first_reason(verdict: GateVerdict) -> str:
    for item in verdict.reasons:
        if item.severity == "ERROR":
            return item.message
    return verdict.reasons[0].message if verdict.reasons else verdict.verdict


def _resolve_step_inputs(inputs: Mapping[str, Any], incident_key: str) -> dict[str, Any]:
    return {**inputs, "incidentKey": incident_key}


def plan_run(
    playbook: PlaybookDefinition,
    incident_key: str,
    inputs: Mapping[str, Any] | None,
    lawbook: LawbookV1 | None,
    evidence: Iterable[EvidenceRecord] = (),
    incident_category: str | None = None,
    current_run_count: int | None = None,
    last_run_at: datetime | None = None,
    now: datetime | None = None,
) -> RunPlan:
    """Plan a playbook run against a lawbook snapshot.

    Args:
        playbook: Playbook to plan.
        incident_key: Stable key of the incident being remediated.
        inputs: Run inputs; key order is irrelevant.
        lawbook: Active lawbook snapshot, or None (every run is then skipped).
        evidence: Evidence attached to the incident.
        incident_category: Incident category, used for category evidence requirements.
        current_run_count: Runs already recorded for the incident.
        last_run_at: Time of the incident's most recent run.
        now: Pinned evaluation clock.

    Returns:
        The run plan.

    Raises:
        ValueError: If the incident key is empty.
        CanonicalizationError: If the inputs cannot be canonically encoded.
    """
    run_inputs = dict(inputs or {})
    records = list(evidence)
    inputs_hash = compute_inputs_hash(run_inputs)
    run_key = build_idempotency_key(incident_key, playbook.id, run_inputs)
    lawbook_version = lawbook.lawbook_version if lawbook is not None else None
    verdicts: list[GateVerdict] = []

    def skipped(skip_reason: SkipReason, verdict: GateVerdict, missing: Iterable[str] = ()) -> RunPlan:
        return RunPlan(
            playbook_id=playbook.id,
            playbook_version=playbook.version,
            incident_key=incident_key,
            status=RUN_SKIPPED,
            skip_reason=skip_reason,
            message=_first_reason(verdict),
            run_key=run_key,
            inputs_hash=inputs_hash,
            lawbook_version=lawbook_version,
            verdicts=tuple(verdicts),
            missing_evidence=tuple(missing),
        )

    playbook_verdict = gate_playbook_allowed(
        {
            "playbook_id": playbook.id,
            "incident_category": incident_category,
            "evidence_kinds": sorted({record.kind for record in records}),
            "current_run_count": current_run_count,
            "last_run_timestamp": last_run_at,
            "now": now,
        },
        lawbook,
    )
    verdicts.append(playbook_verdict)
    if not playbook_verdict.allowed:
        return skipped(SKIP_LAWBOOK_DENIED, playbook_verdict)

    for action_type in playbook.action_types:
        action_verdict = gate_action_allowed({"action_type": action_type, "now": now}, lawbook)
        verdicts.append(action_verdict)
        if not action_verdict.allowed:
            return skipped(SKIP_LAWBOOK_DENIED, action_verdict)

    evidence_verdict = gate_evidence(
        {
            "required_kinds": [],
            "predicates": list(playbook.required_evidence),
            "evidence": records,
            "now": now,
        },
        lawbook,
    )
    verdicts.append(evidence_verdict)
    if not evidence_verdict.allowed:
        missing = [predicate.describe() for predicate in unsatisfied_predicates(playbook.required_evidence, records)]
        return skipped(SKIP_EVIDENCE_MISSING, evidence_verdict, missing)

    key_verdict = gate_idempotency_key_format({"key": run_key, "now": now}, lawbook)
    verdicts.append(key_verdict)
    if not key_verdict.allowed:
        return skipped(SKIP_INVALID_RUN_KEY, key_verdict)

    step_inputs = _resolve_step_inputs(run_inputs, incident_key)
    steps = tuple(
        PlannedStep(
            step_id=step.step_id,
            action_type=step.action_type,
            title=step.title,
            resolved_inputs=step_inputs,
            idempotency_key=build_idempotency_key(step.action_type, f"{incident_key}:{step.step_id}", step_inputs),
        )
        for step in playbook.steps
    )
    return RunPlan(
        playbook_id=playbook.id,
        playbook_version=playbook.version,
        incident_key=incident_key,
        status=RUN_PLANNED,
        message=f"Planned {len(steps)} step(s) for playbook '{playbook.id}'",
        run_key=run_key,
        inputs_hash=inputs_hash,
        lawbook_version=lawbook_version,
        verdicts=tuple(verdicts),
        steps=steps,
    )
