"""Work plan to issue draft compiler.

Compilation is deterministic: the same work plan always yields the same draft
and the same body hash. Nothing time-dependent or random enters the draft.
Lists taken from the plan are re-sorted by text so reordering goals or todos
in the editor does not change the body.
"""

import re
from dataclasses import dataclass

from guardrail_engine.core.hashing import hash_text, short_hash
from guardrail_engine.errors import ValidationError
from guardrail_engine.schemas.common import parse_document
from guardrail_engine.schemas.issue_draft import (
    EMPTY_ARRAY_MESSAGES,
    ISSUE_DRAFT_VERSION,
    IssueDraft,
    normalize_issue_draft,
)
from guardrail_engine.schemas.work_plan import WorkPlanContent, WorkPlanGoal

PLACEHOLDER_TITLE = "Work Plan: [Untitled]"
PLACEHOLDER_CANONICAL_ID = "CID:TBD"
PLACEHOLDER_BODY = "Canonical-ID: CID:TBD\n\n## Work Plan\n\nNo content available."
FALLBACK_CRITERION = "Complete all tasks from work plan"
ORIGIN_LABEL = "from-work-plan"

DEFAULT_VERIFY_COMMANDS = ("npm run repo:verify",)
DEFAULT_VERIFY_EXPECTED = ("All checks pass",)
EXTRACTED_VERIFY_EXPECTED = ("Tests pass", "No errors")

MAX_TITLE_LENGTH = 200
MAX_CRITERION_LENGTH = 1000
MAX_COMMAND_LENGTH = 500
MAX_LABELS = 50
MAX_DEPENDENCIES = 20
MAX_CRITERIA = 20
MAX_COMMANDS = 10

_PRIORITY_ORDER = {"HIGH": 0, "MEDIUM": 1, "LOW": 2}

_CANONICAL_ID = re.compile(r"\b(I8\d{2}|E81\.\d+)\b")
_CID_REFERENCE = re.compile(r"\bCID:(I8\d{2}|E81\.\d+)\b")
_EPIC = re.compile(r"epic[:\s]+(E\d+)", re.IGNORECASE)
_VERSION = re.compile(r"v\d+(?:\.\d+)?", re.IGNORECASE)
_LAYER = re.compile(r"layer[:\s]+([A-D])", re.IGNORECASE)
_COMMAND = re.compile(r"(?:run|execute|verify with):\s*`([^`]+)`", re.IGNORECASE)


@dataclass(frozen=True)
class CompiledIssueDraft:
    """Compiler output.

    Attributes:
        draft: The normalized, validated issue draft.
        body_hash: Display prefix of the SHA-256 of the body text.
    """

    draft: IssueDraft
    body_hash: str


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _derive_title(plan: WorkPlanContent) -> str:
    if plan.goals and plan.goals[0].text.strip():
        return _truncate(plan.goals[0].text.strip(), MAX_TITLE_LENGTH)
    if plan.context and plan.context.strip():
        return _truncate(plan.context.strip().split("\n")[0].strip(), MAX_TITLE_LENGTH)
    return PLACEHOLDER_TITLE


def _goal_order(goal: WorkPlanGoal) -> tuple[int, str]:
    return _PRIORITY_ORDER[goal.priority or "MEDIUM"], goal.text


def _build_body(plan: WorkPlanContent, canonical_id: str) -> str:
    lines = [f"Canonical-ID: {canonical_id}", ""]

    if plan.context and plan.context.strip():
        lines += ["## Context", "", plan.context.strip(), ""]

    if plan.goals:
        lines += ["## Goals", ""]
        for index, goal in enumerate(sorted(plan.goals, key=_goal_order), start=1):
            checkbox = "[x]" if goal.completed else "[ ]"
            tag = f" ({goal.priority})" if goal.priority else ""
            lines.append(f"{index}. {checkbox} {goal.text}{tag}")
        lines.append("")

    if plan.options:
        lines += ["## Options Considered", ""]
        for index, option in enumerate(sorted(plan.options, key=lambda o: o.title), start=1):
            lines += [f"### Option {index}: {option.title}", "", option.description, ""]
            if option.pros:
                lines += ["**Pros:**", *(f"- {pro}" for pro in option.pros), ""]
            if option.cons:
                lines += ["**Cons:**", *(f"- {con}" for con in option.cons), ""]

    if plan.todos:
        lines += ["## Tasks", ""]
        for todo in sorted(plan.todos, key=lambda t: t.text):
            lines.append(f"- {'[x]' if todo.completed else '[ ]'} {todo.text}")
        lines.append("")

    if plan.notes and plan.notes.strip():
        lines += ["## Additional Notes", "", plan.notes.strip(), ""]

    body = "\n".join(lines).strip()
    # Canonical-ID header only.
    if len(lines) <= 2:
        return PLACEHOLDER_BODY
    return body


def _first_reference(text: str | None) -> str | None:
    if not text:
        return None
    for pattern in (_CID_REFERENCE, _CANONICAL_ID):
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _derive_canonical_id(plan: WorkPlanContent) -> str:
    for text in (plan.context, *(goal.text for goal in plan.goals), plan.notes):
        found = _first_reference(text)
        if found is not None:
            return found
    return PLACEHOLDER_CANONICAL_ID


def _derive_labels(plan: WorkPlanContent) -> list[str]:
    context = plan.context or ""
    labels = {ORIGIN_LABEL}
    labels.update(f"epic:{match.group(1).upper()}" for match in _EPIC.finditer(context))
    labels.update(match.group(0).lower() for match in _VERSION.finditer(context))
    labels.update(f"layer:{match.group(1).upper()}" for match in _LAYER.finditer(context))
    return sorted(labels)[:MAX_LABELS]


def _derive_acceptance_criteria(plan: WorkPlanContent) -> list[str]:
    high = sorted(goal.text.strip() for goal in plan.goals if goal.priority == "HIGH")
    criteria = high or sorted(goal.text.strip() for goal in plan.goals)
    criteria = [_truncate(text, MAX_CRITERION_LENGTH) for text in criteria if text]
    return criteria[:MAX_CRITERIA] or [FALLBACK_CRITERION]


def _derive_verify(plan: WorkPlanContent) -> dict[str, list[str]]:
    text = f"{plan.context or ''}\n{plan.notes or ''}"
    commands = [
        command
        for command in (match.group(1).strip() for match in _COMMAND.finditer(text))
        if command and len(command) <= MAX_COMMAND_LENGTH
    ]
    if commands:
        return {"commands": commands[:MAX_COMMANDS], "expected": list(EXTRACTED_VERIFY_EXPECTED)}
    return {"commands": list(DEFAULT_VERIFY_COMMANDS), "expected": list(DEFAULT_VERIFY_EXPECTED)}


def _derive_priority(plan: WorkPlanContent) -> str:
    if any(goal.priority in ("HIGH", "MEDIUM") for goal in plan.goals):
        return "P1"
    return "P2"


def _derive_dependencies(plan: WorkPlanContent, own_id: str) -> list[str]:
    found: set[str] = set()
    for text in (plan.context, plan.notes):
        if not text:
            continue
        found.update(match.group(1) for match in _CID_REFERENCE.finditer(text))
        found.update(match.group(1) for match in _CANONICAL_ID.finditer(text))
    found.discard(own_id)
    return sorted(found)[:MAX_DEPENDENCIES]


def compile_work_plan_to_issue_draft(plan: WorkPlanContent) -> CompiledIssueDraft:
    """Compile a validated work plan into an issue draft.

    Args:
        plan: Validated work plan content.

    Returns:
        The normalized draft and the display prefix of its body hash.

    Raises:
        ValidationError: If the compiled draft does not satisfy the issue draft
            schema, e.g. a body longer than 10000 characters.
    """
    canonical_id = _derive_canonical_id(plan)
    body = _build_body(plan, canonical_id)
    candidate = {
        "issueDraftVersion": ISSUE_DRAFT_VERSION,
        "title": _derive_title(plan),
        "body": body,
        "type": "issue",
        "canonicalId": canonical_id,
        "labels": _derive_labels(plan),
        "dependsOn": _derive_dependencies(plan, canonical_id),
        "priority": _derive_priority(plan),
        "acceptanceCriteria": _derive_acceptance_criteria(plan),
        "verify": _derive_verify(plan),
        "guards": {"env": "development", "prodBlocked": True},
    }
    parsed = parse_document(IssueDraft, candidate, EMPTY_ARRAY_MESSAGES)
    if not parsed.success or parsed.data is None:
        raise ValidationError(message="Compiled issue draft is invalid", issues=list(parsed.errors))
    draft = normalize_issue_draft(parsed.data)
    return CompiledIssueDraft(draft=draft, body_hash=short_hash(hash_text(draft.body)))
