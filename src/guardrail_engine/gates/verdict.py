"""Guardrail verdict value types.

A verdict is an immutable observation: it is recomputed from the current
policy snapshot and inputs on every call and is never the source of truth.
``generated_at`` is an observation timestamp and takes no part in identity.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from guardrail_engine.core.hashing import content_hash

VERDICT_ALLOW = "ALLOW"
VERDICT_DENY = "DENY"
VERDICT_HOLD = "HOLD"

SEVERITY_ERROR = "ERROR"
SEVERITY_WARNING = "WARNING"
SEVERITY_INFO = "INFO"

Verdict = Literal["ALLOW", "DENY", "HOLD"]
Severity = Literal["ERROR", "WARNING", "INFO"]


class GateReason(BaseModel):
    """A coded reason contributing to a verdict.

    Attributes:
        code: Stable machine code, e.g. ``COOLDOWN_ACTIVE``.
        message: Human-readable explanation.
        rule_id: Dotted lawbook path of the rule that produced the reason.
        severity: ERROR, WARNING or INFO.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    code: str = Field(..., description="Stable machine-readable reason code")
    message: str = Field(..., description="Human-readable explanation")
    rule_id: str | None = Field(default=None, description="Lawbook rule path that produced the reason")
    severity: Severity = Field(default=SEVERITY_ERROR, description="ERROR, WARNING or INFO")


class GateVerdict(BaseModel):
    """Result of one gate evaluation.

    Attributes:
        verdict: ALLOW, DENY or HOLD.
        reasons: Reasons sorted by code.
        lawbook_version: Version of the lawbook consulted, None when none was supplied.
        inputs_hash: SHA-256 of the canonical gate parameters.
        generated_at: ISO-8601 observation time.
        approval_required: Set by gates that evaluate approval policy.
        approval_met: Set by gates that evaluate approval policy.
        next_allowed_at: Earliest retry time when a cooldown or rate limit denied.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    verdict: Verdict
    reasons: tuple[GateReason, ...]
    lawbook_version: str | None
    inputs_hash: str
    generated_at: str
    approval_required: bool | None = None
    approval_met: bool | None = None
    next_allowed_at: str | None = None

    @property
    def allowed(self) -> bool:
        return self.verdict == VERDICT_ALLOW

    def to_wire(self) -> dict[str, Any]:
        """Dump to the camelCase wire form, omitting unset approval and retry fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True) | {
            "lawbookVersion": self.lawbook_version
        }


def reason(code: str, message: str, rule_id: str | None = None, severity: Severity = SEVERITY_ERROR) -> GateReason:
    """Shorthand constructor used by the gate functions."""
    return GateReason(code=code, message=message, rule_id=rule_id, severity=severity)


def build_verdict(
    verdict: Verdict,
    reasons: list[GateReason],
    lawbook_version: str | None,
    inputs: Any,
    generated_at: str,
    **extra: Any,
) -> GateVerdict:
    """Assemble a verdict with reasons sorted by code and the inputs hashed.

    Args:
        verdict: ALLOW, DENY or HOLD.
        reasons: Unsorted reasons.
        lawbook_version: Version of the consulted lawbook, or None.
        inputs: Canonicalizable gate inputs.
        generated_at: ISO-8601 observation time.
        **extra: Optional approval and retry fields.

    Returns:
        The immutable verdict.
    """
    ordered = sorted(reasons, key=lambda r: (r.code, r.rule_id or "", r.message))
    return GateVerdict(
        verdict=verdict,
        reasons=tuple(ordered),
        lawbook_version=lawbook_version,
        inputs_hash=content_hash(inputs),
        generated_at=generated_at,
        **extra,
    )
