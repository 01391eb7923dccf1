"""Evidence records and predicates used by evidence gating.

An evidence record is a typed reference attached to an incident or a run
(``kind`` plus a ``ref`` object). A predicate requires that at least one record
of its kind exists with every listed dotted field present and non-null, e.g.
``ref.env`` on a ``deploy_status`` record. Records are only read here.
"""

from collections.abc import Iterable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EvidenceKind = Literal[
    "runner",
    "ecs",
    "alb",
    "http",
    "verification",
    "deploy_status",
    "log_pointer",
    "github_run",
]


class EvidenceRecord(BaseModel):
    """A piece of evidence presented to a gate."""

    model_config = ConfigDict(extra="forbid", frozen=True, alias_generator=to_camel, populate_by_name=True)

    kind: str = Field(..., min_length=1, max_length=100)
    ref: dict[str, Any] = Field(default_factory=dict)
    sha256: str | None = Field(default=None, max_length=64)


class EvidencePredicate(BaseModel):
    """Requirement for one kind of evidence and, optionally, fields on it."""

    model_config = ConfigDict(extra="forbid", frozen=True, alias_generator=to_camel, populate_by_name=True)

    kind: str = Field(..., min_length=1, max_length=100)
    required_fields: tuple[str, ...] = Field(default=(), max_length=20)

    def describe(self) -> str:
        """Render the predicate for messages, e.g. ``ecs(ref.cluster, ref.service)``."""
        if not self.required_fields:
            return self.kind
        return f"{self.kind}({', '.join(sorted(self.required_fields))})"


def resolve_field(record: EvidenceRecord, dotted: str) -> Any:
    """Resolve a dotted path (``ref.env``) against a record; None when any segment is absent."""
    value: Any = record.model_dump()
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def is_predicate_satisfied(predicate: EvidencePredicate, evidence: Iterable[EvidenceRecord]) -> bool:
    """Return True if some record of the predicate's kind has all required fields."""
    matching = [record for record in evidence if record.kind == predicate.kind]
    if not matching:
        return False
    return any(
        all(resolve_field(record, field) is not None for field in predicate.required_fields) for record in matching
    )


def unsatisfied_predicates(
    predicates: Iterable[EvidencePredicate],
    evidence: Iterable[EvidenceRecord],
) -> list[EvidencePredicate]:
    """Return the predicates not satisfied by the evidence, in input order."""
    records = list(evidence)
    return [predicate for predicate in predicates if not is_predicate_satisfied(predicate, records)]
