"""Abstract interfaces (Protocol classes) for the guardrail engine.

Services depend on these protocols, never on the SQLAlchemy adapters, so
service tests run against AsyncMock repositories.

Protocols defined:
- ILawbookRepository
- IRemediationRunRepository
"""

import uuid
from datetime import datetime
from typing import Any, Protocol

from guardrail_engine.core.models import LawbookActive, LawbookEvent, LawbookVersion, RemediationRun
from guardrail_engine.playbooks.planner import RunPlan


class ILawbookRepository(Protocol):
    """Repository contract for lawbook versions, the active pointer and lifecycle events."""

    async def create_version(
        self,
        lawbook_id: str,
        lawbook_version: str,
        created_by: str,
        lawbook_json: dict[str, Any],
        lawbook_hash: str,
        schema_version: str,
    ) -> tuple[LawbookVersion, bool]:
        """Create a lawbook version, or return the existing one with the same hash.

        Args:
            lawbook_id: Lawbook identifier.
            lawbook_version: Author-assigned version label.
            created_by: ``admin`` or ``system``.
            lawbook_json: Normalized lawbook document.
            lawbook_hash: Full content hash of the document.
            schema_version: Lawbook schema version.

        Returns:
            The version row and True when it already existed.
        """
        ...

    async def get_version(self, version_id: uuid.UUID) -> LawbookVersion | None:
        """Retrieve a version by ID, or None."""
        ...

    async def get_version_by_hash(self, lawbook_hash: str) -> LawbookVersion | None:
        """Retrieve a version by its full content hash, or None."""
        ...

    async def list_versions(self, lawbook_id: str, limit: int, offset: int) -> list[LawbookVersion]:
        """List versions of a lawbook, newest first (created_at DESC, id DESC).

        Args:
            lawbook_id: Lawbook identifier.
            limit: Page size.
            offset: Number of rows to skip.

        Returns:
            The page of versions.
        """
        ...

    async def get_active_version(self, lawbook_id: str) -> LawbookVersion | None:
        """Return the active version of a lawbook, or None when none is active."""
        ...

    async def set_active(self, lawbook_id: str, version_id: uuid.UUID) -> LawbookActive:
        """Point a lawbook at a version, creating the pointer row if needed."""
        ...

    async def record_event(
        self,
        event_type: str,
        lawbook_id: str,
        lawbook_version_id: uuid.UUID | None,
        event_json: dict[str, Any],
        created_by: str | None,
    ) -> LawbookEvent:
        """Append a lifecycle event."""
        ...


class IRemediationRunRepository(Protocol):
    """Repository contract for remediation runs."""

    async def get_by_run_key(self, run_key: str) -> RemediationRun | None:
        """Retrieve a run by its run key, or None."""
        ...

    async def create_run(self, plan: RunPlan) -> tuple[RemediationRun, bool]:
        """Persist a run plan, or return the existing run with the same run key.

        Args:
            plan: The planned or skipped run.

        Returns:
            The run row and True when a run with the key already existed.
        """
        ...

    async def count_planned_runs(self, incident_key: str) -> int:
        """Count PLANNED runs recorded for an incident."""
        ...

    async def last_planned_run_at(self, incident_key: str) -> datetime | None:
        """Return the creation time of the incident's most recent PLANNED run."""
        ...
