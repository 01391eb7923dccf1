"""SQLAlchemy repositories for the guardrail engine.

Each repository implements the corresponding interface from core/interfaces.py
on top of an AsyncSession owned by the caller. Repositories flush but never
commit; the request-scoped session commits once the route returns.

Repositories:
- LawbookRepository         : lawbook versions, active pointer, events
- RemediationRunRepository  : remediation runs by run key

Idempotent creates look the record up by its unique key first. A concurrent
insert of the same key surfaces as IntegrityError inside a savepoint; the
savepoint is rolled back and the row that won the race is returned.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from guardrail_engine.core.models import LawbookActive, LawbookEvent, LawbookVersion, RemediationRun
from guardrail_engine.observability import get_logger
from guardrail_engine.playbooks.planner import RUN_PLANNED, RunPlan

logger = get_logger(__name__)


class LawbookRepository:
    """Repository for lawbook persistence.

    Args:
        session: The SQLAlchemy async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_version(
        self,
        lawbook_id: str,
        lawbook_version: str,
        created_by: str,
        lawbook_json: dict[str, Any],
        lawbook_hash: str,
        schema_version: str,
    ) -> tuple[LawbookVersion, bool]:
        """Create a lawbook version unless one with the same hash exists.

        Args:
            lawbook_id: Lawbook identifier.
            lawbook_version: Author-assigned version label.
            created_by: ``admin`` or ``system``.
            lawbook_json: Normalized lawbook document.
            lawbook_hash: Full content hash.
            schema_version: Lawbook schema version.

        Returns:
            The version and True when it already existed.
        """
        existing = await self.get_version_by_hash(lawbook_hash)
        if existing is not None:
            return existing, True

        version = LawbookVersion(
            lawbook_id=lawbook_id,
            lawbook_version=lawbook_version,
            created_by=created_by,
            lawbook_json=lawbook_json,
            lawbook_hash=lawbook_hash,
            schema_version=schema_version,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(version)
                await self._session.flush()
        except IntegrityError:
            winner = await self.get_version_by_hash(lawbook_hash)
            if winner is None:
                raise
            logger.info("Concurrent lawbook version insert resolved", lawbook_hash=lawbook_hash)
            return winner, True

        logger.info(
            "Lawbook version stored",
            version_id=str(version.id),
            lawbook_id=lawbook_id,
            lawbook_version=lawbook_version,
        )
        return version, False

    async def get_version(self, version_id: uuid.UUID) -> LawbookVersion | None:
        return await self._session.get(LawbookVersion, version_id)

    async def get_version_by_hash(self, lawbook_hash: str) -> LawbookVersion | None:
        stmt = select(LawbookVersion).where(LawbookVersion.lawbook_hash == lawbook_hash)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_versions(self, lawbook_id: str, limit: int, offset: int) -> list[LawbookVersion]:
        """List versions newest first.

        Args:
            lawbook_id: Lawbook identifier.
            limit: Page size.
            offset: Rows to skip.

        Returns:
            Versions ordered by created_at DESC, id DESC.
        """
        stmt = (
            select(LawbookVersion)
            .where(LawbookVersion.lawbook_id == lawbook_id)
            .order_by(LawbookVersion.created_at.desc(), LawbookVersion.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_active_version(self, lawbook_id: str) -> LawbookVersion | None:
        stmt = (
            select(LawbookVersion)
            .join(LawbookActive, LawbookActive.active_lawbook_version_id == LawbookVersion.id)
            .where(LawbookActive.lawbook_id == lawbook_id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_active(self, lawbook_id: str, version_id: uuid.UUID) -> LawbookActive:
        """Point a lawbook at a version.

        Args:
            lawbook_id: Lawbook identifier.
            version_id: Version to activate.

        Returns:
            The updated or newly created pointer row.
        """
        pointer = await self._session.get(LawbookActive, lawbook_id)
        if pointer is None:
            pointer = LawbookActive(lawbook_id=lawbook_id, active_lawbook_version_id=version_id)
            self._session.add(pointer)
        else:
            pointer.active_lawbook_version_id = version_id
        await self._session.flush()
        return pointer

    async def record_event(
        self,
        event_type: str,
        lawbook_id: str,
        lawbook_version_id: uuid.UUID | None,
        event_json: dict[str, Any],
        created_by: str | None,
    ) -> LawbookEvent:
        event = LawbookEvent(
            event_type=event_type,
            lawbook_id=lawbook_id,
            lawbook_version_id=lawbook_version_id,
            event_json=event_json,
            created_by=created_by,
        )
        self._session.add(event)
        await self._session.flush()
        return event


class RemediationRunRepository:
    """Repository for remediation runs.

    Args:
        session: The SQLAlchemy async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_run_key(self, run_key: str) -> RemediationRun | None:
        stmt = select(RemediationRun).where(RemediationRun.run_key == run_key)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_run(self, plan: RunPlan) -> tuple[RemediationRun, bool]:
        """Persist a run plan unless a run with the same key exists.

        Args:
            plan: Planned or skipped run.

        Returns:
            The run and True when it already existed.
        """
        existing = await self.get_by_run_key(plan.run_key)
        if existing is not None:
            return existing, True

        run = RemediationRun(
            run_key=plan.run_key,
            incident_key=plan.incident_key,
            playbook_id=plan.playbook_id,
            playbook_version=plan.playbook_version,
            status=plan.status,
            skip_reason=plan.skip_reason,
            lawbook_version=plan.lawbook_version,
            inputs_hash=plan.inputs_hash,
            plan_json=plan.to_wire(),
        )
        try:
            async with self._session.begin_nested():
                self._session.add(run)
                await self._session.flush()
        except IntegrityError:
            winner = await self.get_by_run_key(plan.run_key)
            if winner is None:
                raise
            logger.info("Concurrent remediation run insert resolved", run_key=plan.run_key)
            return winner, True

        logger.info(
            "Remediation run stored",
            run_id=str(run.id),
            playbook_id=plan.playbook_id,
            status=plan.status,
        )
        return run, False

    async def count_planned_runs(self, incident_key: str) -> int:
        stmt = select(func.count(RemediationRun.id)).where(
            RemediationRun.incident_key == incident_key,
            RemediationRun.status == RUN_PLANNED,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar() or 0)

    async def last_planned_run_at(self, incident_key: str) -> datetime | None:
        stmt = select(func.max(RemediationRun.created_at)).where(
            RemediationRun.incident_key == incident_key,
            RemediationRun.status == RUN_PLANNED,
        )
        result = await self._session.execute(stmt)
        return result.scalar()
