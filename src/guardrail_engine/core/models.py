"""SQLAlchemy ORM models for the guardrail engine.

All models use the `grd_` table prefix. JSON columns map to JSONB on
PostgreSQL and to plain JSON elsewhere so the same models run against the
in-memory SQLite engine used by repository tests.

Models:
- LawbookVersion   : immutable lawbook document, identified by its content hash
- LawbookActive    : pointer from a lawbook ID to its active version
- LawbookEvent     : append-only log of version creation and activation
- RemediationRun   : planned or skipped remediation run, unique by run key

Lawbook versions are never updated or deleted. Activation moves the pointer
in grd_lawbook_active and appends an event; the version rows stay as written.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonDocument = JSON().with_variant(JSONB(), "postgresql")

EVENT_VERSION_CREATED = "version_created"
EVENT_VERSION_ACTIVATED = "version_activated"


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base for every guardrail engine table."""


class LawbookVersion(Base):
    """An immutable lawbook version.

    The normalized document is stored as written. ``lawbook_hash`` is the full
    SHA-256 of its canonical form and is unique, which makes creating the same
    lawbook twice return the first row.

    Attributes:
        id: Version UUID.
        lawbook_id: Lawbook the version belongs to (e.g. ``AFU9-LAWBOOK``).
        lawbook_version: Author-assigned version label.
        created_at: When the row was written.
        created_by: ``admin`` or ``system``.
        lawbook_json: Normalized lawbook document (camelCase wire form).
        lawbook_hash: Full content hash; identity of the version.
        schema_version: Lawbook schema version the document validated against.
    """

    __tablename__ = "grd_lawbook_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lawbook_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Lawbook identifier, e.g. AFU9-LAWBOOK",
    )
    lawbook_version: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Author-assigned version label from the document",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    created_by: Mapped[str] = mapped_column(String(20), nullable=False, comment="admin | system")
    lawbook_json: Mapped[dict[str, Any]] = mapped_column(
        JsonDocument,
        nullable=False,
        comment="Normalized lawbook document",
    )
    lawbook_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="SHA-256 of the canonical document; unique identity of the version",
    )
    schema_version: Mapped[str] = mapped_column(String(20), nullable=False, comment="Lawbook schema version")


class LawbookActive(Base):
    """Active version pointer, one row per lawbook ID."""

    __tablename__ = "grd_lawbook_active"

    lawbook_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    active_lawbook_version_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("grd_lawbook_versions.id"),
        nullable=False,
        comment="Currently active version",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class LawbookEvent(Base):
    """Append-only lawbook lifecycle event.

    Attributes:
        event_type: version_created | version_activated.
        event_json: Event payload (hash, version label, previous active version).
    """

    __tablename__ = "grd_lawbook_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="version_created | version_activated",
    )
    lawbook_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    lawbook_version_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("grd_lawbook_versions.id"),
        nullable=True,
    )
    event_json: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True, comment="Acting subject")


class RemediationRun(Base):
    """A remediation run plan, keyed by its idempotency run key.

    Attributes:
        run_key: ``incident_key:playbook_id:inputs_hash``; unique.
        status: PLANNED | SKIPPED.
        skip_reason: LAWBOOK_DENIED | EVIDENCE_MISSING | INVALID_RUN_KEY, when skipped.
        lawbook_version: Lawbook version consulted, null when none was active.
        plan_json: Full plan including every gate verdict, for audit.
    """

    __tablename__ = "grd_remediation_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_key: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        unique=True,
        comment="Idempotency key of the run",
    )
    incident_key: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    playbook_id: Mapped[str] = mapped_column(String(100), nullable=False)
    playbook_version: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, comment="PLANNED | SKIPPED")
    skip_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lawbook_version: Mapped[str | None] = mapped_column(String(100), nullable=True)
    inputs_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_json: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
