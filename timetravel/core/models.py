"""
Table definitions and record types for journaled entities.

Every journaled kind has a live table (current attributes) and a journal data
table holding one payload row per journal entry. The shared ``journals`` table
links an entity to its payload rows and orders them by version.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Current time as aware UTC."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes stored as UTC.

    SQLite keeps no offset, so values are normalized to UTC on write and
    marked as UTC again on read. Naive values are rejected.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Datetime values must have timezone information, got {value!r}")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# =============================================================================
# Live entities
# =============================================================================


class Project(SQLModel, table=True):
    """A project grouping work packages."""

    __tablename__ = "projects"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(..., description="Display name")
    identifier: str = Field(..., unique=True, index=True, description="URL-safe identifier")
    description: Optional[str] = Field(default=None)
    active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, description="Last update timestamp")


class WorkPackage(SQLModel, table=True):
    """A unit of work tracked inside a project."""

    __tablename__ = "work_packages"

    id: Optional[int] = Field(default=None, primary_key=True)
    subject: str = Field(..., description="Short summary")
    description: Optional[str] = Field(default=None)
    status: str = Field(default="new")
    priority: str = Field(default="normal")
    project_id: Optional[int] = Field(default=None, foreign_key="projects.id")
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, description="Last update timestamp")


# =============================================================================
# Journal payload tables
# =============================================================================


class ProjectJournal(SQLModel, table=True):
    """Snapshot of a project's attributes."""

    __tablename__ = "project_journals"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    identifier: str
    description: Optional[str] = None
    active: bool = True


class WorkPackageJournal(SQLModel, table=True):
    """Snapshot of a work package's attributes."""

    __tablename__ = "work_package_journals"

    id: Optional[int] = Field(default=None, primary_key=True)
    subject: str
    description: Optional[str] = None
    status: str = "new"
    priority: str = "normal"
    # No foreign key: the referenced project may have been deleted since.
    project_id: Optional[int] = None


class Journal(SQLModel, table=True):
    """One versioned journal entry of an entity."""

    __tablename__ = "journals"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "version", name="uq_journals_entity_version"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(..., index=True, description="Journable kind name")
    entity_id: int = Field(..., index=True)
    version: int = Field(..., ge=1)
    data_id: int = Field(..., description="Row id in the kind's journal data table")
    recorded_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)


# =============================================================================
# Journal Entry Record
# =============================================================================


@dataclass(frozen=True)
class JournalEntryRecord:
    """An immutable journal entry joined with its payload."""

    entity_type: str
    entity_id: int
    version: int
    recorded_at: datetime
    id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any], payload_attributes: tuple[str, ...]) -> JournalEntryRecord:
        """Create from a journals row joined with its payload row."""
        return cls(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            version=row["version"],
            recorded_at=row["recorded_at"],
            payload={name: row[name] for name in payload_attributes},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "version": self.version,
            "recorded_at": self.recorded_at,
            "payload": dict(self.payload),
        }
