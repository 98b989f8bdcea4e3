"""
Journal repository for versioned entity snapshots.

Journal entries are append-only: once recorded they are never updated or
deleted. Reads here go straight to the journal tables and are independent of
the query rewriter.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import func, insert, select

from timetravel.core.database import get_db
from timetravel.core.journables import JournableKind, get_kind
from timetravel.core.models import Journal, JournalEntryRecord, utc_now
from timetravel.core.timestamp import TimestampValue, to_utc


class JournalOrderError(ValueError):
    """Raised when an entry would break the per-entity ordering of the journal."""

    pass


class JournalStore(Protocol):
    """Read interface of an append-only journal."""

    def get_entries(self, kind: JournableKind | str, entity_id: int) -> list[JournalEntryRecord]:
        ...

    def get_entry_at(
        self, kind: JournableKind | str, entity_id: int, timestamp: TimestampValue | str | datetime
    ) -> JournalEntryRecord | None:
        ...


def _resolve_kind(kind: JournableKind | str) -> JournableKind:
    return kind if isinstance(kind, JournableKind) else get_kind(kind)


class JournalRepository:
    """Repository for journal entry persistence operations."""

    # =========================================================================
    # Recording
    # =========================================================================

    def record(
        self,
        kind: JournableKind | str,
        entity_id: int,
        payload: dict[str, Any],
        recorded_at: datetime | None = None,
    ) -> JournalEntryRecord:
        """Append a journal entry for an entity.

        The version number is assigned automatically. Entries must be recorded
        in chronological order per entity.

        Args:
            kind: Journable kind (or its name)
            entity_id: Id of the live entity
            payload: Attribute values; keys must be payload attributes of the kind
            recorded_at: When the entry became valid (defaults to now)

        Returns:
            The recorded JournalEntryRecord

        Raises:
            ValueError: If the payload names unknown attributes
            JournalOrderError: If ``recorded_at`` precedes the latest entry
        """
        kind = _resolve_kind(kind)
        unknown = set(payload) - set(kind.payload_attributes)
        if unknown:
            raise ValueError(f"Unknown {kind.name} attributes: {', '.join(sorted(unknown))}")

        recorded_at = to_utc(recorded_at) if recorded_at else utc_now()
        journals = Journal.__table__
        data_table = kind.journal_model.__table__

        with get_db() as conn:
            row = conn.execute(
                select(func.max(journals.c.version), func.max(journals.c.recorded_at)).where(
                    journals.c.entity_type == kind.name,
                    journals.c.entity_id == entity_id,
                )
            ).fetchone()
            latest_version, latest_recorded_at = row[0], row[1]

            if latest_recorded_at is not None and recorded_at < latest_recorded_at:
                raise JournalOrderError(
                    f"{kind.name} {entity_id}: entry at {recorded_at.isoformat()} "
                    f"precedes version {latest_version} at {latest_recorded_at.isoformat()}"
                )

            result = conn.execute(insert(data_table).values(**payload))
            data_id = result.inserted_primary_key[0]

            version = (latest_version or 0) + 1
            result = conn.execute(
                insert(journals).values(
                    entity_type=kind.name,
                    entity_id=entity_id,
                    version=version,
                    data_id=data_id,
                    recorded_at=recorded_at,
                )
            )
            journal_id = result.inserted_primary_key[0]

            conn.commit()

        return JournalEntryRecord(
            id=journal_id,
            entity_type=kind.name,
            entity_id=entity_id,
            version=version,
            recorded_at=recorded_at,
            payload={name: payload.get(name) for name in kind.payload_attributes if name in payload},
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_entries(self, kind: JournableKind | str, entity_id: int) -> list[JournalEntryRecord]:
        """Get all entries of an entity, oldest version first."""
        kind = _resolve_kind(kind)
        statement = self._entries_statement(kind).where(
            Journal.__table__.c.entity_id == entity_id
        ).order_by(Journal.__table__.c.version)

        with get_db() as conn:
            rows = conn.execute(statement).fetchall()
        return [JournalEntryRecord.from_row(row._mapping, kind.payload_attributes) for row in rows]

    def get_entry_at(
        self,
        kind: JournableKind | str,
        entity_id: int,
        timestamp: TimestampValue | str | datetime,
        now: datetime | None = None,
    ) -> JournalEntryRecord | None:
        """Get the entry valid at ``timestamp``.

        Returns:
            The entry with the greatest ``recorded_at <= timestamp``, or None
            if the entity had no entry yet
        """
        kind = _resolve_kind(kind)
        instant = to_utc(TimestampValue.parse(timestamp).to_datetime(now))
        journals = Journal.__table__
        statement = (
            self._entries_statement(kind)
            .where(journals.c.entity_id == entity_id, journals.c.recorded_at <= instant)
            .order_by(journals.c.version.desc())
            .limit(1)
        )

        with get_db() as conn:
            row = conn.execute(statement).fetchone()
        if row:
            return JournalEntryRecord.from_row(row._mapping, kind.payload_attributes)
        return None

    def get_latest_entry(self, kind: JournableKind | str, entity_id: int) -> JournalEntryRecord | None:
        """Get the most recent entry of an entity."""
        kind = _resolve_kind(kind)
        journals = Journal.__table__
        statement = (
            self._entries_statement(kind)
            .where(journals.c.entity_id == entity_id)
            .order_by(journals.c.version.desc())
            .limit(1)
        )

        with get_db() as conn:
            row = conn.execute(statement).fetchone()
        if row:
            return JournalEntryRecord.from_row(row._mapping, kind.payload_attributes)
        return None

    def count_entries(self, kind: JournableKind | str | None = None, entity_id: int | None = None) -> int:
        """Count entries, optionally for one kind and entity."""
        journals = Journal.__table__
        statement = select(func.count()).select_from(journals)
        if kind is not None:
            statement = statement.where(journals.c.entity_type == _resolve_kind(kind).name)
        if entity_id is not None:
            statement = statement.where(journals.c.entity_id == entity_id)

        with get_db() as conn:
            return conn.execute(statement).scalar_one()

    def _entries_statement(self, kind: JournableKind):
        journals = Journal.__table__
        data_table = kind.journal_model.__table__
        return (
            select(
                journals.c.id,
                journals.c.entity_type,
                journals.c.entity_id,
                journals.c.version,
                journals.c.recorded_at,
                *(data_table.c[name] for name in kind.payload_attributes),
            )
            .join_from(journals, data_table, data_table.c.id == journals.c.data_id)
            .where(journals.c.entity_type == kind.name)
        )
