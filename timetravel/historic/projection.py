"""
Live entities decorated with their attributes at given timestamps.

Usage:

    # Wrap single work package
    timestamps = [TimestampValue.parse("2022-01-01T00:00:00Z"), TimestampValue.now()]
    work_package = HistoricAttributes.wrap(work_package, timestamps)

    # Wrap multiple work packages (one query per timestamp, not per entity)
    work_packages = HistoricAttributes.wrap_many(work_packages, timestamps)

    # Access historic attributes
    work_package.subject                                                # current value
    work_package.attributes_at_timestamps["2022-01-01T00:00:00Z"].subject  # baseline value
    work_package.baseline_attributes.subject                            # same

    # Check at which timestamps a filter matched
    work_package = HistoricAttributes.wrap(work_package, timestamps, filter=subject_filter)
    work_package.matches_filter_at_timestamps       # [TimestampValue("2022-01-01T00:00:00Z")]
    work_package.matches_filter_at_baseline_timestamp

    # Keep only attributes that differ from the current ones
    work_package = HistoricAttributes.wrap(work_package, timestamps, diff_mode=True)
    "subject" in work_package.attributes_at_timestamps["PT0S"]    # False when unchanged

When the last timestamp is historic, the wrapper's own attributes show the
entity as it was at that timestamp instead of its present state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy.engine import Connection
from sqlmodel import SQLModel

from timetravel.core.database import use_connection
from timetravel.core.journables import JournableKind, all_kinds, kind_for_entity
from timetravel.core.timestamp import TimestampValue
from timetravel.filters.filter import Filter, FilterService
from timetravel.query.builder import col, in_, select_from
from timetravel.query.executor import QueryExecutor
from timetravel.query.rewriter import as_of
from .snapshot import AttributeSnapshot


logger = logging.getLogger(__name__)


class FilterNotSupportedError(NotImplementedError):
    """Raised when filter matching is requested for a kind that has no filters."""

    pass


class HistoricAttributes:
    """Wraps a live entity and exposes its attributes at several timestamps.

    Attribute access not defined here is delegated to the wrapped entity.
    """

    def __init__(
        self,
        entity: SQLModel,
        timestamps: Sequence[TimestampValue | str | datetime],
        filter: Filter | None = None,
        diff_mode: bool = False,
    ):
        kind = kind_for_entity(entity)
        if filter is not None and not kind.supports_filters:
            raise FilterNotSupportedError(
                f"Matching filters at timestamps is only implemented for "
                f"{', '.join(_filterable_kinds())}, not for {kind.name}"
            )

        self._entity = entity
        self._overrides: dict[str, Any] = {}
        self.kind: JournableKind = kind
        self.timestamps: list[TimestampValue] = [TimestampValue.parse(t) for t in timestamps]
        self.filter = filter
        self.diff_mode = diff_mode
        self.historic = False
        self.attributes_at_timestamps: dict[str, AttributeSnapshot] = {}
        self.matches_filter_at_timestamps: list[TimestampValue] = []

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def wrap(
        cls,
        entity: SQLModel,
        timestamps: Sequence[TimestampValue | str | datetime],
        filter: Filter | None = None,
        diff_mode: bool = False,
        *,
        connection: Connection | None = None,
        now: datetime | None = None,
    ) -> HistoricAttributes:
        """Wrap one entity. Same as ``wrap_many([entity], ...)[0]``."""
        return cls.wrap_many(
            [entity], timestamps, filter=filter, diff_mode=diff_mode, connection=connection, now=now
        )[0]

    @classmethod
    def wrap_many(
        cls,
        entities: Iterable[SQLModel],
        timestamps: Sequence[TimestampValue | str | datetime],
        filter: Filter | None = None,
        diff_mode: bool = False,
        *,
        connection: Connection | None = None,
        now: datetime | None = None,
    ) -> list[HistoricAttributes]:
        """Wrap entities of one kind.

        Issues one snapshot query per distinct timestamp for the whole set,
        plus one filter query per distinct timestamp when a filter is given.

        When the last timestamp is historic, each wrapper exposes the entity as
        it was then. An entity without a journal entry at that timestamp is
        still returned, with its live values and ``historic`` left false.

        Raises:
            ValueError: If the entities are of different kinds
            FilterNotSupportedError: If a filter is given for a kind without filters
        """
        wrapped = [cls(entity, timestamps, filter=filter, diff_mode=diff_mode) for entity in entities]
        if not wrapped:
            return []

        kinds = {item.kind.name for item in wrapped}
        if len(kinds) > 1:
            raise ValueError(f"wrap_many expects entities of one kind, got {', '.join(sorted(kinds))}")

        timestamps = wrapped[0].timestamps
        if not timestamps:
            return wrapped

        # Pin "now" so every relative timestamp resolves against the same instant.
        now = now or datetime.now(timezone.utc)
        kind = wrapped[0].kind
        ids = [item.id for item in wrapped]
        distinct = list({timestamp.key: timestamp for timestamp in timestamps}.values())

        with use_connection(connection) as conn:
            snapshots = {
                timestamp.key: _fetch_rows_by_id(kind, ids, timestamp, conn, now)
                for timestamp in distinct
            }
            matches: dict[str, set[int]] = {}
            if filter is not None:
                service = FilterService(conn)
                matches = {
                    timestamp.key: service.matching_ids(filter, ids, timestamp, now=now)
                    for timestamp in distinct
                }

        logger.debug(
            "entities_wrapped",
            extra={"kind": kind.name, "entities": len(ids), "timestamps": [t.key for t in distinct]},
        )

        current_timestamp = timestamps[-1]
        for item in wrapped:
            if current_timestamp.historic:
                item._assume_state_at(snapshots[current_timestamp.key].get(item.id))
            for timestamp in timestamps:
                item._assign_historic_attributes(
                    timestamp,
                    row=snapshots[timestamp.key].get(item.id),
                    matched=item.id in matches.get(timestamp.key, ()),
                )
        return wrapped

    def _assume_state_at(self, row: dict[str, Any] | None) -> None:
        # Without a journal entry at that time there is no older state to show.
        if row is None:
            return
        self._overrides = {name: value for name, value in row.items() if name != "timestamp"}
        self.historic = True

    def _assign_historic_attributes(self, timestamp: TimestampValue, row: dict[str, Any] | None, matched: bool) -> None:
        if row is not None:
            snapshot = AttributeSnapshot(
                timestamp, {name: value for name, value in row.items() if name != "timestamp"}
            )
            if self.diff_mode:
                snapshot = snapshot.changed_from(self.current_values)
            self.attributes_at_timestamps[timestamp.key] = snapshot
        if matched and timestamp not in self.matches_filter_at_timestamps:
            self.matches_filter_at_timestamps.append(timestamp)

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def entity(self) -> SQLModel:
        """The wrapped live entity."""
        return self._entity

    @property
    def current_values(self) -> dict[str, Any]:
        """Attribute values the wrapper exposes (historic when ``historic`` is set)."""
        return {**self._entity.model_dump(), **self._overrides}

    @property
    def baseline_timestamp(self) -> TimestampValue | None:
        return self.timestamps[0] if self.timestamps else None

    @property
    def current_timestamp(self) -> TimestampValue | None:
        return self.timestamps[-1] if self.timestamps else None

    @property
    def baseline_attributes(self) -> AttributeSnapshot | None:
        if self.baseline_timestamp is None:
            return None
        return self.attributes_at_timestamps.get(self.baseline_timestamp.key)

    @property
    def current_attributes(self) -> AttributeSnapshot | None:
        if self.current_timestamp is None:
            return None
        return self.attributes_at_timestamps.get(self.current_timestamp.key)

    @property
    def matches_filter_at_baseline_timestamp(self) -> bool:
        return self.baseline_timestamp in self.matches_filter_at_timestamps

    @property
    def matches_filter_at_current_timestamp(self) -> bool:
        return self.current_timestamp in self.matches_filter_at_timestamps

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        overrides = self.__dict__.get("_overrides", {})
        if name in overrides:
            return overrides[name]
        return getattr(self.__dict__["_entity"], name)

    def __repr__(self) -> str:
        keys = ", ".join(t.key for t in self.timestamps)
        return f"<HistoricAttributes {self.kind.name} {self.id} at [{keys}]>"


def _filterable_kinds() -> list[str]:
    return [kind.name for kind in all_kinds() if kind.supports_filters]


def _fetch_rows_by_id(
    kind: JournableKind,
    ids: list[int],
    timestamp: TimestampValue,
    conn: Connection,
    now: datetime,
) -> dict[int, dict[str, Any]]:
    """Snapshot rows of all ``ids`` at ``timestamp`` in one query."""
    query = select_from(kind.table_name).filter_by(in_(col(kind.table_name, "id"), ids))
    rows = QueryExecutor(conn).fetch_all(as_of(query, timestamp, now=now))
    return {row["id"]: row for row in rows}
