"""
Temporal query rewriting.

Turns a query aimed at the live table of a journaled kind into an equivalent
query that reads the journal as of a timestamp::

    query = select_from("work_packages").filter_by(eq("work_packages.subject", "Foo"))
    historic = as_of(query, TimestampValue.parse("2022-01-01T00:00:00Z"))

The rewritten query selects from the kind's journal data table, joined with
the one journal entry per entity that was valid at the timestamp, and with the
live table (aliased ``journables``) for the immutable ``created_at``.
Entities without a journal entry at that point in time drop out of the result.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from timetravel.core.journables import (
    JOURNABLES_ALIAS,
    JOURNALS_TABLE,
    JournableKind,
    kind_for_table,
)
from timetravel.core.timestamp import TimestampValue, to_utc
from .ir import (
    AllColumns,
    AsOfJoin,
    Column,
    ColumnRef,
    Comparison,
    Constant,
    Equality,
    Grouping,
    InvalidQueryError,
    Join,
    Membership,
    NotEqual,
    OrderBy,
    Query,
    RawFragment,
    UnsupportedPredicateError,
)


logger = logging.getLogger(__name__)

# Raw fragments may sit inside one level of grouping; deeper nesting is rejected.
MAX_RAW_FRAGMENT_DEPTH = 1


class TemporalQueryRewriter:
    """Rewrites a query against a live table to read journal data as of a timestamp.

    The instance is bound to one kind and one resolved instant; ``rewrite``
    runs the stages in order, each returning a new ``Query``.
    """

    def __init__(self, kind: JournableKind, timestamp: TimestampValue, now: datetime | None = None):
        self.kind = kind
        self.timestamp = timestamp
        self.instant = to_utc(timestamp.to_datetime(now))
        self._raw_substitutions = self._build_raw_substitutions()

    def rewrite(self, query: Query) -> Query:
        query = self._switch_to_journal_table(query)
        query = self._substitute_where_clause(query)
        query = self._substitute_join_conditions(query)
        query = self._add_as_of_join(query)
        query = self._add_journables_join(query)
        query = self._select_columns(query)
        query = self._substitute_order_clauses(query)
        query = self._move_as_of_join_first(query)
        return query.model_copy(update={"as_of": self.timestamp.key, "readonly": True})

    # =========================================================================
    # Stages
    # =========================================================================

    def _switch_to_journal_table(self, query: Query) -> Query:
        return query.model_copy(update={"table": self.kind.journal_table_name})

    def _substitute_where_clause(self, query: Query) -> Query:
        where = tuple(self.substitute_predicate(p) for p in query.where)
        return query.model_copy(update={"where": where})

    def _substitute_join_conditions(self, query: Query) -> Query:
        joins = tuple(
            join.model_copy(update={"on": tuple(self.substitute_predicate(p) for p in join.on)})
            if isinstance(join, Join)
            else join
            for join in query.joins
        )
        return query.model_copy(update={"joins": joins})

    def _add_as_of_join(self, query: Query) -> Query:
        as_of_join = AsOfJoin(
            entity_type=self.kind.name,
            data_table=self.kind.journal_table_name,
            timestamp=self.instant,
        )
        return query.joined(as_of_join)

    def _add_journables_join(self, query: Query) -> Query:
        # The journal payload has no created_at; take it from the live row.
        journables_join = Join(
            table=self.kind.table_name,
            alias=JOURNABLES_ALIAS,
            on=(
                Equality(
                    column=ColumnRef(table=JOURNABLES_ALIAS, name="id"),
                    value=ColumnRef(table=JOURNALS_TABLE, name="entity_id"),
                ),
            ),
        )
        return query.joined(journables_join)

    def _select_columns(self, query: Query) -> Query:
        projections = query.projections

        if not projections:
            projections = (Constant(value=self.timestamp.key, label="timestamp"), *self._entity_columns())
        elif len(projections) == 1 and self._is_id_column(projections[0]):
            # Subqueries selecting ids must yield entity ids, not journal row ids.
            projections = (Column(ref=self.substitute_column(projections[0].ref), label="id"),)
        else:
            rewritten = []
            for projection in projections:
                if isinstance(projection, Column):
                    ref = self.substitute_column(projection.ref)
                    rewritten.append(Column(ref=ref, label=projection.label or projection.ref.name))
                elif isinstance(projection, AllColumns) and self._is_own_table(projection.table):
                    rewritten.extend(self._entity_columns())
                else:
                    rewritten.append(projection)
            projections = tuple(rewritten)

        return query.model_copy(update={"projections": projections})

    def _substitute_order_clauses(self, query: Query) -> Query:
        orders = []
        for order in query.order_by:
            if isinstance(order.target, RawFragment):
                target = self._substitute_raw(order.target)
            else:
                target = self.substitute_column(order.target)
            orders.append(OrderBy(target=target, descending=order.descending))
        return query.model_copy(update={"order_by": tuple(orders)})

    def _move_as_of_join_first(self, query: Query) -> Query:
        # Every later join may refer to the journals alias.
        as_of_joins = tuple(j for j in query.joins if isinstance(j, AsOfJoin))
        other_joins = tuple(j for j in query.joins if not isinstance(j, AsOfJoin))
        return query.model_copy(update={"joins": as_of_joins + other_joins})

    # =========================================================================
    # Substitution
    # =========================================================================

    def substitute_column(self, ref: ColumnRef) -> ColumnRef:
        """Map a column of the live (or journal data) table onto the as-of relation."""
        if not self._is_own_table(ref.table):
            return ref
        if ref.name == "id":
            return ColumnRef(table=JOURNALS_TABLE, name="entity_id")
        if ref.name == "created_at":
            return ColumnRef(table=JOURNABLES_ALIAS, name="created_at")
        if ref.name == "updated_at":
            return ColumnRef(table=JOURNALS_TABLE, name="recorded_at")
        return ColumnRef(table=self.kind.journal_table_name, name=ref.name)

    def substitute_predicate(self, predicate, depth: int = 0):
        """Rewrite every column reference inside a predicate.

        Raises:
            UnsupportedPredicateError: For predicate kinds without a translation
        """
        if isinstance(predicate, (Equality, NotEqual, Comparison)):
            return predicate.model_copy(
                update={
                    "column": self.substitute_column(predicate.column),
                    "value": self._substitute_operand(predicate.value),
                }
            )

        if isinstance(predicate, Membership):
            return predicate.model_copy(update={"column": self.substitute_column(predicate.column)})

        if isinstance(predicate, RawFragment):
            if depth > MAX_RAW_FRAGMENT_DEPTH:
                raise UnsupportedPredicateError(
                    "RawFragment",
                    f"raw SQL nested {depth} groupings deep cannot be rewritten reliably",
                )
            return self._substitute_raw(predicate)

        if isinstance(predicate, Grouping):
            return predicate.model_copy(
                update={
                    "predicates": tuple(
                        self.substitute_predicate(p, depth + 1) for p in predicate.predicates
                    )
                }
            )

        raise UnsupportedPredicateError(type(predicate).__name__)

    def _substitute_operand(self, value):
        if isinstance(value, ColumnRef):
            return self.substitute_column(value)
        return value

    def _substitute_raw(self, fragment: RawFragment) -> RawFragment:
        sql = fragment.sql
        for pattern, replacement in self._raw_substitutions:
            sql = pattern.sub(replacement, sql)
        return fragment.model_copy(update={"sql": sql})

    def _build_raw_substitutions(self) -> list[tuple[re.Pattern, str]]:
        table = re.escape(self.kind.table_name)
        journal_table = self.kind.journal_table_name
        # Unquoted names must not be the tail of a longer identifier.
        bare = r"(?<![\w.\"])" + table
        return [
            (re.compile(bare + r"\.updated_at\b"), f"{JOURNALS_TABLE}.recorded_at"),
            (re.compile(rf'"{table}"\."updated_at"'), f'"{JOURNALS_TABLE}"."recorded_at"'),
            (re.compile(bare + r"\.created_at\b"), f"{JOURNABLES_ALIAS}.created_at"),
            (re.compile(rf'"{table}"\."created_at"'), f'"{JOURNABLES_ALIAS}"."created_at"'),
            (re.compile(bare + r"\.id\b"), f"{JOURNALS_TABLE}.entity_id"),
            (re.compile(rf'"{table}"\."id"'), f'"{JOURNALS_TABLE}"."entity_id"'),
            (re.compile(bare + r"\."), f"{journal_table}."),
            (re.compile(rf'"{table}"\.'), f'"{journal_table}".'),
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _is_own_table(self, table: str) -> bool:
        return table in (self.kind.table_name, self.kind.journal_table_name)

    def _is_id_column(self, projection) -> bool:
        return (
            isinstance(projection, Column)
            and projection.ref.name == "id"
            and self._is_own_table(projection.ref.table)
        )

    def _entity_columns(self) -> tuple[Column, ...]:
        payload = tuple(
            Column(ref=ColumnRef(table=self.kind.journal_table_name, name=name), label=name)
            for name in self.kind.payload_attributes
        )
        return payload + (
            Column(ref=ColumnRef(table=JOURNALS_TABLE, name="entity_id"), label="id"),
            Column(ref=ColumnRef(table=JOURNABLES_ALIAS, name="created_at"), label="created_at"),
            Column(ref=ColumnRef(table=JOURNALS_TABLE, name="recorded_at"), label="updated_at"),
        )


def as_of(query: Query, timestamp: TimestampValue | str | datetime, *, now: datetime | None = None) -> Query:
    """Rewrite ``query`` to read the journal as of ``timestamp``.

    Args:
        query: A query against the live table of a journaled kind
        timestamp: When to read; relative timestamps resolve against ``now``
        now: Evaluation instant for relative timestamps (defaults to the current time)

    Returns:
        A new, read-only query; the input is left untouched

    Raises:
        InvalidQueryError: If ``query`` is not a Query, is already historic,
            or does not target a journaled table
        UnsupportedPredicateError: If a predicate cannot be translated
    """
    if not isinstance(query, Query):
        raise InvalidQueryError(f"Expected a Query, got {type(query).__name__}")
    if query.as_of is not None:
        raise InvalidQueryError(f"Query already reads historic data as of {query.as_of}")

    kind = kind_for_table(query.table)
    if kind is None:
        raise InvalidQueryError(f"Table {query.table!r} is not journaled")

    timestamp = TimestampValue.parse(timestamp)
    rewriter = TemporalQueryRewriter(kind, timestamp, now=now)
    rewritten = rewriter.rewrite(query)

    logger.debug(
        "query_rewritten",
        extra={"table": query.table, "as_of": timestamp.key, "instant": rewriter.instant.isoformat()},
    )
    return rewritten
