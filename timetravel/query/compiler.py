"""
Query compiler for transforming IR to SQLAlchemy Core.

Relations are resolved against the SQLModel metadata; joins are compiled in
order, so a join may only refer to relations introduced before it.
"""

from __future__ import annotations

import operator
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Select,
    and_,
    asc,
    desc,
    func,
    literal,
    not_,
    or_,
    select,
    text,
)
from sqlalchemy.sql.expression import FromClause
from sqlmodel import SQLModel

from timetravel.core import models  # noqa: F401  (registers tables)
from timetravel.core.models import UTCDateTime
from timetravel.core.journables import JOURNALS_TABLE
from timetravel.core.timestamp import to_utc
from .ir import (
    AllColumns,
    AsOfJoin,
    Column,
    ColumnRef,
    Comparison,
    Constant,
    Equality,
    Exists,
    Grouping,
    InvalidQueryError,
    Membership,
    Negation,
    NotEqual,
    Query,
    RawFragment,
)


# Comparison operator mapping from IR to Python operators
COMPARISON_OPERATORS = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}


class QueryCompiler:
    """Compiles query IR to SQLAlchemy ``Select`` statements."""

    def __init__(self, metadata=None):
        self._metadata = metadata if metadata is not None else SQLModel.metadata

    def compile(self, query: Query) -> Select:
        """Compile a query.

        Args:
            query: The query IR

        Returns:
            An executable SQLAlchemy ``Select``

        Raises:
            InvalidQueryError: If a table, alias or column cannot be resolved
        """
        if not isinstance(query, Query):
            raise InvalidQueryError(f"Expected a Query, got {type(query).__name__}")

        base = self._table(query.table)
        sources: dict[str, FromClause] = {query.table: base}
        from_clause = base

        for join in query.joins:
            if isinstance(join, AsOfJoin):
                target = self._table(JOURNALS_TABLE)
                sources[join.name] = target
                onclause = self._as_of_condition(join, target, sources)
                from_clause = from_clause.join(target, onclause)
            else:
                target = self._table(join.table)
                if join.alias:
                    target = target.alias(join.alias)
                sources[join.name] = target
                onclause = and_(*(self._predicate(p, sources) for p in join.on))
                from_clause = from_clause.join(target, onclause, isouter=join.outer)

        statement = select(*self._projections(query, sources)).select_from(from_clause)

        if query.where:
            statement = statement.where(*(self._predicate(p, sources) for p in query.where))

        for order in query.order_by:
            if isinstance(order.target, RawFragment):
                expression = self._raw(order.target)
            else:
                expression = self._column(order.target, sources)
            statement = statement.order_by(desc(expression) if order.descending else asc(expression))

        if query.limit is not None:
            statement = statement.limit(query.limit)

        return statement

    # =========================================================================
    # Relations
    # =========================================================================

    def _table(self, name: str) -> FromClause:
        try:
            return self._metadata.tables[name]
        except KeyError:
            raise InvalidQueryError(f"Unknown table: {name}") from None

    def _column(self, ref: ColumnRef, sources: dict[str, FromClause]):
        try:
            source = sources[ref.table]
        except KeyError:
            raise InvalidQueryError(
                f"Relation {ref.table!r} is not part of the query (referenced by {ref.qualified_name})"
            ) from None
        try:
            return source.c[ref.name]
        except KeyError:
            raise InvalidQueryError(f"Unknown column: {ref.qualified_name}") from None

    def _as_of_condition(self, join: AsOfJoin, journals: FromClause, sources: dict[str, FromClause]):
        try:
            data = sources[join.data_table]
        except KeyError:
            raise InvalidQueryError(
                f"As-of join needs {join.data_table!r} earlier in the FROM clause"
            ) from None

        timestamp = literal(to_utc(join.timestamp), type_=UTCDateTime())
        earlier = journals.alias("journals_before")
        latest_version = (
            select(func.max(earlier.c.version))
            .where(
                earlier.c.entity_type == journals.c.entity_type,
                earlier.c.entity_id == journals.c.entity_id,
                earlier.c.recorded_at <= timestamp,
            )
            .correlate(journals)
            .scalar_subquery()
        )
        return and_(
            journals.c.entity_type == join.entity_type,
            journals.c.data_id == data.c.id,
            journals.c.recorded_at <= timestamp,
            journals.c.version == latest_version,
        )

    # =========================================================================
    # Projections
    # =========================================================================

    def _projections(self, query: Query, sources: dict[str, FromClause]) -> list[Any]:
        if not query.projections:
            return [sources[query.table]]

        columns: list[Any] = []
        for projection in query.projections:
            if isinstance(projection, Column):
                expression = self._column(projection.ref, sources)
                columns.append(expression.label(projection.label) if projection.label else expression)
            elif isinstance(projection, Constant):
                columns.append(literal(projection.value).label(projection.label))
            elif isinstance(projection, AllColumns):
                if projection.table not in sources:
                    raise InvalidQueryError(f"Relation {projection.table!r} is not part of the query")
                columns.extend(sources[projection.table].c)
            else:
                raise InvalidQueryError(f"Unknown projection: {type(projection).__name__}")
        return columns

    # =========================================================================
    # Predicates
    # =========================================================================

    def _predicate(self, predicate, sources: dict[str, FromClause]):
        if isinstance(predicate, Equality):
            column = self._column(predicate.column, sources)
            if predicate.value is None:
                return column.is_(None)
            return column == self._operand(predicate.value, sources)

        if isinstance(predicate, NotEqual):
            column = self._column(predicate.column, sources)
            if predicate.value is None:
                return column.is_not(None)
            return column != self._operand(predicate.value, sources)

        if isinstance(predicate, Comparison):
            column = self._column(predicate.column, sources)
            return COMPARISON_OPERATORS[predicate.op](column, self._operand(predicate.value, sources))

        if isinstance(predicate, Membership):
            column = self._column(predicate.column, sources)
            if predicate.subquery is not None:
                candidates = self.compile(predicate.subquery)
            else:
                candidates = [self._operand(value, sources) for value in predicate.values]
            return column.not_in(candidates) if predicate.negated else column.in_(candidates)

        if isinstance(predicate, RawFragment):
            return self._raw(predicate)

        if isinstance(predicate, Grouping):
            parts = [self._predicate(p, sources) for p in predicate.predicates]
            combined = and_(*parts) if predicate.conjunction == "and" else or_(*parts)
            return combined.self_group()

        if isinstance(predicate, Negation):
            return not_(self._predicate(predicate.predicate, sources))

        if isinstance(predicate, Exists):
            clause = self.compile(predicate.subquery).exists()
            return ~clause if predicate.negated else clause

        raise InvalidQueryError(f"Unknown predicate: {type(predicate).__name__}")

    def _operand(self, value: Any, sources: dict[str, FromClause]) -> Any:
        if isinstance(value, ColumnRef):
            return self._column(value, sources)
        if isinstance(value, datetime):
            return to_utc(value)
        return value

    def _raw(self, fragment: RawFragment):
        clause = text(fragment.sql)
        if fragment.params:
            clause = clause.bindparams(**fragment.params)
        return clause


def compile_query(query: Query) -> Select:
    """Convenience function to compile a single query."""
    return QueryCompiler().compile(query)
