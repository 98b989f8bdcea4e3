"""Shorthand constructors for query IR nodes.

Columns may be given as ``ColumnRef`` instances or as ``"table.column"``
strings::

    query = select_from("work_packages").filter_by(
        eq("work_packages.status", "open"),
        any_of(lt("work_packages.updated_at", cutoff), eq("work_packages.priority", "high")),
    )
"""

from __future__ import annotations

from typing import Any, Iterable

from .ir import (
    AllColumns,
    Column,
    ColumnRef,
    Comparison,
    Constant,
    Equality,
    Exists,
    Grouping,
    Join,
    Membership,
    Negation,
    NotEqual,
    OrderBy,
    Query,
    RawFragment,
)


ColumnLike = ColumnRef | str


def col(table_or_qualified: str, name: str | None = None) -> ColumnRef:
    """Build a column reference from ``("table", "name")`` or ``"table.name"``."""
    if name is None:
        table, sep, name = table_or_qualified.partition(".")
        if not sep or not table or not name:
            raise ValueError(f"Expected 'table.column', got {table_or_qualified!r}")
        return ColumnRef(table=table, name=name)
    return ColumnRef(table=table_or_qualified, name=name)


def _ref(column: ColumnLike) -> ColumnRef:
    return column if isinstance(column, ColumnRef) else col(column)


def select_from(table: str) -> Query:
    return Query(table=table)


def eq(column: ColumnLike, value: Any) -> Equality:
    return Equality(column=_ref(column), value=value)


def ne(column: ColumnLike, value: Any) -> NotEqual:
    return NotEqual(column=_ref(column), value=value)


def lt(column: ColumnLike, value: Any) -> Comparison:
    return Comparison(column=_ref(column), op="lt", value=value)


def lte(column: ColumnLike, value: Any) -> Comparison:
    return Comparison(column=_ref(column), op="lte", value=value)


def gt(column: ColumnLike, value: Any) -> Comparison:
    return Comparison(column=_ref(column), op="gt", value=value)


def gte(column: ColumnLike, value: Any) -> Comparison:
    return Comparison(column=_ref(column), op="gte", value=value)


def in_(column: ColumnLike, values: Iterable[Any] | Query) -> Membership:
    if isinstance(values, Query):
        return Membership(column=_ref(column), subquery=values)
    return Membership(column=_ref(column), values=tuple(values))


def not_in(column: ColumnLike, values: Iterable[Any] | Query) -> Membership:
    return in_(column, values).model_copy(update={"negated": True})


def all_of(*predicates) -> Grouping:
    return Grouping(predicates=tuple(predicates), conjunction="and")


def any_of(*predicates) -> Grouping:
    return Grouping(predicates=tuple(predicates), conjunction="or")


def not_(predicate) -> Negation:
    return Negation(predicate=predicate)


def exists(subquery: Query, negated: bool = False) -> Exists:
    return Exists(subquery=subquery, negated=negated)


def raw(sql: str, **params: Any) -> RawFragment:
    return RawFragment(sql=sql, params=params)


def join(table: str, *on, alias: str | None = None, outer: bool = False) -> Join:
    return Join(table=table, alias=alias, on=tuple(on), outer=outer)


def column(ref: ColumnLike, label: str | None = None) -> Column:
    return Column(ref=_ref(ref), label=label)


def constant(value: Any, label: str) -> Constant:
    return Constant(value=value, label=label)


def all_columns(table: str) -> AllColumns:
    return AllColumns(table=table)


def asc(target: ColumnLike | RawFragment) -> OrderBy:
    if isinstance(target, RawFragment):
        return OrderBy(target=target)
    return OrderBy(target=_ref(target))


def desc(target: ColumnLike | RawFragment) -> OrderBy:
    return asc(target).model_copy(update={"descending": True})
