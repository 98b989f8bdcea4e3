"""
Intermediate Representation (IR) for structured queries.

These frozen Pydantic models describe a SELECT against one base relation:
- tagged predicate variants (``kind`` discriminator) for the WHERE clause
- ordered joins, including the first-class ``AsOfJoin`` added by the rewriter
- explicit projections and ordering

Every transformation produces a new ``Query``; nodes are never mutated.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from timetravel.core.journables import JOURNALS_TABLE


Scalar = Union[bool, int, float, str, datetime, date, None]


class TemporalQueryError(Exception):
    """Base class for query construction and rewriting failures."""

    pass


class InvalidQueryError(TemporalQueryError):
    """Raised when an input is not a query the subsystem can work with."""

    pass


class UnsupportedPredicateError(TemporalQueryError):
    """Raised when the rewriter meets a predicate it cannot translate."""

    def __init__(self, node_kind: str, detail: str | None = None):
        self.node_kind = node_kind
        message = f"A predicate of type {node_kind} is not supported by the temporal rewriter"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class IRNode(BaseModel):
    """Base for all IR nodes."""

    model_config = ConfigDict(frozen=True)


class ColumnRef(IRNode):
    """A column of a relation in the FROM clause (table name or join alias)."""

    table: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.table}.{self.name}"


Operand = Union[ColumnRef, bool, int, float, str, datetime, date, None]


# =============================================================================
# Predicates
# =============================================================================


class Equality(IRNode):
    """``column = value``; a ``None`` value means ``IS NULL``."""

    kind: Literal["equality"] = "equality"
    column: ColumnRef
    value: Operand = None


class NotEqual(IRNode):
    """``column <> value``; a ``None`` value means ``IS NOT NULL``."""

    kind: Literal["not_equal"] = "not_equal"
    column: ColumnRef
    value: Operand = None


class Comparison(IRNode):
    """Ordered comparison."""

    kind: Literal["comparison"] = "comparison"
    column: ColumnRef
    op: Literal["lt", "lte", "gt", "gte"]
    value: Operand


class Membership(IRNode):
    """``column [NOT] IN (values)`` or ``column [NOT] IN (subquery)``."""

    kind: Literal["membership"] = "membership"
    column: ColumnRef
    values: tuple[Scalar, ...] = ()
    subquery: Query | None = None
    negated: bool = False


class RawFragment(IRNode):
    """A raw SQL condition with named bind parameters."""

    kind: Literal["raw"] = "raw"
    sql: str
    params: dict[str, Any] = Field(default_factory=dict)


class Grouping(IRNode):
    """Parenthesized conjunction or disjunction of predicates."""

    kind: Literal["grouping"] = "grouping"
    predicates: tuple[Predicate, ...]
    conjunction: Literal["and", "or"] = "and"


class Negation(IRNode):
    """``NOT (predicate)``."""

    kind: Literal["negation"] = "negation"
    predicate: Predicate


class Exists(IRNode):
    """``[NOT] EXISTS (subquery)``."""

    kind: Literal["exists"] = "exists"
    subquery: Query
    negated: bool = False


Predicate = Annotated[
    Union[Equality, NotEqual, Comparison, Membership, RawFragment, Grouping, Negation, Exists],
    Field(discriminator="kind"),
]


# =============================================================================
# Joins
# =============================================================================


class Join(IRNode):
    """Join of a table (optionally aliased) on a list of predicates."""

    kind: Literal["join"] = "join"
    table: str
    alias: str | None = None
    on: tuple[Predicate, ...]
    outer: bool = False

    @property
    def name(self) -> str:
        """The name other clauses use to refer to this relation."""
        return self.alias or self.table


class AsOfJoin(IRNode):
    """Inner join on the journals table keeping, per entity, the one entry
    with the greatest ``recorded_at <= timestamp``.

    ``timestamp`` is aware UTC.
    """

    kind: Literal["as_of_join"] = "as_of_join"
    entity_type: str
    data_table: str
    timestamp: datetime

    @property
    def name(self) -> str:
        return JOURNALS_TABLE


JoinClause = Annotated[Union[Join, AsOfJoin], Field(discriminator="kind")]


# =============================================================================
# Projections and ordering
# =============================================================================


class Column(IRNode):
    """A projected column, optionally labeled."""

    kind: Literal["column"] = "column"
    ref: ColumnRef
    label: str | None = None

    @property
    def output_name(self) -> str:
        return self.label or self.ref.name


class Constant(IRNode):
    """A constant projected under a label."""

    kind: Literal["constant"] = "constant"
    value: Scalar
    label: str


class AllColumns(IRNode):
    """Every column of one relation (``table.*``)."""

    kind: Literal["all_columns"] = "all_columns"
    table: str


Projection = Annotated[Union[Column, Constant, AllColumns], Field(discriminator="kind")]


class OrderBy(IRNode):
    target: Union[ColumnRef, RawFragment]
    descending: bool = False


# =============================================================================
# Query
# =============================================================================


class Query(IRNode):
    """A SELECT against ``table``.

    Predicates in ``where`` are combined with AND. An empty ``projections``
    tuple selects every column of the base table.
    """

    table: str
    joins: tuple[JoinClause, ...] = ()
    where: tuple[Predicate, ...] = ()
    projections: tuple[Projection, ...] = ()
    order_by: tuple[OrderBy, ...] = ()
    limit: int | None = None

    as_of: str | None = None
    """Canonical timestamp key once the query reads historic data."""

    readonly: bool = False

    def filter_by(self, *predicates: Predicate) -> Query:
        return self.model_copy(update={"where": self.where + tuple(predicates)})

    def joined(self, *joins: Join | AsOfJoin) -> Query:
        return self.model_copy(update={"joins": self.joins + tuple(joins)})

    def selecting(self, *projections: Column | Constant | AllColumns) -> Query:
        return self.model_copy(update={"projections": tuple(projections)})

    def ordered_by(self, *orders: OrderBy) -> Query:
        return self.model_copy(update={"order_by": self.order_by + tuple(orders)})

    def limited(self, limit: int | None) -> Query:
        return self.model_copy(update={"limit": limit})


for _model in (Membership, Grouping, Negation, Exists, Join, Query):
    _model.model_rebuild()
