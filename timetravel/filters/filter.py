"""
User-constructed filters over journaled entities.

A filter is a list of ``field operator values`` conditions, all of which must
hold. Filters can be written in YAML::

    name: original_subjects
    entity_kind: work_package
    conditions:
      - field: subject
        operator: "~"
        values: [original]

and are evaluated against the journal as of a timestamp.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.engine import Connection

from timetravel.core.config import get_settings
from timetravel.core.journables import get_kind
from timetravel.core.timestamp import TimestampValue
from timetravel.query.builder import col, column, eq, gte, in_, lte, ne, not_in, raw, select_from
from timetravel.query.executor import QueryExecutor
from timetravel.query.rewriter import as_of


FilterOperator = Literal["=", "!", "~", "!~", ">=", "<=", "*", "!*"]

# Columns holding datetimes
TIME_FIELDS = {"created_at", "updated_at"}

# Operators that take no values
VALUELESS_OPERATORS = {"*", "!*"}

# Operators that take exactly one value
SINGLE_VALUE_OPERATORS = {"~", "!~", ">=", "<="}


class FilterCondition(BaseModel):
    """A single ``field operator values`` condition."""

    field: str
    operator: FilterOperator
    values: list[Any] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_values(self) -> FilterCondition:
        if self.operator in VALUELESS_OPERATORS and self.values:
            raise ValueError(f"Operator {self.operator!r} takes no values")
        if self.operator in SINGLE_VALUE_OPERATORS and len(self.values) != 1:
            raise ValueError(f"Operator {self.operator!r} takes exactly one value")
        if self.operator in ("=", "!") and not self.values:
            raise ValueError(f"Operator {self.operator!r} needs at least one value")
        return self


class Filter(BaseModel):
    """A named conjunction of conditions on one journable kind."""

    name: str = "unnamed"
    entity_kind: str = "work_package"
    conditions: list[FilterCondition] = Field(default_factory=list)

    @field_validator("entity_kind")
    @classmethod
    def check_kind(cls, value: str) -> str:
        get_kind(value)
        return value

    @model_validator(mode="after")
    def check_fields(self) -> Filter:
        kind = get_kind(self.entity_kind)
        for condition in self.conditions:
            if not kind.has_attribute(condition.field):
                raise ValueError(f"{kind.name} has no attribute {condition.field!r}")
        return self

    @classmethod
    def from_yaml(cls, content: str) -> Filter:
        return cls.model_validate(yaml.safe_load(content) or {})

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.model_dump(), sort_keys=False)

    def add(self, field: str, operator: str, *values: Any) -> Filter:
        """Return a copy with one more condition."""
        condition = FilterCondition(field=field, operator=operator, values=list(values))
        return Filter(name=self.name, entity_kind=self.entity_kind, conditions=[*self.conditions, condition])

    def predicates(self) -> tuple:
        """Compile the conditions to query predicates on the live table."""
        table = get_kind(self.entity_kind).table_name
        return tuple(
            _condition_predicate(table, condition, index)
            for index, condition in enumerate(self.conditions)
        )


def _time_value(value: Any) -> Any:
    # Textual values (as loaded from YAML) are read as timestamps
    if isinstance(value, str):
        return TimestampValue.parse(value).to_datetime()
    return value


def _like_pattern(value: Any) -> str:
    escaped = str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _condition_predicate(table: str, condition: FilterCondition, index: int):
    ref = col(table, condition.field)
    values = condition.values
    if condition.field in TIME_FIELDS:
        values = [_time_value(value) for value in values]

    if condition.operator == "=":
        return eq(ref, values[0]) if len(values) == 1 else in_(ref, values)
    if condition.operator == "!":
        return ne(ref, values[0]) if len(values) == 1 else not_in(ref, values)
    if condition.operator == ">=":
        return gte(ref, values[0])
    if condition.operator == "<=":
        return lte(ref, values[0])
    if condition.operator == "*":
        return ne(ref, None)
    if condition.operator == "!*":
        return eq(ref, None)

    # Contains / does not contain, case-insensitive
    param = f"{condition.field}_{index}_pattern"
    quoted = f'"{table}"."{condition.field}"'
    like = f"LOWER({quoted}) LIKE LOWER(:{param}) ESCAPE '\\'"
    if condition.operator == "~":
        return raw(like, **{param: _like_pattern(values[0])})
    return raw(f"({quoted} IS NULL OR NOT {like})", **{param: _like_pattern(values[0])})


def load_filter(path: Path | str) -> Filter:
    """Load a filter definition from a YAML file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        return Filter.from_yaml(f.read())


def load_filters(directory: Path | str | None = None) -> dict[str, Filter]:
    """Load every ``*.yaml`` filter in a directory, keyed by filter name."""
    directory = Path(directory or get_settings().filters_dir)
    filters: dict[str, Filter] = {}
    if not directory.exists():
        return filters
    for path in sorted(directory.glob("*.yaml")):
        loaded = load_filter(path)
        filters[loaded.name] = loaded
    return filters


class FilterService:
    """Evaluates filters against the journal."""

    def __init__(self, connection: Connection | None = None):
        self.executor = QueryExecutor(connection)

    def matching_ids(
        self,
        filter: Filter,
        ids: Iterable[int],
        timestamp: TimestampValue | str | datetime,
        now: datetime | None = None,
    ) -> set[int]:
        """Ids among ``ids`` whose state at ``timestamp`` satisfies the filter.

        Runs a single query regardless of how many ids are given.
        """
        table = get_kind(filter.entity_kind).table_name
        query = (
            select_from(table)
            .filter_by(*filter.predicates(), in_(col(table, "id"), list(ids)))
            .selecting(column(col(table, "id")))
        )
        return self.executor.fetch_ids(as_of(query, timestamp, now=now))
