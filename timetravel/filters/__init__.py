"""User-defined filters evaluated against the journal."""

from timetravel.filters.filter import (
    Filter,
    FilterCondition,
    FilterService,
    load_filter,
    load_filters,
)

__all__ = [
    "Filter",
    "FilterCondition",
    "FilterService",
    "load_filter",
    "load_filters",
]
