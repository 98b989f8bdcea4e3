"""Journal time travel: read journaled entities as they were at past timestamps."""

from timetravel.core.timestamp import TimestampValue
from timetravel.historic.projection import FilterNotSupportedError, HistoricAttributes
from timetravel.query.ir import (
    InvalidQueryError,
    TemporalQueryError,
    UnsupportedPredicateError,
)
from timetravel.query.rewriter import TemporalQueryRewriter, as_of

__version__ = "0.1.0"

__all__ = [
    "TimestampValue",
    "HistoricAttributes",
    "FilterNotSupportedError",
    "TemporalQueryError",
    "InvalidQueryError",
    "UnsupportedPredicateError",
    "TemporalQueryRewriter",
    "as_of",
]
