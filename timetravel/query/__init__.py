"""Query domain - IR, builder helpers, compilation, execution and temporal rewriting."""

# IR Types
from timetravel.query.ir import (
    AllColumns,
    AsOfJoin,
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
    # Errors
    InvalidQueryError,
    TemporalQueryError,
    UnsupportedPredicateError,
)

# Compiler and executor
from timetravel.query.compiler import QueryCompiler, compile_query
from timetravel.query.executor import QueryExecutor, execute

# Rewriter
from timetravel.query.rewriter import TemporalQueryRewriter, as_of

__all__ = [
    # IR Types
    "AllColumns",
    "AsOfJoin",
    "Column",
    "ColumnRef",
    "Comparison",
    "Constant",
    "Equality",
    "Exists",
    "Grouping",
    "Join",
    "Membership",
    "Negation",
    "NotEqual",
    "OrderBy",
    "Query",
    "RawFragment",
    # Errors
    "InvalidQueryError",
    "TemporalQueryError",
    "UnsupportedPredicateError",
    # Compiler and executor
    "QueryCompiler",
    "compile_query",
    "QueryExecutor",
    "execute",
    # Rewriter
    "TemporalQueryRewriter",
    "as_of",
]
