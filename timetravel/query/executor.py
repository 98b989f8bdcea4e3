"""Execution of query IR against the configured database."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import Connection

from timetravel.core.database import use_connection
from .compiler import QueryCompiler
from .ir import Query


logger = logging.getLogger(__name__)


class QueryExecutor:
    """Compiles and runs queries, returning rows as dictionaries."""

    def __init__(self, connection: Connection | None = None, compiler: QueryCompiler | None = None):
        self.connection = connection
        self.compiler = compiler or QueryCompiler()

    def fetch_all(self, query: Query) -> list[dict[str, Any]]:
        statement = self.compiler.compile(query)
        with use_connection(self.connection) as conn:
            rows = [dict(row._mapping) for row in conn.execute(statement)]
        logger.debug("query_executed", extra={"table": query.table, "as_of": query.as_of, "rows": len(rows)})
        return rows

    def fetch_ids(self, query: Query) -> set[int]:
        """Run a query projecting ``id`` and collect the ids."""
        return {row["id"] for row in self.fetch_all(query)}


def execute(query: Query, connection: Connection | None = None) -> list[dict[str, Any]]:
    """Convenience function to run a single query."""
    return QueryExecutor(connection).fetch_all(query)
