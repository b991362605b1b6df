"""Schedule and ledger query package."""

from recurring_ledger.queries.executor import (
    LedgerQueryExecutor,
    QueryExecutionError,
    ScheduleQueryExecutor,
)

__all__ = ["LedgerQueryExecutor", "QueryExecutionError", "ScheduleQueryExecutor"]
