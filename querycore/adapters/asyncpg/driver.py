import re
from typing import TYPE_CHECKING, Any, Final, Optional

import asyncpg

from querycore.core.dialect import Dialect
from querycore.core.result import ExecutionResult
from querycore.driver import AsyncDriverAdapterBase, returns_rows
from querycore.exceptions import (
    DatabaseConnectionError,
    ForeignKeyViolationError,
    IntegrityError,
    NotNullViolationError,
    QueryCoreError,
    QueryError,
    SQLParsingError,
    UniqueViolationError,
)
from querycore.utils.logging import get_logger

if TYPE_CHECKING:
    from querycore.adapters.asyncpg._types import AsyncpgConnection

__all__ = ("AsyncpgDriver", "AsyncpgExceptionHandler")

logger = get_logger("adapters.asyncpg")

ASYNC_PG_STATUS_REGEX: Final[re.Pattern[str]] = re.compile(r"^([A-Z]+)(?:\s+(\d+))?\s+(\d+)$", re.IGNORECASE)

EXPECTED_REGEX_GROUPS: Final[int] = 3


def _raise_postgres_error(
    error: Any, code: "Optional[str]", error_class: "type[QueryCoreError]", description: str
) -> None:
    msg = f"PostgreSQL {description} [{code}]: {error}" if code else f"PostgreSQL {description}: {error}"
    raise error_class(msg) from error


class AsyncpgExceptionHandler:
    """Async context manager mapping asyncpg errors to querycore exceptions by SQLSTATE."""

    __slots__ = ()

    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            return
        if issubclass(exc_type, asyncpg.PostgresError):
            self._map_postgres_exception(exc_val)
        if issubclass(exc_type, (asyncpg.InterfaceError, ConnectionError)):
            _raise_postgres_error(exc_val, None, DatabaseConnectionError, "connection error")

    @staticmethod
    def _map_postgres_exception(error: Any) -> None:
        code: Optional[str] = getattr(error, "sqlstate", None)
        if not code:
            _raise_postgres_error(error, None, QueryError, "database error")
            return
        if code == "23505":
            _raise_postgres_error(error, code, UniqueViolationError, "unique constraint violation")
        elif code == "23503":
            _raise_postgres_error(error, code, ForeignKeyViolationError, "foreign key constraint violation")
        elif code == "23502":
            _raise_postgres_error(error, code, NotNullViolationError, "not-null constraint violation")
        elif code.startswith("23"):
            _raise_postgres_error(error, code, IntegrityError, "integrity constraint violation")
        elif code.startswith("42"):
            _raise_postgres_error(error, code, SQLParsingError, "SQL syntax error")
        elif code.startswith("08"):
            _raise_postgres_error(error, code, DatabaseConnectionError, "connection error")
        else:
            _raise_postgres_error(error, code, QueryError, "database error")


class AsyncpgDriver(AsyncDriverAdapterBase):
    """PostgreSQL driver using an asyncpg pool.

    Statements arrive with ``$n`` placeholders. Cancelling a dispatch cancels
    the statement on the server.
    """

    __slots__ = ()

    dialect = Dialect.POSTGRES

    async def _execute_statement(self, connection: "AsyncpgConnection", sql: str, params: "list[Any]") -> Any:
        if returns_rows(sql):
            records = await connection.fetch(sql, *params)
            return [dict(record) for record in records]
        status = await connection.execute(sql, *params)
        return ExecutionResult(rows=[], affected_rows=self._parse_asyncpg_status(status))

    @staticmethod
    def _parse_asyncpg_status(status: str) -> Optional[int]:
        """Parse an asyncpg command status into a row count.

        Args:
            status: Status string like "INSERT 0 1", "UPDATE 3", "DELETE 2"

        Returns:
            Number of affected rows, or None for statements that report none
        """
        if not status:
            return None
        match = ASYNC_PG_STATUS_REGEX.match(status.strip())
        if match and len(match.groups()) >= EXPECTED_REGEX_GROUPS:
            return int(match.group(EXPECTED_REGEX_GROUPS))
        return None

    def handle_database_exceptions(self) -> "AsyncpgExceptionHandler":
        return AsyncpgExceptionHandler()
