"""AsyncMy MySQL driver implementation.

Provides MySQL/MariaDB connectivity with ``?`` to ``%s`` placeholder
conversion and error-code based exception mapping.
"""

from typing import TYPE_CHECKING, Any, Optional, Union

import asyncmy.errors  # pyright: ignore
from asyncmy.cursors import Cursor, DictCursor  # pyright: ignore

from querycore.core.dialect import Dialect, to_pyformat
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
    from querycore.adapters.asyncmy._types import AsyncmyConnection

__all__ = ("AsyncmyCursor", "AsyncmyDriver", "AsyncmyExceptionHandler")

logger = get_logger("adapters.asyncmy")

MYSQL_ER_DUP_ENTRY = 1062
MYSQL_ER_NO_DEFAULT_FOR_FIELD = 1364
MYSQL_FOREIGN_KEY_CODES = frozenset({1216, 1217, 1451, 1452})
MYSQL_CONNECTION_CODES = frozenset({2002, 2003, 2005, 2006, 2013})


class AsyncmyCursor:
    """Context manager for AsyncMy cursor operations."""

    __slots__ = ("connection", "cursor")

    def __init__(self, connection: "AsyncmyConnection") -> None:
        self.connection = connection
        self.cursor: Optional[Union[Cursor, DictCursor]] = None

    async def __aenter__(self) -> Union[Cursor, DictCursor]:
        self.cursor = self.connection.cursor()
        return self.cursor

    async def __aexit__(self, *_: Any) -> None:
        if self.cursor is not None:
            await self.cursor.close()


class AsyncmyExceptionHandler:
    """Async context manager for handling asyncmy (MySQL) database exceptions.

    Maps MySQL error codes and SQLSTATE to specific querycore exceptions.
    """

    __slots__ = ()

    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            return
        if issubclass(exc_type, asyncmy.errors.Error):
            self._map_mysql_exception(exc_val)
        if issubclass(exc_type, ConnectionError):
            self._raise(exc_val, DatabaseConnectionError, "connection error", None, None)

    @staticmethod
    def _raise(
        e: Any, error_class: "type[QueryCoreError]", description: str, sqlstate: "Optional[str]", code: "Optional[int]"
    ) -> None:
        code_str = f" [{sqlstate or code}]" if sqlstate or code else ""
        msg = f"MySQL {description}{code_str}: {e}"
        raise error_class(msg) from e

    def _map_mysql_exception(self, e: Any) -> None:
        error_code = e.args[0] if len(e.args) >= 1 and isinstance(e.args[0], int) else None
        sqlstate: Optional[str] = getattr(e, "sqlstate", None)

        if sqlstate == "23505" or error_code == MYSQL_ER_DUP_ENTRY:
            self._raise(e, UniqueViolationError, "unique constraint violation", sqlstate, error_code)
        elif sqlstate == "23503" or error_code in MYSQL_FOREIGN_KEY_CODES:
            self._raise(e, ForeignKeyViolationError, "foreign key constraint violation", sqlstate, error_code)
        elif sqlstate == "23502" or error_code in {1048, MYSQL_ER_NO_DEFAULT_FOR_FIELD}:
            self._raise(e, NotNullViolationError, "not-null constraint violation", sqlstate, error_code)
        elif (sqlstate and sqlstate.startswith("23")) or isinstance(e, asyncmy.errors.IntegrityError):
            self._raise(e, IntegrityError, "integrity constraint violation", sqlstate, error_code)
        elif (sqlstate and sqlstate.startswith("42")) or (error_code is not None and 1064 <= error_code < 1100):
            self._raise(e, SQLParsingError, "SQL syntax error", sqlstate, error_code)
        elif (sqlstate and sqlstate.startswith("08")) or error_code in MYSQL_CONNECTION_CODES:
            self._raise(e, DatabaseConnectionError, "connection error", sqlstate, error_code)
        else:
            self._raise(e, QueryError, "database error", sqlstate, error_code)


class AsyncmyDriver(AsyncDriverAdapterBase):
    """MySQL/MariaDB driver using an asyncmy pool.

    Templates keep their ``?`` placeholders up to this point and are converted
    to asyncmy's ``%s`` style just before execution.
    """

    __slots__ = ()

    dialect = Dialect.MYSQL

    async def _execute_statement(self, connection: "AsyncmyConnection", sql: str, params: "list[Any]") -> Any:
        statement = to_pyformat(sql)
        async with AsyncmyCursor(connection) as cursor:
            # always pass a tuple so asyncmy collapses the doubled %
            await cursor.execute(statement, tuple(params))
            if returns_rows(sql):
                fetched = await cursor.fetchall()
                column_names = [desc[0] for desc in cursor.description or []]
                if fetched and not isinstance(fetched[0], dict):
                    return [dict(zip(column_names, row)) for row in fetched]
                return list(fetched or [])
            affected = cursor.rowcount if cursor.rowcount is not None and cursor.rowcount >= 0 else None
            return ExecutionResult(rows=[], affected_rows=affected)

    def handle_database_exceptions(self) -> "AsyncmyExceptionHandler":
        return AsyncmyExceptionHandler()

    async def commit(self, connection: "AsyncmyConnection") -> None:
        await connection.commit()

    async def rollback(self, connection: "AsyncmyConnection") -> None:
        await connection.rollback()
