import contextlib
import datetime
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

import aiosqlite

from querycore.core.dialect import Dialect
from querycore.core.result import ExecutionResult
from querycore.driver import AsyncDriverAdapterBase, returns_rows
from querycore.exceptions import (
    ForeignKeyViolationError,
    IntegrityError,
    NotNullViolationError,
    QueryError,
    SQLParsingError,
    UniqueViolationError,
)
from querycore.utils.serializers import to_json

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from querycore.adapters.aiosqlite._types import AiosqliteConnection

__all__ = ("AiosqliteCursor", "AiosqliteDriver", "coerce_parameter")


def coerce_parameter(value: Any) -> Any:
    """Convert a bound value into one sqlite3 stores natively."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return to_json(list(value) if isinstance(value, tuple) else value)
    return value


class AiosqliteCursor:
    """Async context manager for AIOSQLite cursor management."""

    __slots__ = ("connection", "cursor")

    def __init__(self, connection: "AiosqliteConnection") -> None:
        self.connection = connection
        self.cursor: Optional[aiosqlite.Cursor] = None

    async def __aenter__(self) -> "aiosqlite.Cursor":
        self.cursor = await self.connection.cursor()
        return self.cursor

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.cursor is not None:
            with contextlib.suppress(aiosqlite.Error):
                await self.cursor.close()


class AiosqliteDriver(AsyncDriverAdapterBase):
    """SQLite driver over a single aiosqlite connection.

    Statements run one at a time; the configuration serializes access to the
    connection.
    """

    __slots__ = ()

    dialect = Dialect.SQLITE

    async def _execute_statement(self, connection: "AiosqliteConnection", sql: str, params: "list[Any]") -> Any:
        async with AiosqliteCursor(connection) as cursor:
            await cursor.execute(sql, [coerce_parameter(value) for value in params])
            if returns_rows(sql):
                fetched = await cursor.fetchall()
                column_names = [desc[0] for desc in cursor.description or []]
                return [dict(zip(column_names, row)) for row in fetched]
            affected = cursor.rowcount if cursor.rowcount >= 0 else None
            return ExecutionResult(rows=[], affected_rows=affected)

    @asynccontextmanager
    async def handle_database_exceptions(self) -> "AsyncGenerator[None, None]":
        """Handle AIOSQLite-specific exceptions with error categorization."""
        try:
            yield
        except aiosqlite.IntegrityError as e:
            error_msg = str(e).lower()
            if "unique" in error_msg or "primary key" in error_msg:
                msg = f"SQLite unique constraint violation: {e}"
                raise UniqueViolationError(msg) from e
            if "foreign key" in error_msg:
                msg = f"SQLite foreign key constraint violation: {e}"
                raise ForeignKeyViolationError(msg) from e
            if "not null" in error_msg:
                msg = f"SQLite not-null constraint violation: {e}"
                raise NotNullViolationError(msg) from e
            msg = f"SQLite integrity constraint violation: {e}"
            raise IntegrityError(msg) from e
        except aiosqlite.OperationalError as e:
            error_msg = str(e).lower()
            if "syntax" in error_msg or "malformed" in error_msg or "no such" in error_msg:
                msg = f"SQLite SQL syntax error: {e}"
                raise SQLParsingError(msg) from e
            msg = f"SQLite operational error: {e}"
            raise QueryError(msg) from e
        except aiosqlite.Error as e:
            msg = f"SQLite database error: {e}"
            raise QueryError(msg) from e
