"""Asynchronous driver capability interface."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, ClassVar

from querycore.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

    from querycore.config import DatabaseConfigProtocol
    from querycore.core.dialect import Dialect

__all__ = ("AsyncDriverAdapterBase", "PinnedConnectionDriver")

logger = get_logger("driver")


class AsyncDriverAdapterBase(ABC):
    """Executes translated statements against one backend.

    A driver is created once at startup from its adapter configuration and
    shared by every request. Each :meth:`dispatch` borrows its own connection
    from the configuration, so concurrent dispatches never share a connection
    unless the backend only has one.
    """

    __slots__ = ("config",)

    dialect: "ClassVar[Dialect]"

    def __init__(self, config: "DatabaseConfigProtocol[Any, Any, Any]") -> None:
        self.config = config

    async def dispatch(self, sql: str, params: "list[Any]") -> Any:
        """Run one statement and return the backend's answer.

        Backend exceptions are translated by :meth:`handle_database_exceptions`.

        Args:
            sql: Statement text in this driver's placeholder syntax.
            params: Positional parameters.

        Returns:
            Rows, or an :class:`~querycore.core.result.ExecutionResult`.
        """
        async with self.handle_database_exceptions(), self.config.provide_connection() as connection:
            return await self._execute_statement(connection, sql, params)

    async def dispatch_on(self, connection: Any, sql: str, params: "list[Any]") -> Any:
        """Run one statement on a connection the caller already holds."""
        async with self.handle_database_exceptions():
            return await self._execute_statement(connection, sql, params)

    @asynccontextmanager
    async def transaction(self) -> "AsyncIterator[PinnedConnectionDriver]":
        """Hold one connection for a unit of work and commit it on a clean exit.

        The yielded driver sends every statement over the held connection.
        An exception leaving the block rolls the work back and propagates.
        On SQLite the single connection stays locked until the block ends,
        so statements issued outside the yielded driver wait for it.
        """
        async with self.config.provide_connection() as connection:
            async with self.handle_database_exceptions():
                await self.begin(connection)
            try:
                yield PinnedConnectionDriver(self, connection)
            except BaseException:
                logger.debug("Rolling back %s transaction", self.dialect)
                async with self.handle_database_exceptions():
                    await self.rollback(connection)
                raise
            async with self.handle_database_exceptions():
                await self.commit(connection)

    async def begin(self, connection: Any) -> None:
        await self._execute_statement(connection, "BEGIN", [])

    async def commit(self, connection: Any) -> None:
        await self._execute_statement(connection, "COMMIT", [])

    async def rollback(self, connection: Any) -> None:
        await self._execute_statement(connection, "ROLLBACK", [])

    @abstractmethod
    async def _execute_statement(self, connection: Any, sql: str, params: "list[Any]") -> Any:
        """Execute ``sql`` on ``connection``."""

    @abstractmethod
    def handle_database_exceptions(self) -> "AbstractAsyncContextManager[None]":
        """Return a context manager that re-raises backend errors as :class:`~querycore.exceptions.QueryError`."""

    async def close(self) -> None:
        """Release the backend connection pool."""
        logger.debug("Closing %s driver", self.dialect)
        await self.config.close_pool()


class PinnedConnectionDriver:
    """Dispatches statements over one connection held by :meth:`AsyncDriverAdapterBase.transaction`.

    Statements must be awaited one after another; a connection runs one
    statement at a time.
    """

    __slots__ = ("connection", "driver")

    def __init__(self, driver: AsyncDriverAdapterBase, connection: Any) -> None:
        self.driver = driver
        self.connection = connection

    @property
    def dialect(self) -> "Dialect":
        return self.driver.dialect

    async def dispatch(self, sql: str, params: "list[Any]") -> Any:
        return await self.driver.dispatch_on(self.connection, sql, params)
