"""Aiosqlite database configuration."""

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, ClassVar, Final, Optional, TypedDict, Union

import aiosqlite
from typing_extensions import NotRequired

from querycore.adapters.aiosqlite._types import AiosqliteConnection
from querycore.adapters.aiosqlite.driver import AiosqliteDriver
from querycore.config import NoPoolAsyncConfig
from querycore.core.dialect import Dialect
from querycore.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

__all__ = ("AiosqliteConfig", "AiosqliteConnectionParams")

logger = get_logger("adapters.aiosqlite")

FOREIGN_KEYS_SQL: Final[str] = "PRAGMA foreign_keys = ON"
BUSY_TIMEOUT_SQL: Final[str] = "PRAGMA busy_timeout = 5000"


class AiosqliteConnectionParams(TypedDict, total=False):
    """TypedDict for aiosqlite connection parameters."""

    database: NotRequired[str]
    timeout: NotRequired[float]
    detect_types: NotRequired[int]
    isolation_level: NotRequired[Optional[str]]
    cached_statements: NotRequired[int]
    uri: NotRequired[bool]


class AiosqliteConfig(NoPoolAsyncConfig[AiosqliteConnection, AiosqliteDriver]):
    """Database configuration for a single shared aiosqlite connection.

    The connection is opened on first use in autocommit mode and every
    statement holds a lock while it runs, so concurrent dispatches are
    serialized rather than interleaved.
    """

    __slots__ = ("_connection", "_lock")

    driver_type: "ClassVar[type[AiosqliteDriver]]" = AiosqliteDriver
    dialect: "ClassVar[Dialect]" = Dialect.SQLITE

    def __init__(
        self, *, connection_config: "Optional[Union[AiosqliteConnectionParams, dict[str, Any]]]" = None
    ) -> None:
        """Initialize AioSQLite configuration.

        Args:
            connection_config: Connection parameters. ``database`` defaults to ``":memory:"``.
        """
        config: dict[str, Any] = {"database": ":memory:", "isolation_level": None}
        config.update(connection_config or {})
        super().__init__(connection_config=config)
        self._connection: Optional[AiosqliteConnection] = None
        self._lock = asyncio.Lock()

    async def create_connection(self) -> "AiosqliteConnection":
        """Open a new connection with foreign keys enforced.

        Returns:
            An aiosqlite connection instance.
        """
        config = {k: v for k, v in self.connection_config.items() if k != "database"}
        connection = await aiosqlite.connect(self.connection_config["database"], **config)
        await connection.execute(FOREIGN_KEYS_SQL)
        await connection.execute(BUSY_TIMEOUT_SQL)
        return connection

    @asynccontextmanager
    async def provide_connection(self, *args: Any, **kwargs: Any) -> "AsyncGenerator[AiosqliteConnection, None]":
        """Provide the shared connection, holding it for the duration of the block.

        Yields:
            The aiosqlite connection.
        """
        async with self._lock:
            if self._connection is None:
                self._connection = await self.create_connection()
                logger.debug("Opened SQLite connection to %s", self.connection_config["database"])
            yield self._connection

    async def close_pool(self) -> None:
        """Close the shared connection if it was opened."""
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
