"""AsyncPG database configuration with direct field-based configuration."""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, ClassVar, Optional, TypedDict, Union

from asyncpg import Record
from asyncpg import create_pool as asyncpg_create_pool
from asyncpg.pool import Pool
from typing_extensions import NotRequired

from querycore.adapters.asyncpg._types import AsyncpgConnection
from querycore.adapters.asyncpg.driver import AsyncpgDriver
from querycore.config import AsyncDatabaseConfig
from querycore.core.dialect import Dialect

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable


__all__ = ("AsyncpgConfig", "AsyncpgConnectionConfig", "AsyncpgPoolConfig")


class AsyncpgConnectionConfig(TypedDict, total=False):
    """TypedDict for AsyncPG connection parameters."""

    dsn: NotRequired[str]
    host: NotRequired[str]
    port: NotRequired[int]
    user: NotRequired[str]
    password: NotRequired[str]
    database: NotRequired[str]
    ssl: NotRequired[Any]
    connect_timeout: NotRequired[float]
    command_timeout: NotRequired[float]
    statement_cache_size: NotRequired[int]
    server_settings: NotRequired[dict[str, str]]


class AsyncpgPoolConfig(AsyncpgConnectionConfig, total=False):
    """TypedDict for AsyncPG pool parameters, inheriting connection parameters."""

    min_size: NotRequired[int]
    max_size: NotRequired[int]
    max_queries: NotRequired[int]
    max_inactive_connection_lifetime: NotRequired[float]
    setup: NotRequired["Callable[[AsyncpgConnection], Awaitable[None]]"]
    init: NotRequired["Callable[[AsyncpgConnection], Awaitable[None]]"]
    extra: NotRequired[dict[str, Any]]


class AsyncpgConfig(AsyncDatabaseConfig[AsyncpgConnection, "Pool[Record]", AsyncpgDriver]):
    """Configuration for AsyncPG database connections using TypedDict."""

    driver_type: "ClassVar[type[AsyncpgDriver]]" = AsyncpgDriver
    dialect: "ClassVar[Dialect]" = Dialect.POSTGRES

    def __init__(
        self,
        *,
        pool_config: "Optional[Union[AsyncpgPoolConfig, dict[str, Any]]]" = None,
        pool_instance: "Optional[Pool[Record]]" = None,
    ) -> None:
        """Initialize AsyncPG configuration.

        Args:
            pool_config: Pool configuration parameters (TypedDict or dict)
            pool_instance: Existing pool instance to use
        """
        super().__init__(pool_config=dict(pool_config) if pool_config else None, pool_instance=pool_instance)

    async def _create_pool(self) -> "Pool[Record]":
        """Create the actual async connection pool."""
        return await asyncpg_create_pool(**self._get_pool_config_dict())

    async def _close_pool(self) -> None:
        """Close the actual async connection pool."""
        if self.pool_instance:
            await self.pool_instance.close()

    async def create_connection(self) -> "AsyncpgConnection":
        """Acquire a connection from the pool. The caller must release it.

        Returns:
            An AsyncPG connection instance.
        """
        pool = await self.provide_pool()
        return await pool.acquire()

    @asynccontextmanager
    async def provide_connection(self, *args: Any, **kwargs: Any) -> "AsyncGenerator[AsyncpgConnection, None]":
        """Provide an async connection context manager.

        Yields:
            An AsyncPG connection instance.
        """
        pool = await self.provide_pool()
        connection = None
        try:
            connection = await pool.acquire()
            yield connection
        finally:
            if connection is not None:
                await pool.release(connection)
