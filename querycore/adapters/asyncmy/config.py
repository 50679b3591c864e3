"""Asyncmy database configuration."""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, ClassVar, Optional, TypedDict, Union

import asyncmy
from asyncmy.pool import Pool  # pyright: ignore
from typing_extensions import NotRequired

from querycore.adapters.asyncmy._types import AsyncmyConnection
from querycore.adapters.asyncmy.driver import AsyncmyDriver
from querycore.config import AsyncDatabaseConfig
from querycore.core.dialect import Dialect

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


__all__ = ("AsyncmyConfig", "AsyncmyConnectionConfig", "AsyncmyPoolConfig")


class AsyncmyConnectionConfig(TypedDict, total=False):
    """Asyncmy connection configuration as TypedDict.

    Basic connection parameters for asyncmy.connect().
    """

    host: NotRequired[str]
    """Host where the database server is located."""

    user: NotRequired[str]
    """The username used to authenticate with the database."""

    password: NotRequired[str]
    """The password used to authenticate with the database."""

    database: NotRequired[str]
    """The database name to use."""

    port: NotRequired[int]
    """The TCP/IP port of the MySQL server."""

    unix_socket: NotRequired[str]
    charset: NotRequired[str]
    connect_timeout: NotRequired[float]

    autocommit: NotRequired[bool]
    """If True, autocommit mode will be enabled. Defaults to True here."""

    ssl: NotRequired[Any]
    sql_mode: NotRequired[str]
    init_command: NotRequired[str]


class AsyncmyPoolConfig(AsyncmyConnectionConfig, total=False):
    """Asyncmy pool configuration as TypedDict."""

    minsize: NotRequired[int]
    """Minimum number of connections to keep in the pool."""

    maxsize: NotRequired[int]
    """Maximum number of connections allowed in the pool."""

    echo: NotRequired[bool]
    pool_recycle: NotRequired[int]
    extra: NotRequired[dict[str, Any]]


class AsyncmyConfig(AsyncDatabaseConfig[AsyncmyConnection, "Pool", AsyncmyDriver]):  # pyright: ignore
    """Configuration for Asyncmy database connections using TypedDict."""

    driver_type: "ClassVar[type[AsyncmyDriver]]" = AsyncmyDriver
    dialect: "ClassVar[Dialect]" = Dialect.MYSQL

    def __init__(
        self,
        *,
        pool_config: "Optional[Union[AsyncmyPoolConfig, dict[str, Any]]]" = None,
        pool_instance: "Optional[Pool]" = None,
    ) -> None:
        """Initialize Asyncmy configuration.

        Args:
            pool_config: Asyncmy pool parameters
            pool_instance: Existing pool instance to use
        """
        config: dict[str, Any] = {"autocommit": True}
        config.update(pool_config or {})
        super().__init__(pool_config=config, pool_instance=pool_instance)

    async def _create_pool(self) -> "Pool":  # pyright: ignore
        """Create the actual async connection pool."""
        return await asyncmy.create_pool(**self._get_pool_config_dict())

    async def _close_pool(self) -> None:
        """Close the actual async connection pool."""
        if self.pool_instance:
            self.pool_instance.close()
            await self.pool_instance.wait_closed()

    async def create_connection(self) -> AsyncmyConnection:  # pyright: ignore
        """Create a single async connection (not from pool).

        Returns:
            An Asyncmy connection instance.
        """
        config = self._get_pool_config_dict()
        for key in ("minsize", "maxsize", "echo", "pool_recycle"):
            config.pop(key, None)
        return await asyncmy.connect(**config)

    @asynccontextmanager
    async def provide_connection(self, *args: Any, **kwargs: Any) -> "AsyncGenerator[AsyncmyConnection, None]":  # pyright: ignore
        """Provide an async connection context manager.

        Yields:
            An Asyncmy connection instance.
        """
        pool = await self.provide_pool()
        async with pool.acquire() as connection:
            yield connection
