import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Optional, TypeVar, Union
from urllib.parse import parse_qsl, unquote, urlsplit

from querycore.core.options import DEFAULT_CACHE_TTL_MILLIS, DEFAULT_LIMIT, MAX_LIMIT
from querycore.exceptions import ImproperConfigurationError, MissingDependencyError
from querycore.utils.logging import get_logger

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager

    from querycore.core.dialect import Dialect
    from querycore.driver import AsyncDriverAdapterBase


__all__ = (
    "AsyncConfigT",
    "AsyncDatabaseConfig",
    "CacheConfig",
    "DatabaseConfigProtocol",
    "DriverT",
    "NoPoolAsyncConfig",
    "config_from_url",
)

AsyncConfigT = TypeVar("AsyncConfigT", bound="Union[AsyncDatabaseConfig[Any, Any, Any], NoPoolAsyncConfig[Any, Any]]")

ConnectionT = TypeVar("ConnectionT")
PoolT = TypeVar("PoolT")
DriverT = TypeVar("DriverT", bound="AsyncDriverAdapterBase")

logger = get_logger("config")


class CacheConfig:
    """Result cache and pagination defaults for a :class:`~querycore.service.QueryService`."""

    __slots__ = ("default_limit", "default_ttl_millis", "enabled", "max_limit")

    def __init__(
        self,
        *,
        enabled: bool = True,
        default_ttl_millis: int = DEFAULT_CACHE_TTL_MILLIS,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ) -> None:
        """Initialize cache configuration.

        Args:
            enabled: Cache reads unless a call opts out. When False, no call is cached.
            default_ttl_millis: TTL for cached results when a call does not give one.
            default_limit: Page size when a request does not give one.
            max_limit: Largest page size a request may ask for.
        """
        if default_ttl_millis <= 0:
            msg = f"default_ttl_millis must be positive, got {default_ttl_millis}"
            raise ImproperConfigurationError(msg)
        if not 1 <= default_limit <= max_limit:
            msg = f"default_limit must be between 1 and max_limit ({max_limit}), got {default_limit}"
            raise ImproperConfigurationError(msg)
        self.enabled = enabled
        self.default_ttl_millis = default_ttl_millis
        self.default_limit = default_limit
        self.max_limit = max_limit

    def __repr__(self) -> str:
        return (
            f"CacheConfig(enabled={self.enabled!r}, default_ttl_millis={self.default_ttl_millis!r}, "
            f"default_limit={self.default_limit!r}, max_limit={self.max_limit!r})"
        )


class DatabaseConfigProtocol(ABC, Generic[ConnectionT, PoolT, DriverT]):
    """Protocol defining the interface for database configurations."""

    __slots__ = ("connection_config", "pool_config", "pool_instance")
    driver_type: "ClassVar[type[Any]]"
    dialect: "ClassVar[Dialect]"
    is_async: "ClassVar[bool]" = True
    supports_connection_pooling: "ClassVar[bool]" = False

    def __hash__(self) -> int:
        return id(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self.pool_instance == other.pool_instance and self.pool_config == other.pool_config

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dialect={self.dialect!r}, pool_instance={self.pool_instance!r})"

    @abstractmethod
    async def create_connection(self) -> ConnectionT:
        """Create and return a new database connection."""
        raise NotImplementedError

    @abstractmethod
    def provide_connection(self, *args: Any, **kwargs: Any) -> "AbstractAsyncContextManager[ConnectionT]":
        """Provide a database connection context manager."""
        raise NotImplementedError

    @abstractmethod
    async def create_pool(self) -> PoolT:
        """Create and return connection pool."""
        raise NotImplementedError

    @abstractmethod
    async def close_pool(self) -> None:
        """Terminate the connection pool."""
        raise NotImplementedError

    def create_driver(self) -> DriverT:
        """Create the driver that executes statements through this configuration."""
        return self.driver_type(self)  # type: ignore[no-any-return]


class NoPoolAsyncConfig(DatabaseConfigProtocol[ConnectionT, None, DriverT]):
    """Base class for an async database configurations that do not implement a pool."""

    __slots__ = ()

    supports_connection_pooling: "ClassVar[bool]" = False

    def __init__(self, *, connection_config: "Optional[dict[str, Any]]" = None) -> None:
        self.pool_instance = None
        self.pool_config: dict[str, Any] = {}
        self.connection_config: dict[str, Any] = dict(connection_config) if connection_config else {}

    async def create_pool(self) -> None:
        return None

    async def close_pool(self) -> None:
        return None


class AsyncDatabaseConfig(DatabaseConfigProtocol[ConnectionT, PoolT, DriverT]):
    """Generic Async Database Configuration.

    The pool is created lazily on first use. Concurrent first uses wait for a
    single creation.
    """

    __slots__ = ("_pool_lock",)

    supports_connection_pooling: "ClassVar[bool]" = True

    def __init__(
        self, *, pool_config: "Optional[dict[str, Any]]" = None, pool_instance: "Optional[PoolT]" = None
    ) -> None:
        self.pool_instance = pool_instance
        self.pool_config: dict[str, Any] = dict(pool_config) if pool_config else {}
        self.connection_config: dict[str, Any] = {}
        self._pool_lock = asyncio.Lock()

    def _get_pool_config_dict(self) -> "dict[str, Any]":
        """Get pool configuration as plain dict for external library.

        Returns:
            Dictionary with pool parameters, filtering out None values.
        """
        config: dict[str, Any] = dict(self.pool_config)
        extras = config.pop("extra", {})
        config.update(extras)
        return {k: v for k, v in config.items() if v is not None}

    async def create_pool(self) -> PoolT:
        """Create the pool, or return the one already created.

        Returns:
            The created pool.
        """
        if self.pool_instance is not None:
            return self.pool_instance
        async with self._pool_lock:
            if self.pool_instance is None:
                self.pool_instance = await self._create_pool()
                logger.debug("Created %s connection pool", self.dialect)
        return self.pool_instance

    async def close_pool(self) -> None:
        """Close the pool if one was created."""
        if self.pool_instance is None:
            return
        await self._close_pool()
        self.pool_instance = None

    async def provide_pool(self) -> PoolT:
        """Provide pool instance."""
        if self.pool_instance is None:
            return await self.create_pool()
        return self.pool_instance

    async def create_connection(self) -> ConnectionT:
        raise NotImplementedError

    @abstractmethod
    async def _create_pool(self) -> PoolT:
        """Actual async pool creation implementation."""
        raise NotImplementedError

    @abstractmethod
    async def _close_pool(self) -> None:
        """Actual async pool destruction implementation."""
        raise NotImplementedError


_POSTGRES_SCHEMES = frozenset({"postgres", "postgresql", "postgresql+asyncpg", "asyncpg"})
_MYSQL_SCHEMES = frozenset({"mysql", "mysql+asyncmy", "mariadb", "asyncmy"})
_SQLITE_SCHEMES = frozenset({"sqlite", "sqlite+aiosqlite", "aiosqlite"})


def _mysql_pool_config(url: str) -> "dict[str, Any]":
    parts = urlsplit(url)
    config: dict[str, Any] = {
        "host": parts.hostname or "localhost",
        "port": parts.port or 3306,
        "user": unquote(parts.username) if parts.username else None,
        "password": unquote(parts.password) if parts.password else None,
        "database": parts.path.lstrip("/") or None,
    }
    config.update(parse_qsl(parts.query))
    return config


def _sqlite_database(url: str) -> str:
    # sqlite:///relative.db, sqlite:////absolute.db, sqlite:///:memory:, sqlite://
    remainder = url.split("://", 1)[1]
    if not remainder or remainder == "/":
        return ":memory:"
    return remainder[1:] if remainder.startswith("/") else remainder


def config_from_url(url: str, **pool_options: Any) -> "DatabaseConfigProtocol[Any, Any, Any]":
    """Build the adapter configuration for a database URL.

    Supported schemes are ``postgresql://`` (asyncpg), ``mysql://`` (asyncmy)
    and ``sqlite:///`` (aiosqlite).

    Args:
        url: Database URL.
        **pool_options: Extra pool or connection parameters for the adapter.

    Raises:
        ImproperConfigurationError: If the scheme is not supported.
        MissingDependencyError: If the adapter's driver library is not installed.

    Returns:
        The adapter configuration.
    """
    scheme = url.split("://", 1)[0].lower() if "://" in url else ""
    try:
        if scheme in _POSTGRES_SCHEMES:
            from querycore.adapters.asyncpg import AsyncpgConfig

            dsn = "postgresql://" + url.split("://", 1)[1]
            return AsyncpgConfig(pool_config={"dsn": dsn, **pool_options})
        if scheme in _MYSQL_SCHEMES:
            from querycore.adapters.asyncmy import AsyncmyConfig

            return AsyncmyConfig(pool_config={**_mysql_pool_config(url), **pool_options})
        if scheme in _SQLITE_SCHEMES:
            from querycore.adapters.aiosqlite import AiosqliteConfig

            return AiosqliteConfig(connection_config={"database": _sqlite_database(url), **pool_options})
    except ModuleNotFoundError as exc:
        package = exc.name.split(".", 1)[0] if exc.name else scheme
        raise MissingDependencyError(package) from exc

    msg = f"Unsupported database URL scheme: {scheme or url!r}"
    raise ImproperConfigurationError(msg)
