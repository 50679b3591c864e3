"""AsyncPG adapter for querycore."""

from querycore.adapters.asyncpg._types import AsyncpgConnection
from querycore.adapters.asyncpg.config import AsyncpgConfig, AsyncpgConnectionConfig, AsyncpgPoolConfig
from querycore.adapters.asyncpg.driver import AsyncpgDriver, AsyncpgExceptionHandler

__all__ = (
    "AsyncpgConfig",
    "AsyncpgConnection",
    "AsyncpgConnectionConfig",
    "AsyncpgDriver",
    "AsyncpgExceptionHandler",
    "AsyncpgPoolConfig",
)
