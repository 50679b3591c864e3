"""Asyncmy adapter for querycore."""

from querycore.adapters.asyncmy._types import AsyncmyConnection
from querycore.adapters.asyncmy.config import AsyncmyConfig, AsyncmyConnectionConfig, AsyncmyPoolConfig
from querycore.adapters.asyncmy.driver import AsyncmyCursor, AsyncmyDriver, AsyncmyExceptionHandler

__all__ = (
    "AsyncmyConfig",
    "AsyncmyConnection",
    "AsyncmyConnectionConfig",
    "AsyncmyCursor",
    "AsyncmyDriver",
    "AsyncmyExceptionHandler",
    "AsyncmyPoolConfig",
)
