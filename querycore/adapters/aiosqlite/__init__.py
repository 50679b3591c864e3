"""Aiosqlite adapter for querycore."""

from querycore.adapters.aiosqlite._types import AiosqliteConnection
from querycore.adapters.aiosqlite.config import AiosqliteConfig, AiosqliteConnectionParams
from querycore.adapters.aiosqlite.driver import AiosqliteCursor, AiosqliteDriver, coerce_parameter

__all__ = (
    "AiosqliteConfig",
    "AiosqliteConnection",
    "AiosqliteConnectionParams",
    "AiosqliteCursor",
    "AiosqliteDriver",
    "coerce_parameter",
)
