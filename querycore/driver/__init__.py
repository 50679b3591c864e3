"""Driver protocols and base classes for database adapters."""

from querycore.driver._async import AsyncDriverAdapterBase, PinnedConnectionDriver
from querycore.driver._common import returns_rows

__all__ = ("AsyncDriverAdapterBase", "PinnedConnectionDriver", "returns_rows")
