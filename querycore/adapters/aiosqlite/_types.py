from typing import TYPE_CHECKING

from aiosqlite import Connection

if TYPE_CHECKING:
    from typing import TypeAlias

    AiosqliteConnection: TypeAlias = Connection
else:
    AiosqliteConnection = Connection

__all__ = ("AiosqliteConnection",)
