"""Shared type aliases."""

from collections.abc import Sequence
from typing import Any

from typing_extensions import TypeAlias

__all__ = ("ParameterList", "Row", "RowList")

Row: TypeAlias = dict[str, Any]
"""A result row as returned by a driver: column name to scalar value."""

RowList: TypeAlias = list[Row]

ParameterList: TypeAlias = Sequence[Any]
"""Positional parameters bound, in order, to the ``?`` placeholders of a query template."""
