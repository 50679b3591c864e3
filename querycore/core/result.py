"""Result containers returned by the query layer.

- QueryResult: canonical ``{rows, rowCount}`` shape of one executed statement
- PageEnvelope: one page of rows plus pagination metadata
- ExecutionResult: what a driver hands back before normalization

Both public containers are frozen msgspec Structs, so they can be shared
between concurrent requests through the result cache and encoded to JSON
(with camelCase field names) without conversion. The row dicts inside a
cached result are shared too; results handed to callers carry copies.
"""

import math
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple, Optional

import msgspec

from querycore.exceptions import QueryError
from querycore.typing import Row

__all__ = ("ExecutionResult", "PageEnvelope", "QueryResult", "normalize_result")

_ROW_COUNT_KEYS = ("rowCount", "row_count", "affected_rows", "rowcount")


class ExecutionResult(NamedTuple):
    """Raw outcome of a driver dispatch.

    ``affected_rows`` is set only when the backend reports an authoritative
    count for a mutation.
    """

    rows: "list[Row]"
    affected_rows: Optional[int] = None


class QueryResult(msgspec.Struct, frozen=True, rename="camel"):
    """Rows returned by one statement and the number of rows it produced or affected."""

    rows: "list[Row]"
    row_count: int

    def copy(self) -> "QueryResult":
        """Return a result holding copies of the row dicts."""
        return QueryResult(rows=[dict(row) for row in self.rows], row_count=self.row_count)

    def first(self) -> "Optional[Row]":
        """Return the first row, or ``None`` when the result is empty."""
        return self.rows[0] if self.rows else None

    def __len__(self) -> int:
        return len(self.rows)


class PageEnvelope(msgspec.Struct, frozen=True, rename="camel"):
    """One page of a paginated read."""

    items: "list[Row]"
    total: int
    page: int
    limit: int
    has_more: bool

    @classmethod
    def build(cls, items: "Sequence[Row]", total: int, page: int, limit: int) -> "PageEnvelope":
        """Assemble an envelope, deriving ``has_more`` from ``page * limit < total``.

        Each row is copied, so changing an item never reaches the cached rows it came from.
        """
        return cls(
            items=[dict(row) for row in items], total=total, page=page, limit=limit, has_more=page * limit < total
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_previous(self) -> bool:
        return self.page > 1


def _coerce_rows(rows: Any) -> "list[Row]":
    return [row if isinstance(row, dict) else dict(row) for row in rows]


def normalize_result(raw: Any) -> QueryResult:
    """Wrap a driver's result in the canonical :class:`QueryResult` shape.

    Drivers answer in different shapes: a bare sequence of rows, a mapping or
    object carrying ``rows`` (and sometimes a row count), or an
    :class:`ExecutionResult`. ``row_count`` is the number of rows unless the
    backend reported an affected-row count for a mutation.

    Args:
        raw: The driver result.

    Raises:
        QueryError: If the shape is not recognized.

    Returns:
        The normalized result.
    """
    if isinstance(raw, QueryResult):
        return raw
    if isinstance(raw, ExecutionResult):
        rows = _coerce_rows(raw.rows)
        affected = raw.affected_rows
    elif raw is None:
        rows, affected = [], None
    elif isinstance(raw, Mapping):
        rows = _coerce_rows(raw.get("rows") or [])
        affected = next((raw[key] for key in _ROW_COUNT_KEYS if raw.get(key) is not None), None)
    elif isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        rows, affected = _coerce_rows(raw), None
    elif hasattr(raw, "rows"):
        rows = _coerce_rows(raw.rows or [])
        affected = next(
            (getattr(raw, key) for key in _ROW_COUNT_KEYS if getattr(raw, key, None) is not None),
            None,
        )
    else:
        msg = f"Unrecognized driver result of type {type(raw).__name__}"
        raise QueryError(msg)

    row_count = int(affected) if affected is not None and affected >= 0 else len(rows)
    return QueryResult(rows=rows, row_count=row_count)
