"""Per-call query options.

:class:`QueryOptions` is what callers hand to the cached read and pagination
entry points. Constructing it directly performs no clamping, so the paginator
can reject invalid values loudly. :meth:`QueryOptions.parse` is the
caller-facing schema used on raw request input: it accepts the camelCase wire
names, coerces strings and clamps ``limit`` and ``page`` into range.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any, Final, Optional

import msgspec

from querycore.exceptions import InvalidPaginationError

__all__ = (
    "DEFAULT_CACHE_TTL_MILLIS",
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    "QueryOptions",
    "SortOrder",
)

DEFAULT_CACHE_TTL_MILLIS: Final = 300_000
DEFAULT_LIMIT: Final = 20
MAX_LIMIT: Final = 100


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"

    def __str__(self) -> str:
        return self.value

    @property
    def sql(self) -> str:
        return self.value.upper()

    @classmethod
    def from_value(cls, value: "str | SortOrder") -> "SortOrder":
        if isinstance(value, SortOrder):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            msg = f"Invalid sort order: {value!r} (expected 'asc' or 'desc')"
            raise InvalidPaginationError(msg) from None


class QueryOptions(msgspec.Struct, frozen=True, kw_only=True):
    """Options recognized by cached reads and pagination.

    ``use_cache``, ``cache_ttl_millis``, ``cache_namespace`` and ``timeout``
    control how a result is obtained and never change the result itself, so
    they are left out of cache keys.
    """

    use_cache: bool = msgspec.field(default=True, name="useCache")
    cache_ttl_millis: int = msgspec.field(default=DEFAULT_CACHE_TTL_MILLIS, name="cacheTTLMillis")
    page: int = 1
    limit: int = DEFAULT_LIMIT
    sort_by: Optional[str] = msgspec.field(default=None, name="sortBy")
    sort_order: SortOrder = msgspec.field(default=SortOrder.DESC, name="sortOrder")
    cache_namespace: Optional[str] = msgspec.field(default=None, name="cacheNamespace")
    timeout: Optional[float] = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def replace(self, **changes: Any) -> "QueryOptions":
        """Return a copy with ``changes`` applied."""
        return msgspec.structs.replace(self, **changes)

    def cache_fields(self) -> "dict[str, Any]":
        """Fields that identify the result, for cache fingerprints."""
        return {
            "page": self.page,
            "limit": self.limit,
            "sort_by": self.sort_by,
            "sort_order": self.sort_order.value,
        }

    @classmethod
    def parse(
        cls,
        raw: "Optional[Mapping[str, Any]]" = None,
        *,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
        default_ttl_millis: int = DEFAULT_CACHE_TTL_MILLIS,
    ) -> "QueryOptions":
        """Build options from untrusted request input.

        String values (as found in query strings) are coerced, ``limit`` is
        clamped into ``[1, max_limit]`` and ``page`` to at least 1.

        Args:
            raw: Request values keyed by their camelCase wire names.
            default_limit: Limit used when the input has none.
            max_limit: Largest limit a caller may request.
            default_ttl_millis: Cache TTL used when the input has none.

        Raises:
            InvalidPaginationError: If a value cannot be coerced.

        Returns:
            Validated options.
        """
        values: dict[str, Any] = {"limit": default_limit, "cacheTTLMillis": default_ttl_millis}
        for key, value in (raw or {}).items():
            if value is None or value == "":
                continue
            values[key] = value.lower() if key == "sortOrder" and isinstance(value, str) else value
        try:
            options = msgspec.convert(values, cls, strict=False)
        except msgspec.ValidationError as exc:
            msg = f"Invalid query options: {exc}"
            raise InvalidPaginationError(msg) from exc
        return options.replace(
            limit=min(max(options.limit, 1), max_limit),
            page=max(options.page, 1),
        )
