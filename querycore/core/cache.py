"""Result cache with time-based expiry, prefix invalidation and table tags.

Components:
- compute_key: deterministic fingerprint of a query, its parameters and the
  option fields that affect its result
- ResultCache: process-wide store of cached values with per-entry TTL
- CacheStats: hit/miss/set/delete/expiry counters

Entries may be tagged with the tables they were read from, so a write to any
of those tables can drop them with :meth:`ResultCache.invalidate_tables`.
A cache is constructed explicitly (usually once per process) and handed to
the components that need it; tests create a fresh instance each time.
Expired entries are dropped lazily when read, or in bulk by
:meth:`ResultCache.purge_expired`. There is no size-based eviction.
"""

import asyncio
import hashlib
import threading
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any, Final, Optional, TypeVar, Union

from mypy_extensions import mypyc_attr

from querycore.utils.logging import get_logger
from querycore.utils.serializers import fingerprint_bytes

if TYPE_CHECKING:
    from querycore.core.options import QueryOptions
    from querycore.typing import ParameterList

__all__ = (
    "ANY_TABLE",
    "DEFAULT_NAMESPACE",
    "DEFAULT_TTL_MILLIS",
    "MISS",
    "CacheEntry",
    "CacheStats",
    "ResultCache",
    "compute_key",
)

T = TypeVar("T")

DEFAULT_TTL_MILLIS: Final = 300_000
DEFAULT_NAMESPACE: Final = "query"
KEY_SEPARATOR: Final = ":"
ANY_TABLE: Final = "*"
_RELEVANT_OPTION_FIELDS: Final = ("page", "limit", "sort_by", "sort_order")
_OPTION_ALIASES: Final = {"sortBy": "sort_by", "sortOrder": "sort_order"}

CACHE_ENTRY_SLOTS: Final = ("created_at", "expires_at", "hits", "key", "tables", "value")
CACHE_STATS_SLOTS: Final = ("deletes", "expirations", "hits", "misses", "sets", "size")
RESULT_CACHE_SLOTS: Final = ("_clock", "_default_ttl_millis", "_entries", "_inflight", "_lock", "_stats")

logger = get_logger("core.cache")


class _Miss:
    """Sentinel returned by :meth:`ResultCache.get` when nothing usable is cached."""

    __slots__ = ()

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS: Final = _Miss()


def _option_fields(options: "Union[QueryOptions, Mapping[str, Any], None]") -> "dict[str, Any]":
    if options is None:
        return {}
    if isinstance(options, Mapping):
        normalized = {_OPTION_ALIASES.get(key, key): value for key, value in options.items()}
        fields = {name: normalized[name] for name in _RELEVANT_OPTION_FIELDS if name in normalized}
    else:
        fields = options.cache_fields()
    if fields.get("sort_order") is not None:
        fields["sort_order"] = str(fields["sort_order"]).lower()
    return fields


def compute_key(
    sql: str,
    params: "ParameterList" = (),
    options: "Union[QueryOptions, Mapping[str, Any], None]" = None,
    namespace: Optional[str] = None,
) -> str:
    """Fingerprint a query for use as a cache key.

    Identical SQL text, parameter values (in order) and relevant option fields
    always give the same key; any difference gives a different key. Only
    ``page``, ``limit``, ``sort_by`` and ``sort_order`` are taken from
    ``options``; fields like ``use_cache`` do not change the result and are
    ignored.

    Args:
        sql: Query text.
        params: Positional parameters.
        options: :class:`QueryOptions` or a mapping of option values.
        namespace: Key prefix grouping related entries for invalidation.

    Returns:
        ``"<namespace>:<sha256 hex digest>"``
    """
    payload = fingerprint_bytes([sql, list(params), _option_fields(options)])
    digest = hashlib.sha256(payload).hexdigest()
    return f"{namespace or DEFAULT_NAMESPACE}{KEY_SEPARATOR}{digest}"


@mypyc_attr(allow_interpreted_subclasses=False)
class CacheEntry:
    """A cached value and the instant after which it is stale."""

    __slots__ = CACHE_ENTRY_SLOTS

    def __init__(
        self, key: str, value: Any, created_at: float, expires_at: float, tables: "frozenset[str]" = frozenset()
    ) -> None:
        self.key = key
        self.value = value
        self.created_at = created_at
        self.expires_at = expires_at
        self.tables = tables
        self.hits = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def depends_on(self, tables: "frozenset[str]") -> bool:
        return ANY_TABLE in self.tables or not self.tables.isdisjoint(tables)


def _table_tags(tables: "Optional[Iterable[str]]") -> "frozenset[str]":
    if tables is None:
        return frozenset({ANY_TABLE})
    return frozenset(table.lower() for table in tables)


class _Flight:
    """One in-progress computation shared by every caller missing on a key."""

    __slots__ = ("task", "waiters")

    def __init__(self) -> None:
        self.task: Optional[asyncio.Task[Any]] = None
        self.waiters = 0


@mypyc_attr(allow_interpreted_subclasses=False)
class CacheStats:
    """Cache statistics tracking."""

    __slots__ = CACHE_STATS_SLOTS

    def __init__(self) -> None:
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.deletes = 0
        self.expirations = 0
        self.size = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups that were hits, between 0 and 1."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def copy(self) -> "CacheStats":
        snapshot = CacheStats()
        for name in CACHE_STATS_SLOTS:
            setattr(snapshot, name, getattr(self, name))
        return snapshot

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.deletes = 0
        self.expirations = 0

    def as_dict(self) -> "dict[str, Any]":
        data: dict[str, Any] = {name: getattr(self, name) for name in CACHE_STATS_SLOTS}
        data["hit_rate"] = self.hit_rate
        return data

    def __repr__(self) -> str:
        return (
            f"CacheStats(hit_rate={self.hit_rate:.1%}, hits={self.hits}, misses={self.misses}, "
            f"sets={self.sets}, deletes={self.deletes}, expirations={self.expirations}, size={self.size})"
        )


@mypyc_attr(allow_interpreted_subclasses=False)
class ResultCache:
    """Process-wide key to value store with per-entry expiry.

    All operations take an internal re-entrant lock, and values are stored and
    returned whole, so a read racing a write for the same key sees either the
    old or the new value.

    Args:
        default_ttl_millis: TTL used when :meth:`put` is called without one.
        clock: Monotonic time source in seconds. Tests pass a fake clock.
    """

    __slots__ = RESULT_CACHE_SLOTS

    def __init__(
        self, default_ttl_millis: int = DEFAULT_TTL_MILLIS, clock: "Callable[[], float]" = time.monotonic
    ) -> None:
        if default_ttl_millis <= 0:
            msg = f"default_ttl_millis must be positive, got {default_ttl_millis}"
            raise ValueError(msg)
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, _Flight] = {}
        self._lock = threading.RLock()
        self._stats = CacheStats()
        self._clock = clock
        self._default_ttl_millis = default_ttl_millis

    compute_key = staticmethod(compute_key)

    @property
    def default_ttl_millis(self) -> int:
        return self._default_ttl_millis

    def get(self, key: str) -> Any:
        """Return the cached value for ``key``, or :data:`MISS`.

        An entry whose expiry instant has passed is removed and reported as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return MISS
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                self._stats.size = len(self._entries)
                return MISS
            entry.hits += 1
            self._stats.hits += 1
            return entry.value

    def put(
        self, key: str, value: Any, ttl_millis: Optional[int] = None, tables: "Optional[Iterable[str]]" = ()
    ) -> None:
        """Store ``value`` under ``key`` for ``ttl_millis``, replacing any existing entry.

        Args:
            key: Cache key.
            value: Value to store. It is returned as is to later readers.
            ttl_millis: Lifetime in milliseconds. The cache default when omitted.
            tables: Tables the value was read from. ``None`` means they are
                unknown, and the entry is dropped by every table invalidation.

        Raises:
            ValueError: If ``ttl_millis`` is not positive.
        """
        ttl = self._default_ttl_millis if ttl_millis is None else ttl_millis
        if ttl <= 0:
            msg = f"ttl_millis must be positive, got {ttl}"
            raise ValueError(msg)
        tags = _table_tags(tables)
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(key, value, created_at=now, expires_at=now + ttl / 1000, tables=tags)
            self._stats.sets += 1
            self._stats.size = len(self._entries)

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns whether an entry was removed."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._stats.deletes += 1
                self._stats.size = len(self._entries)
            return removed

    def has(self, key: str) -> bool:
        """Whether a live entry exists for ``key``. Does not count as a lookup."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            self._stats.deletes += len(doomed)
            self._stats.size = len(self._entries)
        if doomed:
            logger.debug("Invalidated %d cache entries with prefix %r", len(doomed), prefix)
        return len(doomed)

    def invalidate_namespace(self, namespace: str) -> int:
        """Remove every entry stored under ``namespace``."""
        return self.invalidate_prefix(f"{namespace}{KEY_SEPARATOR}")

    def invalidate_tables(self, tables: "Iterable[str]") -> int:
        """Remove every entry read from any of ``tables``, whatever its namespace.

        Entries whose tables are unknown are removed as well.

        Returns:
            Number of entries removed.
        """
        names = _table_tags(tables)
        if not names:
            return 0
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if entry.depends_on(names)]
            for key in doomed:
                del self._entries[key]
            self._stats.deletes += len(doomed)
            self._stats.size = len(self._entries)
        if doomed:
            logger.debug("Invalidated %d cache entries reading from %s", len(doomed), ", ".join(sorted(names)))
        return len(doomed)

    def purge_expired(self) -> int:
        """Drop all expired entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats.expirations += len(expired)
            self._stats.size = len(self._entries)
        if expired:
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._stats.reset()
            self._stats.size = 0

    async def get_or_compute(
        self,
        key: str,
        factory: "Callable[[], Awaitable[T]]",
        ttl_millis: Optional[int] = None,
        tables: "Optional[Iterable[str]]" = (),
    ) -> T:
        """Return the cached value for ``key``, computing and storing it on a miss.

        Concurrent callers missing on the same key share one ``factory`` call,
        which runs in its own task. A caller that is cancelled stops waiting
        without disturbing the others; the call itself is cancelled only once
        every caller has given up. A failing factory stores nothing and its
        exception reaches every waiter.

        Args:
            key: Cache key.
            factory: Coroutine function producing the value.
            ttl_millis: TTL for the stored value.
            tables: Tables the value is read from. See :meth:`put`.

        Returns:
            The cached or freshly computed value.
        """
        value = self.get(key)
        if value is not MISS:
            return value  # type: ignore[no-any-return]

        with self._lock:
            flight = self._inflight.get(key)
            if flight is None:
                flight = _Flight()
                flight.task = asyncio.ensure_future(self._fill(key, flight, factory, ttl_millis, tables))
                self._inflight[key] = flight
            flight.waiters += 1
            task = flight.task
        assert task is not None

        try:
            return await asyncio.shield(task)  # type: ignore[no-any-return]
        finally:
            with self._lock:
                flight.waiters -= 1
                if flight.waiters == 0 and not task.done():
                    logger.debug("Abandoning computation for %s", key)
                    task.cancel()
                    if self._inflight.get(key) is flight:
                        del self._inflight[key]

    async def _fill(
        self,
        key: str,
        flight: _Flight,
        factory: "Callable[[], Awaitable[Any]]",
        ttl_millis: Optional[int],
        tables: "Optional[Iterable[str]]",
    ) -> Any:
        try:
            result = await factory()
            self.put(key, result, ttl_millis, tables)
            return result
        finally:
            with self._lock:
                if self._inflight.get(key) is flight:
                    del self._inflight[key]

    async def warmup(
        self, entries: "Iterable[tuple[str, Callable[[], Awaitable[Any]], Optional[int]]]"
    ) -> "dict[str, Exception]":
        """Fill several keys concurrently.

        Every ``(key, factory, ttl_millis)`` entry is computed through
        :meth:`get_or_compute`, so keys that are already cached are left
        alone. A failing entry is logged and skipped; the others are stored
        regardless.

        Returns:
            The exception raised for each key that could not be filled.
        """
        pending = list(entries)
        outcomes = await asyncio.gather(
            *(self.get_or_compute(key, factory, ttl_millis) for key, factory, ttl_millis in pending),
            return_exceptions=True,
        )
        failures: dict[str, Exception] = {}
        for (key, _, _), outcome in zip(pending, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Cache warmup failed for %s: %s", key, outcome)
                failures[key] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
        logger.debug("Warmed %d of %d cache entries", len(pending) - len(failures), len(pending))
        return failures

    def stats(self) -> CacheStats:
        """Return a snapshot of the cache statistics."""
        with self._lock:
            self._stats.size = len(self._entries)
            return self._stats.copy()

    def hot_keys(self, limit: int = 10) -> "list[tuple[str, int]]":
        """Return up to ``limit`` ``(key, hits)`` pairs, most read first."""
        with self._lock:
            ranked = sorted(((entry.key, entry.hits) for entry in self._entries.values()), key=lambda kv: -kv[1])
        return ranked[:limit]

    def keys(self) -> "list[str]":
        """Return a snapshot of the stored keys, including not yet purged expired ones."""
        with self._lock:
            return list(self._entries)

    def __iter__(self) -> "Iterator[str]":
        return iter(self.keys())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        return f"ResultCache(size={len(self)}, default_ttl_millis={self._default_ttl_millis})"
