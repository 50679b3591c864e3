"""Application-facing query service.

:class:`QueryService` wires one backend driver, one result cache and the
pagination and search components together. Route handlers hold a single
instance for the life of the process.

Cached reads are tagged with every table they reference. A write made
through :meth:`QueryService.execute`, or committed by
:meth:`QueryService.transaction`, drops every cached read of the tables it
wrote.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Optional, Union

from querycore.config import CacheConfig, DatabaseConfigProtocol, config_from_url
from querycore.core.cache import DEFAULT_NAMESPACE, ResultCache, compute_key
from querycore.core.executor import QueryExecutor
from querycore.core.options import QueryOptions
from querycore.core.pagination import Paginator
from querycore.core.search import SearchFilters, SearchQueryBuilder, SearchSort
from querycore.core.tables import is_read_only, primary_table, referenced_tables, written_tables
from querycore.driver import AsyncDriverAdapterBase
from querycore.utils.logging import correlation_scope, get_logger, log_with_context

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractContextManager
    from types import TracebackType

    from typing_extensions import Self

    from querycore.core.dialect import Dialect
    from querycore.core.result import PageEnvelope, QueryResult
    from querycore.typing import ParameterList, Row

__all__ = ("QueryService", "Transaction")

logger = get_logger("service")


class Transaction:
    """Statements run inside :meth:`QueryService.transaction` over one held connection.

    Nothing here goes through the result cache. Await statements one at a
    time.
    """

    __slots__ = ("_executor", "_unknown_writes", "_written")

    def __init__(self, executor: QueryExecutor) -> None:
        self._executor = executor
        self._written: set[str] = set()
        self._unknown_writes = False

    @property
    def dialect(self) -> "Dialect":
        return self._executor.dialect

    @property
    def written_tables(self) -> "Optional[frozenset[str]]":
        """Tables written so far, or ``None`` if some statement's targets are unknown."""
        return None if self._unknown_writes else frozenset(self._written)

    async def execute(
        self, sql: str, params: "ParameterList" = (), *, timeout: "Optional[float]" = None
    ) -> "QueryResult":
        result = await self._executor.execute(sql, params, timeout=timeout)
        tables = written_tables(sql, self.dialect)
        if tables is None:
            self._unknown_writes = True
        else:
            self._written.update(tables)
        return result

    async def query(
        self, sql: str, params: "ParameterList" = (), *, timeout: "Optional[float]" = None
    ) -> "QueryResult":
        """Read inside the transaction, seeing its uncommitted writes."""
        return await self.execute(sql, params, timeout=timeout)

    async def query_one(
        self, sql: str, params: "ParameterList" = (), *, timeout: "Optional[float]" = None
    ) -> "Optional[Row]":
        return (await self.query(sql, params, timeout=timeout)).first()


class QueryService:
    """Cached reads, paginated reads, searches and writes against one backend.

    Reads go through the result cache under a namespace named after the
    first table they read (or ``options.cache_namespace``) and are tagged
    with every table they read. Writes made through :meth:`execute` drop
    every cached entry that read a table they modify, along with the
    namespaces named after those tables. Rows handed back are copies, so
    callers may change them freely.

    Args:
        backend: Adapter configuration or an already constructed driver.
        cache: Result cache to share. A private one is created when omitted.
        cache_config: Cache and pagination defaults.
        search_builder: Builder used by :meth:`search`, :meth:`facets` and
            :meth:`suggestions`.
    """

    __slots__ = ("_cache", "_cache_config", "_driver", "_executor", "_paginator", "_search_builder")

    def __init__(
        self,
        backend: "Union[DatabaseConfigProtocol[Any, Any, Any], AsyncDriverAdapterBase]",
        *,
        cache: "Optional[ResultCache]" = None,
        cache_config: "Optional[CacheConfig]" = None,
        search_builder: "Optional[SearchQueryBuilder]" = None,
    ) -> None:
        self._driver = backend if isinstance(backend, AsyncDriverAdapterBase) else backend.create_driver()
        self._cache_config = cache_config or CacheConfig()
        self._cache = (
            cache if cache is not None else ResultCache(default_ttl_millis=self._cache_config.default_ttl_millis)
        )
        self._executor = QueryExecutor(self._driver)
        self._paginator = Paginator(self._executor, self._cache)
        self._search_builder = search_builder or SearchQueryBuilder()

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "QueryService":
        """Create a service for a database URL such as ``postgresql://user@host/db``."""
        return cls(config_from_url(url), **kwargs)

    async def __aenter__(self) -> "Self":
        return self

    async def __aexit__(
        self,
        exc_type: "Optional[type[BaseException]]",
        exc_val: "Optional[BaseException]",
        exc_tb: "Optional[TracebackType]",
    ) -> None:
        await self.close()

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def dialect(self) -> "Dialect":
        return self._executor.dialect

    @property
    def executor(self) -> QueryExecutor:
        return self._executor

    @property
    def paginator(self) -> Paginator:
        return self._paginator

    def options(self, raw: "Optional[Mapping[str, Any]]" = None) -> QueryOptions:
        """Validate request options using this service's defaults and limits."""
        return QueryOptions.parse(
            raw,
            default_limit=self._cache_config.default_limit,
            max_limit=self._cache_config.max_limit,
            default_ttl_millis=self._cache_config.default_ttl_millis,
        )

    def _coerce_options(self, options: "Union[QueryOptions, Mapping[str, Any], None]") -> QueryOptions:
        if options is None or isinstance(options, Mapping):
            options = self.options(options)
        if not self._cache_config.enabled and options.use_cache:
            options = options.replace(use_cache=False)
        return options

    async def query(
        self,
        sql: str,
        params: "ParameterList" = (),
        options: "Union[QueryOptions, Mapping[str, Any], None]" = None,
    ) -> "QueryResult":
        """Run a read, serving it from the cache when possible.

        Statements that modify data are passed to :meth:`execute` instead and
        never cached.
        """
        options = self._coerce_options(options)
        if not is_read_only(sql, self.dialect):
            return await self.execute(sql, params, timeout=options.timeout)
        if not options.use_cache:
            return await self._executor.execute(sql, params, timeout=options.timeout)

        namespace = options.cache_namespace or primary_table(sql, self.dialect) or DEFAULT_NAMESPACE
        key = compute_key(sql, params, options, namespace)

        async def run() -> "QueryResult":
            logger.debug("Cache miss for %s", key)
            return await self._executor.execute(sql, params, timeout=options.timeout)

        tables = referenced_tables(sql, self.dialect)
        result = await self._cache.get_or_compute(key, run, options.cache_ttl_millis, tables)
        return result.copy()

    async def query_one(
        self,
        sql: str,
        params: "ParameterList" = (),
        options: "Union[QueryOptions, Mapping[str, Any], None]" = None,
    ) -> "Optional[Row]":
        """Run a read and return its first row, or ``None``."""
        result = await self.query(sql, params, options)
        return result.first()

    async def execute(
        self, sql: str, params: "ParameterList" = (), *, timeout: "Optional[float]" = None
    ) -> "QueryResult":
        """Run a statement without caching and invalidate what it wrote.

        A statement whose written tables cannot be determined invalidates the
        whole cache.
        """
        result = await self._executor.execute(sql, params, timeout=timeout)
        self._invalidate_written(written_tables(sql, self.dialect))
        return result

    def _invalidate_written(self, tables: "Optional[Iterable[str]]") -> int:
        if tables is None:
            logger.warning("Could not determine tables written by statement; invalidating all cached results")
            return self._cache.invalidate_prefix("")
        names = sorted(set(tables))
        if not names:
            return 0
        removed = self._cache.invalidate_tables(names)
        for table in names:
            removed += self._cache.invalidate_namespace(table)
        log_with_context(logger, logging.DEBUG, "Invalidated cached reads", tables=names, removed=removed)
        return removed

    @asynccontextmanager
    async def transaction(self) -> "AsyncIterator[Transaction]":
        """Run a unit of work on one connection and commit it as a whole.

        Example::

            async with service.transaction() as tx:
                await tx.execute("UPDATE audios SET status = ? WHERE id = ?", ["archived", 7])
                await tx.execute("INSERT INTO audit (audio_id) VALUES (?)", [7])

        An exception leaving the block rolls everything back and propagates;
        the cache is left alone. After a commit, cached reads of every table
        the unit wrote are invalidated (all of them when some statement's
        targets are unknown). On SQLite other statements wait until the
        block ends, so only use ``tx`` inside it.

        Yields:
            The :class:`Transaction` to run statements on.
        """
        async with self._driver.transaction() as pinned:
            unit = Transaction(QueryExecutor(pinned))
            yield unit
        self._invalidate_written(unit.written_tables)

    async def warmup(
        self,
        queries: "Iterable[tuple[str, ParameterList]]",
        options: "Union[QueryOptions, Mapping[str, Any], None]" = None,
    ) -> "dict[int, Exception]":
        """Run several reads concurrently so later requests find them cached.

        Every query runs even when others fail. Failures are logged and
        returned instead of raised.

        Args:
            queries: ``(sql, params)`` pairs to read.
            options: Caching options applied to every query.

        Returns:
            The exception raised by each failed query, keyed by its position in ``queries``.
        """
        pending = list(queries)
        outcomes = await asyncio.gather(
            *(self.query(sql, params, options) for sql, params in pending), return_exceptions=True
        )
        failures: dict[int, Exception] = {}
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Cache warmup query %d failed: %s", index, outcome)
                failures[index] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
        log_with_context(logger, logging.DEBUG, "Cache warmed", queries=len(pending), failed=len(failures))
        return failures

    def request(self, correlation_id: "Optional[str]" = None) -> "AbstractContextManager[str]":
        """Bind a correlation ID to every log line the service writes inside a ``with`` block.

        Example::

            with service.request(request.headers.get("x-request-id")):
                page = await service.search(filters)

        Args:
            correlation_id: ID to bind. A random one is generated when omitted.
        """
        return correlation_scope(correlation_id)

    async def paginate(
        self,
        base_query: str,
        base_params: "ParameterList" = (),
        options: "Union[QueryOptions, Mapping[str, Any], None]" = None,
    ) -> "PageEnvelope":
        """Fetch one page of ``base_query``. See :meth:`Paginator.paginate`."""
        return await self._paginator.paginate(base_query, base_params, self._coerce_options(options))

    async def search(
        self,
        filters: "Union[SearchFilters, Mapping[str, Any], None]" = None,
        sort: "Union[SearchSort, Mapping[str, Any], None]" = None,
        options: "Union[QueryOptions, Mapping[str, Any], None]" = None,
    ) -> "PageEnvelope":
        """Search the builder's table and return one page of matches.

        Args:
            filters: Search criteria, or request input keyed by camelCase names.
            sort: Requested ordering, or request input with ``sortBy``/``sortOrder``.
            options: Page, limit and caching options.

        Raises:
            InvalidSortColumn: If the sort column is not allowed.

        Returns:
            The requested page.
        """
        if not isinstance(filters, SearchFilters):
            filters = SearchFilters.from_mapping(filters)
        if not isinstance(sort, SearchSort):
            sort = SearchSort.from_mapping(sort)
        search = self._search_builder.build_search(filters, sort)
        options = self._coerce_options(options)
        if options.cache_namespace is None:
            options = options.replace(cache_namespace=self._search_builder.table)
        return await self._paginator.paginate(search.base_query, search.base_params, options)

    async def facets(
        self,
        filters: "Union[SearchFilters, Mapping[str, Any], None]" = None,
        facet: str = "category",
        *,
        limit: int = 10,
    ) -> "list[Row]":
        """Count matching rows grouped by ``facet`` (``category``, ``speaker`` or ``year``)."""
        if not isinstance(filters, SearchFilters):
            filters = SearchFilters.from_mapping(filters)
        sql, params = self._search_builder.build_facet_query(filters, facet, dialect=self.dialect, limit=limit)
        options = self._coerce_options(None).replace(cache_namespace=self._search_builder.table)
        return (await self.query(sql, params, options)).rows

    async def suggestions(self, text: str, column: str = "title", *, limit: int = 5) -> "list[Any]":
        """Return distinct ``column`` values containing ``text`` for autocompletion."""
        built = self._search_builder.build_suggestion_query(text, column, limit)
        if built is None:
            return []
        options = self._coerce_options(None).replace(cache_namespace=self._search_builder.table)
        result = await self.query(built.base_query, built.base_params, options)
        return [row["suggestion"] for row in result.rows]

    def invalidate(self, namespace: str) -> int:
        """Drop every cached result in ``namespace``. Returns the number removed."""
        removed = self._cache.invalidate_namespace(namespace)
        logger.debug("Invalidated %d cached results in namespace %r", removed, namespace)
        return removed

    async def close(self) -> None:
        """Close the backend connection pool."""
        await self._driver.close()
