"""Paginated reads with concurrent data and count queries.

A page is produced from one base query by running two derived statements at
the same time:

- the data query: ``<base> LIMIT ? OFFSET ?``
- the count query: the base with its ordering removed and its select list
  replaced by ``COUNT(*) AS total``, or the whole base wrapped as a subquery
  when it groups, filters groups, selects distinct rows or combines queries

Both results go through the result cache. Nothing is cached unless both
halves succeed.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Final, Optional

from querycore.core.cache import DEFAULT_NAMESPACE, MISS, compute_key
from querycore.core.clauses import analyze_query, strip_terminator
from querycore.core.dialect import count_placeholders, placeholder_positions
from querycore.core.options import QueryOptions
from querycore.core.result import PageEnvelope, QueryResult
from querycore.core.tables import primary_table, referenced_tables
from querycore.exceptions import InvalidPaginationError, PageQueryError
from querycore.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from querycore.core.cache import ResultCache
    from querycore.core.executor import QueryExecutor
    from querycore.typing import ParameterList

__all__ = ("Paginator", "build_count_query", "build_data_query")

logger = get_logger("core.pagination")

COUNT_COLUMN: Final = "total"
SUBQUERY_ALIAS: Final = "_sub"


def build_data_query(
    base_query: str, base_params: "ParameterList", limit: int, offset: int
) -> "tuple[str, list[Any]]":
    """Append ``LIMIT ? OFFSET ?`` to ``base_query``.

    Returns:
        The data query and its parameters.
    """
    return f"{strip_terminator(base_query)} LIMIT ? OFFSET ?", [*base_params, limit, offset]


def build_count_query(base_query: str, base_params: "ParameterList") -> "tuple[str, list[Any]]":
    """Derive a query counting the rows ``base_query`` would return.

    A top-level ``ORDER BY`` is dropped along with the parameters bound
    inside it. Grouped, ``HAVING``, ``DISTINCT`` and set-operation queries are
    wrapped as ``SELECT COUNT(*) AS total FROM (<base>) AS _sub``; any other
    query keeps its ``FROM`` onwards and has its select list (and any
    parameters bound in it) replaced by ``COUNT(*) AS total``.

    Returns:
        The count query and its parameters.
    """
    base = strip_terminator(base_query)
    params = list(base_params)
    shape = analyze_query(base)

    if shape.order_by_start is not None:
        base = base[: shape.order_by_start].rstrip()
        params = params[: count_placeholders(base)]
        shape = analyze_query(base)

    span = shape.select_list_span
    if shape.needs_wrapping or span is None:
        return f"SELECT COUNT(*) AS {COUNT_COLUMN} FROM ({base}) AS {SUBQUERY_ALIAS}", params

    start, end = span
    positions = placeholder_positions(base)
    before = sum(1 for position in positions if position < start)
    inside = sum(1 for position in positions if start <= position < end)
    count_sql = f"{base[:start]} COUNT(*) AS {COUNT_COLUMN} {base[end:]}"
    return count_sql, params[:before] + params[before + inside :]


def _total_from(result: QueryResult) -> int:
    row = result.first()
    if row is None:
        return 0
    value = row.get(COUNT_COLUMN)
    if value is None:
        # some backends upper-case unquoted aliases
        value = next((v for k, v in row.items() if k.lower() == COUNT_COLUMN), 0)
    return int(value or 0)


class Paginator:
    """Produce :class:`PageEnvelope` objects from a base query.

    Args:
        executor: Executor used for both halves of each page.
        cache: Cache for page data and totals.
    """

    __slots__ = ("_cache", "_executor")

    def __init__(self, executor: "QueryExecutor", cache: "ResultCache") -> None:
        self._executor = executor
        self._cache = cache

    def _namespace(self, base_query: str, options: QueryOptions) -> str:
        if options.cache_namespace:
            return options.cache_namespace
        return primary_table(base_query, self._executor.dialect) or DEFAULT_NAMESPACE

    async def paginate(
        self,
        base_query: str,
        base_params: "ParameterList" = (),
        options: "Optional[QueryOptions]" = None,
    ) -> PageEnvelope:
        """Fetch one page of ``base_query`` and the total row count.

        Args:
            base_query: Query template without ``LIMIT``/``OFFSET``.
            base_params: Parameters for ``base_query``.
            options: Page, limit and caching options.

        Raises:
            InvalidPaginationError: If ``page`` or ``limit`` is below 1, or the
                base query already limits its rows.
            PageQueryError: If the data query, the count query or both fail.

        Returns:
            The requested page.
        """
        options = options or QueryOptions()
        if options.limit < 1:
            msg = f"limit must be at least 1, got {options.limit}"
            raise InvalidPaginationError(msg)
        if options.page < 1:
            msg = f"page must be at least 1, got {options.page}"
            raise InvalidPaginationError(msg)
        if analyze_query(strip_terminator(base_query)).has_limit:
            msg = "Base query already has a top-level LIMIT, OFFSET or FETCH clause"
            raise InvalidPaginationError(msg)

        data_sql, data_params = build_data_query(base_query, base_params, options.limit, options.offset)
        count_sql, count_params = build_count_query(base_query, base_params)

        data: Any = MISS
        count: Any = MISS
        data_key = count_key = ""
        if options.use_cache:
            namespace = self._namespace(base_query, options)
            data_key = compute_key(data_sql, data_params, options, namespace)
            # the total does not depend on the requested page
            count_key = compute_key(count_sql, count_params, None, namespace)
            data = self._cache.get(data_key)
            count = self._cache.get(count_key)

        pending: dict[str, Awaitable[QueryResult]] = {}
        if data is MISS:
            pending["data"] = self._executor.execute(data_sql, data_params, timeout=options.timeout)
        if count is MISS:
            pending["count"] = self._executor.execute(count_sql, count_params, timeout=options.timeout)

        if pending:
            outcomes = await asyncio.gather(*pending.values(), return_exceptions=True)
            failures: dict[str, BaseException] = {}
            for name, outcome in zip(pending, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    failures[name] = outcome
            if failures:
                logger.warning("Paginated query failed: %s", ", ".join(sorted(failures)))
                raise PageQueryError(failures)
            fetched = dict(zip(pending, outcomes))
            data = fetched.get("data", data)
            count = fetched.get("count", count)
            if options.use_cache:
                tables = referenced_tables(base_query, self._executor.dialect)
                if "data" in fetched:
                    self._cache.put(data_key, data, options.cache_ttl_millis, tables)
                if "count" in fetched:
                    self._cache.put(count_key, count, options.cache_ttl_millis, tables)
        else:
            logger.debug("Page served from cache (%s)", data_key)

        return PageEnvelope.build(data.rows, _total_from(count), options.page, options.limit)
