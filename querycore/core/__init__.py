"""Query layer core: dialect translation, execution, caching, pagination and search.

- dialect.py: ``?`` template translation and dialect-specific expressions
- clauses.py: top-level clause scanning for query templates
- tables.py: table discovery for cache namespaces and write invalidation
- executor.py: single-statement execution
- cache.py: result cache
- pagination.py: paginated reads with concurrent data and count queries
- search.py: search, facet and suggestion query construction
- options.py / result.py: per-call options and result containers
"""

from querycore.core import cache, clauses, dialect, executor, options, pagination, result, search, tables
from querycore.core.cache import MISS, CacheStats, ResultCache, compute_key
from querycore.core.dialect import Dialect, ParameterStyle, count_placeholders, interval_expression, translate
from querycore.core.executor import QueryExecutor
from querycore.core.options import QueryOptions, SortOrder
from querycore.core.pagination import Paginator, build_count_query, build_data_query
from querycore.core.result import ExecutionResult, PageEnvelope, QueryResult, normalize_result
from querycore.core.search import SearchFilters, SearchQuery, SearchQueryBuilder, SearchSort, build_search

__all__ = (
    "MISS",
    "CacheStats",
    "Dialect",
    "ExecutionResult",
    "PageEnvelope",
    "Paginator",
    "ParameterStyle",
    "QueryExecutor",
    "QueryOptions",
    "QueryResult",
    "ResultCache",
    "SearchFilters",
    "SearchQuery",
    "SearchQueryBuilder",
    "SearchSort",
    "SortOrder",
    "build_count_query",
    "build_data_query",
    "build_search",
    "cache",
    "clauses",
    "compute_key",
    "count_placeholders",
    "dialect",
    "executor",
    "interval_expression",
    "normalize_result",
    "options",
    "pagination",
    "result",
    "search",
    "tables",
    "translate",
)
