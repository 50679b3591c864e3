"""querycore: cross-dialect query execution, result caching and pagination."""

from querycore import core, driver, exceptions, typing, utils
from querycore.__metadata__ import __version__
from querycore.config import AsyncDatabaseConfig, CacheConfig, NoPoolAsyncConfig, config_from_url
from querycore.core.cache import MISS, CacheStats, ResultCache, compute_key
from querycore.core.dialect import Dialect, count_placeholders, interval_expression, translate
from querycore.core.executor import QueryExecutor
from querycore.core.options import QueryOptions, SortOrder
from querycore.core.pagination import Paginator, build_count_query, build_data_query
from querycore.core.result import PageEnvelope, QueryResult
from querycore.core.search import SearchFilters, SearchQuery, SearchQueryBuilder, SearchSort, build_search
from querycore.driver import AsyncDriverAdapterBase, PinnedConnectionDriver
from querycore.exceptions import (
    InvalidPaginationError,
    InvalidSortColumn,
    PageQueryError,
    ParameterError,
    QueryCoreError,
    QueryError,
    QueryTimeoutError,
    TranslationError,
)
from querycore.service import QueryService, Transaction
from querycore.utils.logging import configure_logging, correlation_scope
from querycore.utils.serializers import from_json, to_json

__all__ = (
    "MISS",
    "AsyncDatabaseConfig",
    "AsyncDriverAdapterBase",
    "CacheConfig",
    "CacheStats",
    "Dialect",
    "InvalidPaginationError",
    "InvalidSortColumn",
    "NoPoolAsyncConfig",
    "PageEnvelope",
    "PageQueryError",
    "Paginator",
    "PinnedConnectionDriver",
    "ParameterError",
    "QueryCoreError",
    "QueryError",
    "QueryExecutor",
    "QueryOptions",
    "QueryResult",
    "QueryService",
    "QueryTimeoutError",
    "ResultCache",
    "SearchFilters",
    "SearchQuery",
    "SearchQueryBuilder",
    "SearchSort",
    "SortOrder",
    "Transaction",
    "TranslationError",
    "__version__",
    "build_count_query",
    "build_data_query",
    "build_search",
    "compute_key",
    "config_from_url",
    "configure_logging",
    "core",
    "correlation_scope",
    "count_placeholders",
    "driver",
    "exceptions",
    "from_json",
    "interval_expression",
    "to_json",
    "translate",
    "typing",
    "utils",
)
