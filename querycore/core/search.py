"""Search query construction.

Turns a set of optional search filters and a sort request into a base query
for :class:`~querycore.core.pagination.Paginator`. Every filter value is
bound as a parameter; the only text interpolated into the SQL is the sort
column, which must come from an allow-list.

Filters always contribute their fragments in the same order regardless of
how they were supplied, so logically identical searches produce identical
SQL and share cache entries:

1. ``category = ?``
2. ``speaker = ?``
3. ``status = ?``
4. ``upload_date >= ?``
5. ``upload_date <= ?``
6. the free-text group over the text columns
"""

import datetime
import re
from collections.abc import Mapping
from typing import Any, Final, NamedTuple, Optional, Union

import msgspec

from querycore.core.dialect import Dialect
from querycore.core.options import SortOrder
from querycore.exceptions import ImproperConfigurationError, InvalidFilterError, InvalidSortColumn

__all__ = (
    "ALLOWED_SORT_COLUMNS",
    "FACETS",
    "RELEVANCE",
    "SUGGESTION_COLUMNS",
    "SearchFilters",
    "SearchQuery",
    "SearchQueryBuilder",
    "SearchSort",
    "build_facet_query",
    "build_search",
    "build_suggestion_query",
)

RELEVANCE: Final = "relevance"
ALLOWED_SORT_COLUMNS: Final = frozenset(
    {"id", "title", "speaker", "category", "status", "upload_date", "duration", RELEVANCE}
)
FACETS: Final = frozenset({"category", "speaker", "year"})
SUGGESTION_COLUMNS: Final = frozenset({"title", "speaker", "category"})
MIN_SUGGESTION_LENGTH: Final = 2
DEFAULT_FACET_LIMIT: Final = 10
DEFAULT_SUGGESTION_LIMIT: Final = 5

_IDENTIFIER_REGEX: Final = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?$")


class SearchFilters(msgspec.Struct, frozen=True, kw_only=True):
    """Optional search criteria. Unset fields do not filter."""

    category: Optional[str] = None
    speaker: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[datetime.date] = msgspec.field(default=None, name="dateFrom")
    date_to: Optional[datetime.date] = msgspec.field(default=None, name="dateTo")
    query: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: "Optional[Mapping[str, Any]]") -> "SearchFilters":
        """Build filters from request input keyed by camelCase names.

        Empty strings are treated as absent and dates may be ISO 8601 strings.

        Raises:
            InvalidFilterError: If a value cannot be coerced.
        """
        values = {key: value for key, value in (raw or {}).items() if value is not None and value != ""}
        try:
            return msgspec.convert(values, cls, strict=False)
        except msgspec.ValidationError as exc:
            msg = f"Invalid search filters: {exc}"
            raise InvalidFilterError(msg) from exc

    @property
    def search_term(self) -> Optional[str]:
        """Lowercased free-text query, or ``None`` when blank."""
        term = (self.query or "").strip().lower()
        return term or None


class SearchSort(msgspec.Struct, frozen=True, kw_only=True):
    """Requested ordering. ``sort_by=None`` means relevance, then newest first."""

    sort_by: Optional[str] = msgspec.field(default=None, name="sortBy")
    sort_order: SortOrder = msgspec.field(default=SortOrder.DESC, name="sortOrder")

    @classmethod
    def from_mapping(cls, raw: "Optional[Mapping[str, Any]]") -> "SearchSort":
        data = raw or {}
        sort_by = data.get("sortBy", data.get("sort_by")) or None
        sort_order = data.get("sortOrder", data.get("sort_order")) or SortOrder.DESC
        return cls(sort_by=sort_by, sort_order=SortOrder.from_value(sort_order))


class SearchQuery(NamedTuple):
    """A base query ready for pagination."""

    base_query: str
    base_params: "list[Any]"


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER_REGEX.match(name):
        msg = f"Invalid SQL identifier in search configuration: {name!r}"
        raise ImproperConfigurationError(msg)
    return name


class SearchQueryBuilder:
    """Builds search, facet and suggestion queries over one table.

    Args:
        table: Table searched.
        columns: Columns selected by search queries.
        text_columns: Columns matched by the free-text query.
        sort_columns: Columns callers may sort by.
        default_sort: Column used when no explicit sort is requested.
        published_status: Status value suggestions are restricted to, or
            ``None`` to suggest from every row.
    """

    __slots__ = ("columns", "default_sort", "published_status", "sort_columns", "table", "text_columns")

    def __init__(
        self,
        table: str = "audios",
        columns: "tuple[str, ...]" = ("*",),
        text_columns: "tuple[str, ...]" = ("title", "description", "speaker"),
        sort_columns: "frozenset[str]" = ALLOWED_SORT_COLUMNS,
        default_sort: str = "upload_date",
        published_status: Optional[str] = "published",
    ) -> None:
        if not text_columns:
            msg = "At least one text column is required"
            raise ImproperConfigurationError(msg)
        self.table = _check_identifier(table)
        self.columns = tuple(column if column == "*" else _check_identifier(column) for column in columns)
        self.text_columns = tuple(_check_identifier(column) for column in text_columns)
        self.sort_columns = frozenset(sort_columns)
        self.default_sort = _check_identifier(default_sort)
        self.published_status = published_status

    def _resolve_sort(self, sort: "Optional[SearchSort]") -> "tuple[Optional[str], SortOrder]":
        if sort is None:
            return None, SortOrder.DESC
        sort_by = sort.sort_by
        if sort_by is not None and sort_by not in self.sort_columns:
            raise InvalidSortColumn(sort_by, self.sort_columns)
        order = SortOrder.from_value(sort.sort_order)
        if sort_by == RELEVANCE:
            sort_by = None
        return sort_by, order

    def _where(self, filters: SearchFilters) -> "tuple[list[str], list[Any]]":
        fragments: list[str] = []
        params: list[Any] = []
        for column, operator, value in (
            ("category", "=", filters.category),
            ("speaker", "=", filters.speaker),
            ("status", "=", filters.status),
            ("upload_date", ">=", filters.date_from),
            ("upload_date", "<=", filters.date_to),
        ):
            if value is not None:
                fragments.append(f"{column} {operator} ?")
                params.append(value)
        term = filters.search_term
        if term is not None:
            fragments.append("(" + " OR ".join(f"LOWER({column}) LIKE ?" for column in self.text_columns) + ")")
            params.extend([f"%{term}%"] * len(self.text_columns))
        return fragments, params

    @staticmethod
    def _where_clause(fragments: "list[str]") -> str:
        return f" WHERE {' AND '.join(fragments)}" if fragments else ""

    def build_search(
        self, filters: "Optional[SearchFilters]" = None, sort: "Optional[SearchSort]" = None
    ) -> SearchQuery:
        """Build the base query for a search.

        A non-empty free-text query ranks rows by how well their title
        matches (exact, then prefix, then substring) before the requested
        sort column; without one, rows are ordered by the sort column alone.
        Without a sort column (or with ``relevance``) the default column is
        used in the requested direction.

        Args:
            filters: Search criteria.
            sort: Requested ordering.

        Raises:
            InvalidSortColumn: If ``sort.sort_by`` is not an allowed column.
            InvalidPaginationError: If ``sort.sort_order`` is not ``asc`` or ``desc``.

        Returns:
            The base query and its parameters.
        """
        sort_by, order = self._resolve_sort(sort)
        filters = filters or SearchFilters()
        fragments, params = self._where(filters)

        order_by: list[str] = []
        term = filters.search_term
        if term is not None:
            order_by.append(
                "CASE WHEN LOWER(title) = ? THEN 3 WHEN LOWER(title) LIKE ? THEN 2 "
                "WHEN LOWER(title) LIKE ? THEN 1 ELSE 0 END DESC"
            )
            params.extend([term, f"{term}%", f"%{term}%"])
        order_by.append(f"{sort_by or self.default_sort} {order.sql}")

        sql = f"SELECT {', '.join(self.columns)} FROM {self.table}{self._where_clause(fragments)}"
        return SearchQuery(f"{sql} ORDER BY {', '.join(order_by)}", params)

    def build_facet_query(
        self,
        filters: "Optional[SearchFilters]" = None,
        facet: str = "category",
        *,
        dialect: "Union[Dialect, str]" = Dialect.POSTGRES,
        limit: int = DEFAULT_FACET_LIMIT,
    ) -> SearchQuery:
        """Build a grouped count over the rows matching ``filters``.

        ``category`` and ``speaker`` facets return ``name``/``count`` rows,
        most frequent first; the ``year`` facet returns ``year``/``count``
        rows, newest year first.

        Raises:
            InvalidFilterError: If ``facet`` is not a known facet.
        """
        if facet not in FACETS:
            msg = f"Unknown facet {facet!r} (expected one of: {', '.join(sorted(FACETS))})"
            raise InvalidFilterError(msg)
        fragments, params = self._where(filters or SearchFilters())

        if facet == "year":
            target = Dialect.from_name(dialect)
            if target is Dialect.SQLITE:
                year = "CAST(strftime('%Y', upload_date) AS INTEGER)"
            else:
                year = "EXTRACT(YEAR FROM upload_date)"
            sql = (
                f"SELECT {year} AS year, COUNT(*) AS count FROM {self.table}{self._where_clause(fragments)} "
                f"GROUP BY {year} ORDER BY year DESC LIMIT ?"
            )
        else:
            if facet == "speaker":
                fragments = [*fragments, "speaker IS NOT NULL", "speaker <> ''"]
            sql = (
                f"SELECT {facet} AS name, COUNT(*) AS count FROM {self.table}{self._where_clause(fragments)} "
                f"GROUP BY {facet} ORDER BY count DESC LIMIT ?"
            )
        return SearchQuery(sql, [*params, limit])

    def build_suggestion_query(
        self, text: str, column: str = "title", limit: int = DEFAULT_SUGGESTION_LIMIT
    ) -> Optional[SearchQuery]:
        """Build an autocompletion query for distinct ``column`` values containing ``text``.

        Returns:
            The query (one ``suggestion`` column per row), or ``None`` when
            ``text`` is shorter than two characters.

        Raises:
            InvalidFilterError: If ``column`` cannot be suggested from.
        """
        if column not in SUGGESTION_COLUMNS:
            msg = f"Cannot suggest values for column {column!r}"
            raise InvalidFilterError(msg)
        term = text.strip().lower()
        if len(term) < MIN_SUGGESTION_LENGTH:
            return None
        fragments: list[str] = []
        params: list[Any] = []
        if self.published_status is not None:
            fragments.append("status = ?")
            params.append(self.published_status)
        fragments.extend([f"{column} IS NOT NULL", f"{column} <> ''", f"LOWER({column}) LIKE ?"])
        params.extend([f"%{term}%", limit])
        sql = (
            f"SELECT DISTINCT {column} AS suggestion FROM {self.table}{self._where_clause(fragments)} "
            f"ORDER BY suggestion LIMIT ?"
        )
        return SearchQuery(sql, params)


_default_builder = SearchQueryBuilder()


def build_search(filters: "Optional[SearchFilters]" = None, sort: "Optional[SearchSort]" = None) -> SearchQuery:
    """Build a search over the ``audios`` table with the default builder."""
    return _default_builder.build_search(filters, sort)


def build_facet_query(
    filters: "Optional[SearchFilters]" = None,
    facet: str = "category",
    *,
    dialect: "Union[Dialect, str]" = Dialect.POSTGRES,
    limit: int = DEFAULT_FACET_LIMIT,
) -> SearchQuery:
    return _default_builder.build_facet_query(filters, facet, dialect=dialect, limit=limit)


def build_suggestion_query(
    text: str, column: str = "title", limit: int = DEFAULT_SUGGESTION_LIMIT
) -> Optional[SearchQuery]:
    return _default_builder.build_suggestion_query(text, column, limit)
