"""Structural hints for query templates.

Templates are never parsed into an AST. The paginator only needs to know a
handful of facts about the outermost query (does it group, sort, limit,
select distinct rows, and where does its select list sit), so this module
scans the template with literals and comments masked out and tracks
parenthesis depth to find top-level clause keywords.
"""

import re
from functools import lru_cache
from typing import Final, NamedTuple, Optional

from querycore.core.dialect import mask_literals

__all__ = ("QueryShape", "analyze_query", "strip_terminator")

_KEYWORD_REGEX: Final = re.compile(
    r"\b(?P<keyword>SELECT|DISTINCT|FROM|WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|LIMIT|OFFSET|FETCH|UNION|INTERSECT|EXCEPT)\b",
    re.IGNORECASE,
)
_WHITESPACE_REGEX: Final = re.compile(r"\s+")
_SET_OPERATIONS: Final = frozenset({"UNION", "INTERSECT", "EXCEPT"})


class QueryShape(NamedTuple):
    """Top-level structure of a query template.

    Offsets index into the template the shape was computed from.
    """

    select_start: Optional[int]
    """Offset just past the outermost ``SELECT`` keyword."""
    from_start: Optional[int]
    """Offset of the outermost ``FROM`` keyword."""
    order_by_start: Optional[int]
    """Offset of the outermost ``ORDER BY`` keyword."""
    has_group_by: bool
    has_having: bool
    has_distinct: bool
    has_limit: bool
    has_set_operation: bool

    @property
    def has_order_by(self) -> bool:
        return self.order_by_start is not None

    @property
    def needs_wrapping(self) -> bool:
        """Whether counting rows requires wrapping the query as a subquery."""
        return self.has_group_by or self.has_having or self.has_distinct or self.has_set_operation

    @property
    def select_list_span(self) -> "Optional[tuple[int, int]]":
        """Span of the outermost select list, if the query has one."""
        if self.select_start is None or self.from_start is None:
            return None
        return self.select_start, self.from_start


def strip_terminator(sql: str) -> str:
    """Remove trailing whitespace and statement terminators."""
    stripped = sql.rstrip()
    while stripped.endswith(";"):
        stripped = stripped[:-1].rstrip()
    return stripped


def _depths(masked: str) -> "list[int]":
    depths = [0] * (len(masked) + 1)
    depth = 0
    for index, char in enumerate(masked):
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        depths[index + 1] = depth
    return depths


@lru_cache(maxsize=512)
def analyze_query(sql: str) -> QueryShape:
    """Find the top-level clauses of ``sql``.

    Raises:
        TranslationError: If the template has an unterminated quote or comment.

    Returns:
        The query's shape.
    """
    masked = mask_literals(sql)
    depths = _depths(masked)

    select_start: Optional[int] = None
    from_start: Optional[int] = None
    order_by_start: Optional[int] = None
    seen: set[str] = set()
    has_distinct = False

    for match in _KEYWORD_REGEX.finditer(masked):
        if depths[match.start()] != 0:
            continue
        keyword = _WHITESPACE_REGEX.sub(" ", match.group("keyword").upper())
        if keyword == "SELECT":
            if select_start is None:
                select_start = match.end()
                has_distinct = masked[select_start:].lstrip().upper().startswith("DISTINCT")
            continue
        if keyword == "FROM" and from_start is None and select_start is not None:
            from_start = match.start()
        elif keyword == "ORDER BY":
            order_by_start = match.start()
        elif keyword in _SET_OPERATIONS:
            # an ORDER BY before a set operation belongs to a branch, not the whole query
            order_by_start = None
        seen.add(keyword)

    return QueryShape(
        select_start=select_start,
        from_start=from_start,
        order_by_start=order_by_start,
        has_group_by="GROUP BY" in seen,
        has_having="HAVING" in seen,
        has_distinct=has_distinct,
        has_limit=bool(seen & {"LIMIT", "OFFSET", "FETCH"}),
        has_set_operation=bool(seen & _SET_OPERATIONS),
    )
