"""Table discovery for cache namespacing and write invalidation.

Reads are cached under the name of the first table they touch and tagged with
every table they reference, joins and subqueries included. Writes invalidate
the namespaces and tags of the tables they modify. All answers come from a
sqlglot parse of the ``?`` template.
"""

from functools import lru_cache
from typing import TYPE_CHECKING, Final, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from querycore.core.dialect import Dialect
from querycore.utils.logging import get_logger

if TYPE_CHECKING:
    from sqlglot.dialects.dialect import DialectType

__all__ = ("is_read_only", "primary_table", "referenced_tables", "written_tables")

logger = get_logger("core.tables")

_SQLGLOT_DIALECTS: Final[dict[Dialect, str]] = {
    Dialect.POSTGRES: "postgres",
    Dialect.MYSQL: "mysql",
    Dialect.SQLITE: "sqlite",
}
_READ_KEYS: Final = frozenset({"select", "union", "intersect", "except", "with", "values"})
_SCHEMA_KEYS: Final = frozenset({"create", "drop", "alter", "altertable", "truncatetable"})


def _read_dialect(dialect: "Optional[Dialect | str]") -> "DialectType":
    if dialect is None:
        return None
    return _SQLGLOT_DIALECTS[Dialect.from_name(dialect)]


@lru_cache(maxsize=512)
def _parse(sql: str, read: "DialectType") -> "Optional[exp.Expression]":
    try:
        return sqlglot.parse_one(sql, read=read)
    except SqlglotError as e:
        logger.debug("Could not parse SQL for table discovery: %s", str(e)[:100])
        return None


def _table_name(table: exp.Table) -> str:
    return table.name.lower()


def primary_table(sql: str, dialect: "Optional[Dialect | str]" = None) -> Optional[str]:
    """Return the first table named in ``sql``, searching outermost clauses first.

    Returns:
        The lowercased table name, or ``None`` if the statement cannot be
        parsed or names no table.
    """
    tree = _parse(sql, _read_dialect(dialect))
    if tree is None:
        return None
    table = next((node for node in tree.find_all(exp.Table) if node.name), None)
    return _table_name(table) if table is not None else None


def referenced_tables(sql: str, dialect: "Optional[Dialect | str]" = None) -> "Optional[frozenset[str]]":
    """Return every table named anywhere in ``sql``.

    Returns:
        The lowercased table names, or ``None`` if the statement cannot be parsed.
    """
    tree = _parse(sql, _read_dialect(dialect))
    if tree is None:
        return None
    return frozenset(_table_name(table) for table in tree.find_all(exp.Table) if table.name)


def is_read_only(sql: str, dialect: "Optional[Dialect | str]" = None) -> bool:
    """Whether ``sql`` parses as a plain query that modifies nothing."""
    tree = _parse(sql, _read_dialect(dialect))
    return tree is not None and tree.key in _READ_KEYS


def written_tables(sql: str, dialect: "Optional[Dialect | str]" = None) -> "Optional[frozenset[str]]":
    """Return the tables a statement modifies.

    ``INSERT``, ``REPLACE``, ``UPDATE`` and ``DELETE`` report their target
    table; schema statements (``CREATE``, ``ALTER``, ``DROP``, ``TRUNCATE``)
    report every table they name. Plain queries report nothing.

    Returns:
        The lowercased table names, or ``None`` when the statement could not
        be understood and any table may have changed.
    """
    tree = _parse(sql, _read_dialect(dialect))
    if tree is None:
        return None
    if tree.key in _READ_KEYS:
        return frozenset()
    if isinstance(tree, (exp.Insert, exp.Update, exp.Delete)):
        target = tree.this.find(exp.Table) if tree.this is not None else None
        return frozenset({_table_name(target)}) if target is not None and target.name else None
    if tree.key in _SCHEMA_KEYS:
        names = frozenset(_table_name(table) for table in tree.find_all(exp.Table) if table.name)
        return names or None
    return None
