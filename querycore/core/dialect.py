"""Dialect translation for positional query templates.

Query templates throughout the application are written once with ``?``
placeholders. This module rewrites them for the backend selected at startup:

- ``Dialect.POSTGRES``: ``?`` becomes ``$1``, ``$2``, ... in order of occurrence.
- ``Dialect.MYSQL`` and ``Dialect.SQLITE``: the template passes through unchanged.

Scanning is token based so that ``?`` characters inside string literals,
quoted identifiers, dollar-quoted bodies and comments are never rewritten.
The PostgreSQL JSON operators ``??``, ``?|`` and ``?&`` are left alone too.
"""

import re
from enum import Enum
from functools import lru_cache
from typing import Final

from querycore.exceptions import ImproperConfigurationError, TranslationError

__all__ = (
    "Dialect",
    "ParameterStyle",
    "count_placeholders",
    "interval_expression",
    "mask_literals",
    "placeholder_positions",
    "to_pyformat",
    "translate",
)

TRANSLATION_CACHE_SIZE: Final = 1024

_TOKEN_REGEX: Final = re.compile(
    r"""
    (?P<squote>'(?:[^'\\]|\\.|'')*') |
    (?P<dquote>"(?:[^"]|"")*") |
    (?P<backtick>`(?:[^`]|``)*`) |
    (?P<dollar_quoted>(?<![\w$])\$(?P<dollar_tag>[A-Za-z_]\w*|)\$[\s\S]*?\$(?P=dollar_tag)\$) |
    (?P<line_comment>--[^\r\n]*) |
    (?P<block_comment>/\*[\s\S]*?\*/) |
    (?P<pg_q_operator>\?\?|\?\||\?&) |
    (?P<qmark>\?) |
    (?P<unterminated>['"`]|/\*)
    """,
    re.VERBOSE,
)


class ParameterStyle(str, Enum):
    """Placeholder styles understood by the supported drivers.

    - QMARK: ``?`` placeholders (source templates, SQLite)
    - NUMERIC: ``$1``, ``$2`` placeholders (asyncpg)
    - POSITIONAL_PYFORMAT: ``%s`` placeholders (asyncmy)
    """

    QMARK = "qmark"
    NUMERIC = "numeric"
    POSITIONAL_PYFORMAT = "format"

    def __str__(self) -> str:
        return self.value


class Dialect(str, Enum):
    """SQL dialects the query layer can target."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: "str | Dialect") -> "Dialect":
        """Resolve a dialect from its name or a common alias.

        Args:
            name: Dialect name such as ``"postgresql"`` or ``"mariadb"``.

        Raises:
            ImproperConfigurationError: If the name is not recognized.

        Returns:
            The matching dialect.
        """
        if isinstance(name, Dialect):
            return name
        resolved = _DIALECT_ALIASES.get(name.strip().lower())
        if resolved is None:
            msg = f"Unsupported SQL dialect: {name!r}"
            raise ImproperConfigurationError(msg)
        return resolved

    @property
    def placeholder_style(self) -> ParameterStyle:
        """Placeholder style produced by :func:`translate` for this dialect."""
        if self is Dialect.POSTGRES:
            return ParameterStyle.NUMERIC
        return ParameterStyle.QMARK


_DIALECT_ALIASES: Final[dict[str, Dialect]] = {
    "postgres": Dialect.POSTGRES,
    "postgresql": Dialect.POSTGRES,
    "pg": Dialect.POSTGRES,
    "asyncpg": Dialect.POSTGRES,
    "mysql": Dialect.MYSQL,
    "mariadb": Dialect.MYSQL,
    "asyncmy": Dialect.MYSQL,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
    "aiosqlite": Dialect.SQLITE,
}


@lru_cache(maxsize=TRANSLATION_CACHE_SIZE)
def _scan(sql: str) -> "tuple[tuple[int, ...], tuple[tuple[int, int], ...]]":
    """Tokenize ``sql`` once.

    Returns:
        Offsets of bindable ``?`` placeholders and the spans of opaque tokens
        (literals, quoted identifiers and comments).
    """
    placeholders: list[int] = []
    opaque: list[tuple[int, int]] = []
    for match in _TOKEN_REGEX.finditer(sql):
        kind = match.lastgroup
        if kind == "qmark":
            placeholders.append(match.start())
        elif kind == "unterminated":
            token = match.group()
            what = "block comment" if token == "/*" else f"quote {token}"
            msg = f"Unterminated {what} at offset {match.start()}"
            raise TranslationError(msg, sql)
        elif kind != "pg_q_operator":
            opaque.append(match.span())
    return tuple(placeholders), tuple(opaque)


def placeholder_positions(sql: str) -> "tuple[int, ...]":
    """Return the offsets of every bindable ``?`` placeholder in ``sql``.

    Raises:
        TranslationError: If the template has an unterminated quote or comment.
    """
    return _scan(sql)[0]


def count_placeholders(sql: str) -> int:
    """Return the number of bindable ``?`` placeholders in ``sql``."""
    return len(_scan(sql)[0])


def mask_literals(sql: str) -> str:
    """Blank out literals, quoted identifiers and comments, preserving offsets.

    The result has the same length as ``sql`` so positions found in the masked
    text can be used to slice the original.
    """
    _, opaque = _scan(sql)
    if not opaque:
        return sql
    chars = list(sql)
    for start, end in opaque:
        chars[start:end] = " " * (end - start)
    return "".join(chars)


@lru_cache(maxsize=TRANSLATION_CACHE_SIZE)
def _to_numeric(sql: str) -> str:
    positions = placeholder_positions(sql)
    if not positions:
        return sql
    parts: list[str] = []
    last = 0
    for index, position in enumerate(positions, start=1):
        parts.append(sql[last:position])
        parts.append(f"${index}")
        last = position + 1
    parts.append(sql[last:])
    return "".join(parts)


def translate(sql: str, dialect: "Dialect | str") -> str:
    """Rewrite a ``?`` template into the placeholder syntax of ``dialect``.

    Args:
        sql: Query template using ``?`` placeholders.
        dialect: Target dialect.

    Raises:
        TranslationError: If the template has an unterminated quote or comment.

    Returns:
        The translated SQL text.
    """
    target = Dialect.from_name(dialect)
    if target is Dialect.POSTGRES:
        return _to_numeric(sql)
    # validate even when the text passes through unchanged
    placeholder_positions(sql)
    return sql


@lru_cache(maxsize=TRANSLATION_CACHE_SIZE)
def to_pyformat(sql: str) -> str:
    """Convert a ``?`` template to the ``%s`` style used by asyncmy.

    asyncmy interpolates with ``query % args`` over the whole statement, so
    every literal ``%`` (including those inside string literals) is doubled.

    Raises:
        TranslationError: If the template has an unterminated quote or comment.
    """
    positions = placeholder_positions(sql)
    parts: list[str] = []
    last = 0
    for position in positions:
        parts.append(sql[last:position].replace("%", "%%"))
        parts.append("%s")
        last = position + 1
    parts.append(sql[last:].replace("%", "%%"))
    return "".join(parts)


def interval_expression(days: int, dialect: "Dialect | str") -> str:
    """Build a "now minus ``days`` days" expression for ``dialect``.

    Date arithmetic is not portable, so callers use this instead of embedding
    it in templates.

    Args:
        days: Number of days to subtract. Must be a non-negative integer.
        dialect: Target dialect.

    Raises:
        TranslationError: If ``days`` is not a non-negative integer.

    Returns:
        SQL expression text.
    """
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        msg = f"Interval days must be a non-negative integer, got {days!r}"
        raise TranslationError(msg)
    target = Dialect.from_name(dialect)
    if target is Dialect.POSTGRES:
        return f"CURRENT_TIMESTAMP - INTERVAL '{days} days'"
    if target is Dialect.MYSQL:
        return f"DATE_SUB(CURRENT_TIMESTAMP, INTERVAL {days} DAY)"
    return f"datetime('now', '-{days} days')"
