"""Helpers shared by the driver adapters."""

import re
from typing import Final

from querycore.core.dialect import mask_literals

__all__ = ("returns_rows",)

_LEADING_VERB_REGEX: Final = re.compile(r"^\s*\(*\s*([A-Za-z]+)")
_VERB_REGEX: Final = re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|MERGE|VALUES)\b|[()]", re.IGNORECASE)
_RETURNING_REGEX: Final = re.compile(r"\bRETURNING\b", re.IGNORECASE)
_ROW_VERBS: Final = frozenset({"SELECT", "VALUES", "SHOW", "EXPLAIN", "PRAGMA", "DESCRIBE", "DESC", "TABLE"})


def _main_verb_after_with(masked: str) -> str:
    depth = 0
    for match in _VERB_REGEX.finditer(masked):
        token = match.group()
        if token == "(":
            depth += 1
        elif token == ")":
            depth = max(depth - 1, 0)
        elif depth == 0:
            return token.upper()
    return ""


def returns_rows(sql: str) -> bool:
    """Whether executing ``sql`` produces a result set.

    Queries, ``VALUES``, introspection statements and mutations with a
    ``RETURNING`` clause return rows; everything else reports a row count.
    """
    masked = mask_literals(sql)
    match = _LEADING_VERB_REGEX.match(masked)
    if match is None:
        return False
    verb = match.group(1).upper()
    if verb == "WITH":
        verb = _main_verb_after_with(masked[match.end() :])
    if verb in _ROW_VERBS:
        return True
    return bool(_RETURNING_REGEX.search(masked))
