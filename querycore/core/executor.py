"""Single-statement execution against the configured backend."""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional, Union

from querycore.core.dialect import Dialect, count_placeholders, translate
from querycore.core.result import QueryResult, normalize_result
from querycore.exceptions import (
    ExtraParameterError,
    MissingParameterError,
    QueryCoreError,
    QueryError,
    QueryTimeoutError,
)
from querycore.utils.logging import get_logger, log_with_context

if TYPE_CHECKING:
    from querycore.driver import AsyncDriverAdapterBase, PinnedConnectionDriver
    from querycore.typing import ParameterList

__all__ = ("QueryExecutor",)

logger = get_logger("core.executor")


class QueryExecutor:
    """Translate, bind and run one statement.

    No caching and no retries happen here: every call is exactly one backend
    round trip (or none, when the template or its parameters are rejected).
    """

    __slots__ = ("_driver",)

    def __init__(self, driver: "Union[AsyncDriverAdapterBase, PinnedConnectionDriver]") -> None:
        self._driver = driver

    @property
    def dialect(self) -> Dialect:
        return Dialect.from_name(self._driver.dialect)

    @property
    def driver(self) -> "Union[AsyncDriverAdapterBase, PinnedConnectionDriver]":
        return self._driver

    async def execute(
        self, sql: str, params: "ParameterList" = (), *, timeout: "Optional[float]" = None
    ) -> QueryResult:
        """Run ``sql`` with ``params`` and return its normalized result.

        Args:
            sql: Query template with ``?`` placeholders.
            params: Positional parameters, one per placeholder.
            timeout: Seconds to wait for the backend before giving up.

        Raises:
            TranslationError: If the template cannot be translated.
            MissingParameterError: If fewer parameters than placeholders are given.
            ExtraParameterError: If more parameters than placeholders are given.
            QueryTimeoutError: If the backend does not answer within ``timeout``.
            QueryError: If the backend rejects the statement.

        Returns:
            The statement's rows and row count.
        """
        dialect = self.dialect
        translated = translate(sql, dialect)
        bound = list(params)
        expected = count_placeholders(sql)
        if len(bound) < expected:
            msg = f"Query expects {expected} parameters but {len(bound)} were supplied"
            raise MissingParameterError(msg, sql)
        if len(bound) > expected:
            msg = f"Query expects {expected} parameters but {len(bound)} were supplied"
            raise ExtraParameterError(msg, sql)

        started = time.perf_counter()
        try:
            dispatch = self._driver.dispatch(translated, bound)
            raw = await (dispatch if timeout is None else asyncio.wait_for(dispatch, timeout))
        except asyncio.TimeoutError as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.warning("Query timed out on %s after %.1f ms", dialect, elapsed_ms)
            msg = f"Query did not complete within {timeout} seconds"
            raise QueryTimeoutError(msg) from exc
        except QueryCoreError as exc:
            logger.warning("Query failed on %s: %s", dialect, exc)
            raise
        except Exception as exc:
            logger.warning("Query failed on %s: %s", dialect, exc)
            raise QueryError(str(exc) or type(exc).__name__) from exc

        result = normalize_result(raw)
        log_with_context(
            logger,
            logging.DEBUG,
            "Executed query",
            dialect=str(dialect),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
            row_count=result.row_count,
        )
        return result
