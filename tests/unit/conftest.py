"""Shared fakes for unit tests that never touch a real database."""

import inspect
from contextlib import asynccontextmanager, nullcontext
from typing import Any, Callable, Optional

import pytest

from querycore.core.cache import ResultCache
from querycore.core.dialect import Dialect
from querycore.driver import AsyncDriverAdapterBase

Responder = Callable[[str, "list[Any]"], Any]


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_millis(self, millis: float) -> None:
        self.now += millis / 1000


class FakeDriver(AsyncDriverAdapterBase):
    """Driver double recording every dispatched statement.

    ``responder`` receives the translated SQL and bound parameters and returns
    (or raises, or awaits) what a real driver would.
    """

    def __init__(self, responder: "Optional[Responder]" = None, dialect: Dialect = Dialect.SQLITE) -> None:
        super().__init__(None)  # type: ignore[arg-type]
        self.dialect = dialect  # type: ignore[misc]
        self.responder = responder or (lambda sql, params: [])
        self.calls: list[tuple[str, list[Any]]] = []
        self.closed = False

    async def dispatch(self, sql: str, params: "list[Any]") -> Any:
        self.calls.append((sql, list(params)))
        result = self.responder(sql, list(params))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _execute_statement(self, connection: Any, sql: str, params: "list[Any]") -> Any:
        raise NotImplementedError

    def handle_database_exceptions(self) -> Any:
        return nullcontext()

    @asynccontextmanager
    async def transaction(self) -> Any:
        self.calls.append(("BEGIN", []))
        try:
            yield self
        except BaseException:
            self.calls.append(("ROLLBACK", []))
            raise
        self.calls.append(("COMMIT", []))

    async def close(self) -> None:
        self.closed = True


def table_responder(rows: "list[dict[str, Any]]") -> Responder:
    """Answer count queries with ``len(rows)`` and data queries with a LIMIT/OFFSET slice."""

    def respond(sql: str, params: "list[Any]") -> Any:
        if "COUNT(*) AS total" in sql:
            return [{"total": len(rows)}]
        if sql.endswith("LIMIT ? OFFSET ?"):
            limit, offset = params[-2:]
            return rows[offset : offset + limit]
        return list(rows)

    return respond


def make_rows(count: int) -> "list[dict[str, Any]]":
    return [{"id": index, "title": f"Lecture {index}", "subject": "biology"} for index in range(1, count + 1)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ResultCache:
    return ResultCache(clock=clock)
