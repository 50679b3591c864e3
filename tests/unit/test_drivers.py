from contextlib import asynccontextmanager, nullcontext

import aiosqlite
import asyncmy.errors
import asyncpg
import pytest

from querycore.adapters.aiosqlite import AiosqliteConfig, coerce_parameter
from querycore.adapters.asyncmy import AsyncmyExceptionHandler
from querycore.adapters.asyncpg import AsyncpgDriver, AsyncpgExceptionHandler
from querycore.core.dialect import Dialect
from querycore.core.result import ExecutionResult
from querycore.driver import AsyncDriverAdapterBase, returns_rows
from querycore.exceptions import (
    DatabaseConnectionError,
    ForeignKeyViolationError,
    IntegrityError,
    NotNullViolationError,
    QueryError,
    SQLParsingError,
    UniqueViolationError,
)

pytestmark = pytest.mark.anyio


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT 1",
        "  select * from audios",
        "(SELECT 1) UNION (SELECT 2)",
        "VALUES (1), (2)",
        "PRAGMA table_info(audios)",
        "EXPLAIN SELECT 1",
        "SHOW TABLES",
        "WITH recent AS (SELECT * FROM audios) SELECT * FROM recent",
        "INSERT INTO audios (title) VALUES ($1) RETURNING id",
        "DELETE FROM audios WHERE id = $1 RETURNING *",
    ],
)
def test_returns_rows(sql):
    assert returns_rows(sql)


@pytest.mark.parametrize(
    "sql",
    [
        "INSERT INTO audios (title) VALUES ('SELECT')",
        "UPDATE audios SET title = 'returning' WHERE id = ?",
        "DELETE FROM audios",
        "CREATE TABLE audios (id INTEGER)",
        "WITH stale AS (SELECT id FROM audios) DELETE FROM audios WHERE id IN (SELECT id FROM stale)",
        "",
    ],
)
def test_does_not_return_rows(sql):
    assert not returns_rows(sql)


@pytest.mark.parametrize(
    ("status", "expected"),
    [("INSERT 0 1", 1), ("UPDATE 3", 3), ("DELETE 0", 0), ("CREATE TABLE", None), ("", None)],
)
def test_asyncpg_status_parsing(status, expected):
    assert AsyncpgDriver._parse_asyncpg_status(status) == expected


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (asyncpg.exceptions.UniqueViolationError("duplicate key"), UniqueViolationError),
        (asyncpg.exceptions.ForeignKeyViolationError("missing parent"), ForeignKeyViolationError),
        (asyncpg.exceptions.NotNullViolationError("null title"), NotNullViolationError),
        (asyncpg.exceptions.CheckViolationError("check failed"), IntegrityError),
        (asyncpg.exceptions.PostgresSyntaxError("syntax error"), SQLParsingError),
        (asyncpg.exceptions.UndefinedTableError("no such relation"), SQLParsingError),
        (asyncpg.exceptions.DivisionByZeroError("division by zero"), QueryError),
        (asyncpg.exceptions.InterfaceError("connection closed"), DatabaseConnectionError),
    ],
)
async def test_asyncpg_error_mapping(error, expected):
    with pytest.raises(expected) as exc_info:
        async with AsyncpgExceptionHandler():
            raise error
    assert exc_info.value.__cause__ is error


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (asyncmy.errors.IntegrityError(1062, "Duplicate entry '1' for key 'PRIMARY'"), UniqueViolationError),
        (asyncmy.errors.IntegrityError(1452, "Cannot add or update a child row"), ForeignKeyViolationError),
        (asyncmy.errors.IntegrityError(1048, "Column 'title' cannot be null"), NotNullViolationError),
        (asyncmy.errors.IntegrityError(1062 + 10_000, "other"), IntegrityError),
        (asyncmy.errors.ProgrammingError(1064, "You have an error in your SQL syntax"), SQLParsingError),
        (asyncmy.errors.OperationalError(2013, "Lost connection"), DatabaseConnectionError),
        (asyncmy.errors.OperationalError(1205, "Lock wait timeout"), QueryError),
    ],
)
async def test_asyncmy_error_mapping(error, expected):
    with pytest.raises(expected):
        async with AsyncmyExceptionHandler():
            raise error


async def test_other_errors_are_left_alone():
    with pytest.raises(KeyError):
        async with AsyncpgExceptionHandler():
            raise KeyError("x")


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, 1), (3, 3), ({"a": 1}, '{"a":1}'), ((1, 2), "[1,2]"), (None, None)],
)
def test_sqlite_parameter_coercion(value, expected):
    assert coerce_parameter(value) == expected


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("INSERT INTO audios (id, title) VALUES (1, 'a')", UniqueViolationError),
        ("INSERT INTO audios (id, title) VALUES (2, NULL)", NotNullViolationError),
        ("INSERT INTO talks (audio_id) VALUES (99)", ForeignKeyViolationError),
        ("SELEC * FROM audios", SQLParsingError),
        ("SELECT * FROM missing_table", SQLParsingError),
    ],
)
async def test_sqlite_error_mapping(sql, expected):
    config = AiosqliteConfig()
    driver = config.create_driver()
    try:
        await driver.dispatch("CREATE TABLE audios (id INTEGER PRIMARY KEY, title TEXT NOT NULL)", [])
        await driver.dispatch("CREATE TABLE talks (audio_id INTEGER REFERENCES audios (id))", [])
        await driver.dispatch("INSERT INTO audios (id, title) VALUES (1, 'a')", [])
        with pytest.raises(expected) as exc_info:
            await driver.dispatch(sql, [])
        assert isinstance(exc_info.value.__cause__, aiosqlite.Error)
    finally:
        await driver.close()


async def test_sqlite_dispatch_reports_rows_and_counts():
    driver = AiosqliteConfig().create_driver()
    try:
        await driver.dispatch("CREATE TABLE t (id INTEGER, flag INTEGER)", [])
        inserted = await driver.dispatch("INSERT INTO t (id, flag) VALUES (?, ?), (?, ?)", [1, True, 2, False])
        assert inserted == ExecutionResult(rows=[], affected_rows=2)
        assert await driver.dispatch("SELECT id, flag FROM t ORDER BY id", []) == [
            {"id": 1, "flag": 1},
            {"id": 2, "flag": 0},
        ]
    finally:
        await driver.close()


class OneConnectionConfig:
    """Hands out the same placeholder connection and counts how often."""

    def __init__(self) -> None:
        self.borrowed = 0

    @asynccontextmanager
    async def provide_connection(self):
        self.borrowed += 1
        yield "connection"


class RecordingDriver(AsyncDriverAdapterBase):
    dialect = Dialect.POSTGRES

    def __init__(self) -> None:
        super().__init__(OneConnectionConfig())  # type: ignore[arg-type]
        self.statements: list[tuple[str, str]] = []

    async def _execute_statement(self, connection, sql, params):
        self.statements.append((connection, sql))
        return []

    def handle_database_exceptions(self):
        return nullcontext()


async def test_transaction_pins_one_connection_and_commits():
    driver = RecordingDriver()
    async with driver.transaction() as pinned:
        assert pinned.dialect is Dialect.POSTGRES
        await pinned.dispatch("UPDATE audios SET status = $1", ["draft"])
        await pinned.dispatch("DELETE FROM ratings", [])
    assert driver.config.borrowed == 1
    assert driver.statements == [
        ("connection", "BEGIN"),
        ("connection", "UPDATE audios SET status = $1"),
        ("connection", "DELETE FROM ratings"),
        ("connection", "COMMIT"),
    ]


async def test_transaction_rolls_back_and_reraises():
    driver = RecordingDriver()
    with pytest.raises(RuntimeError, match="abort"):
        async with driver.transaction() as pinned:
            await pinned.dispatch("DELETE FROM ratings", [])
            raise RuntimeError("abort")
    assert [sql for _, sql in driver.statements] == ["BEGIN", "DELETE FROM ratings", "ROLLBACK"]


async def test_sqlite_transaction_is_all_or_nothing():
    driver = AiosqliteConfig().create_driver()
    try:
        await driver.dispatch("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT NOT NULL)", [])
        async with driver.transaction() as pinned:
            await pinned.dispatch("INSERT INTO t (name) VALUES (?)", ["kept"])
        with pytest.raises(NotNullViolationError):
            async with driver.transaction() as pinned:
                await pinned.dispatch("INSERT INTO t (name) VALUES (?)", ["dropped"])
                await pinned.dispatch("INSERT INTO t (name) VALUES (?)", [None])
        assert await driver.dispatch("SELECT name FROM t", []) == [{"name": "kept"}]
    finally:
        await driver.close()
