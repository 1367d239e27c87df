"""
Shared fixtures for QueryKit tests.

Every test runs against ``FakeTransport``, an in-memory stand-in for a
database connection that records each statement it receives and replays
scripted results.
"""

import asyncio

import pytest

from querykit import QueryBuilder


class FakeTransport:
    """
    Records ``(sql, params)`` pairs and replays queued outcomes.

    Each queued outcome is a result (rows list or write summary), an
    exception instance to raise, or a callable ``(sql, params) -> result``.
    When the queue is empty, ``default`` is returned.
    """

    def __init__(self, results=None, default=None, delay=0):
        self.calls = []
        self.results = list(results or [])
        self.default = [] if default is None else default
        self.delay = delay

    def queue(self, *outcomes):
        self.results.extend(outcomes)
        return self

    @property
    def statements(self):
        return [sql for sql, _ in self.calls]

    async def execute(self, sql, params):
        self.calls.append((sql, list(params)))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.results.pop(0) if self.results else self.default
        if callable(outcome) and not isinstance(outcome, type):
            outcome = outcome(sql, params)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class MySQLError(Exception):
    """Shaped like PyMySQL/aiomysql errors: ``args == (errno, message)``."""


class PostgresError(Exception):
    """Shaped like asyncpg errors: ``sqlstate`` plus detail attributes."""

    def __init__(self, message, sqlstate, detail=None, column_name=None, constraint_name=None, table_name=None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.detail = detail
        self.column_name = column_name
        self.constraint_name = constraint_name
        self.table_name = table_name


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def mysql_qb(transport):
    return QueryBuilder(transport, "mysql")


@pytest.fixture
def mariadb_qb(transport):
    return QueryBuilder(transport, "mariadb")


@pytest.fixture
def pg_qb(transport):
    return QueryBuilder(transport, "postgres")
