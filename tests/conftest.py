from os import environ

import pytest

import db
from anomaly.base import Delays
from migrations import Migrator


class FakeCursor:
    """Records statements instead of sending them to a server."""

    def __init__(self, rows=None, fail_on=None):
        self.executed = []
        self.rows = rows or []
        self.rowcount = 1
        self._fail_on = fail_on or {}

    async def execute(self, query, params=None):
        self.executed.append((query, params))
        for fragment, exc in self._fail_on.items():
            if fragment in query:
                raise exc

    async def executemany(self, query, params_seq):
        for params in params_seq:
            await self.execute(query, params)

    async def fetchall(self):
        return list(self.rows)

    async def fetchone(self):
        return self.rows[0] if self.rows else None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def statements(self):
        return [query for query, _ in self.executed]


class FakeConnection:

    def __init__(self, cursor: FakeCursor | None = None):
        self._cursor = cursor or FakeCursor()
        self.closed = False

    def cursor(self):
        return self._cursor

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_cursor():
    return FakeCursor()


@pytest.fixture
def no_delays():
    return Delays(scale=0)


@pytest.fixture(scope="session")
def conninfo():
    if not environ.get("PG_CONNECTION_STRING"):
        pytest.skip("PG_CONNECTION_STRING is not set")

    conninfo = db.connection_string()
    if not db.database_exists(conninfo):
        db.create_database(conninfo)

    Migrator(conninfo).migrate_up()

    return conninfo


@pytest.fixture(scope="session")
def delays():
    return Delays.from_env()
