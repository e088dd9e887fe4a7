import psycopg
import pytest
from psycopg import IsolationLevel

import db
from conftest import FakeCursor


@pytest.mark.parametrize("name, level", [
    ("none", None),
    ("read-uncommitted", IsolationLevel.READ_UNCOMMITTED),
    ("read-committed", IsolationLevel.READ_COMMITTED),
    ("repeatable-read", IsolationLevel.REPEATABLE_READ),
    ("serializable", IsolationLevel.SERIALIZABLE),
])
def test_isolation_names_round_trip(name, level):
    assert db.parse_isolation(name) == level
    assert db.isolation_name(level) == name


def test_unknown_isolation_level():
    with pytest.raises(ValueError, match="Unknown isolation level snapshot"):
        db.parse_isolation("snapshot")


def test_connection_string_is_required(monkeypatch):
    monkeypatch.delenv("PG_CONNECTION_STRING", raising=False)
    with pytest.raises(RuntimeError, match="Missing PG_CONNECTION_STRING env"):
        db.connection_string()


def test_connection_string_from_env(monkeypatch):
    monkeypatch.setenv("PG_CONNECTION_STRING", "host=db user=postgres dbname=isolation_levels")
    assert db.connection_string() == "host=db user=postgres dbname=isolation_levels"


def test_database_name_and_description():
    conninfo = "host=db user=postgres password=secret dbname=isolation_levels"
    assert db.database_name(conninfo) == "isolation_levels"
    assert db.describe(conninfo) == "database isolation_levels on host db under username postgres"
    assert db.database_name("host=db user=postgres") is None


def test_serialization_failure_is_recognised():
    assert db.is_serialization_failure(psycopg.errors.SerializationFailure("could not serialize access"))
    assert not db.is_serialization_failure(psycopg.errors.DeadlockDetected("deadlock detected"))
    assert not db.is_serialization_failure(ValueError("40001"))


@pytest.mark.asyncio
async def test_begin_sets_isolation_level():
    cursor = FakeCursor()
    await db.begin(cursor, IsolationLevel.REPEATABLE_READ)
    await db.commit(cursor, IsolationLevel.REPEATABLE_READ)

    assert cursor.statements == [
        "begin transaction",
        "set transaction isolation level repeatable read",
        "commit",
    ]


@pytest.mark.asyncio
async def test_no_transaction_without_isolation_level():
    cursor = FakeCursor()
    await db.begin(cursor, None)
    await db.commit(cursor, None)
    await db.rollback(cursor, None)

    assert cursor.statements == []
