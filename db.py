import logging
from os import environ

import psycopg
from psycopg import AsyncConnection, AsyncCursor, Connection, IsolationLevel, sql
from psycopg.conninfo import conninfo_to_dict, make_conninfo
from psycopg.rows import dict_row


logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE = "40001"
DUPLICATE_DATABASE = "42P04"

MAINTENANCE_DB = "postgres"

# `None` stands for "no transaction": every statement autocommits.
ISOLATION_LEVELS: dict[str, IsolationLevel | None] = {
    "none": None,
    "read-uncommitted": IsolationLevel.READ_UNCOMMITTED,
    "read-committed": IsolationLevel.READ_COMMITTED,
    "repeatable-read": IsolationLevel.REPEATABLE_READ,
    "serializable": IsolationLevel.SERIALIZABLE,
}


def parse_isolation(isolation_level: str) -> IsolationLevel | None:
    try:
        return ISOLATION_LEVELS[isolation_level]
    except KeyError:
        raise ValueError(f"Unknown isolation level {isolation_level}") from None


def isolation_name(level: IsolationLevel | None) -> str:
    for name, value in ISOLATION_LEVELS.items():
        if value == level:
            return name
    raise ValueError(f"Unknown isolation level {level}")


def connection_string() -> str:
    connection_string = environ.get("PG_CONNECTION_STRING")
    if not connection_string:
        raise RuntimeError("Missing PG_CONNECTION_STRING env")

    return connection_string


async def connect(conninfo: str | None = None) -> AsyncConnection:
    return await AsyncConnection.connect(
        conninfo or connection_string(),
        row_factory=dict_row,
        autocommit=True,
    )


def connect_sync(conninfo: str | None = None) -> Connection:
    return Connection.connect(
        conninfo or connection_string(),
        row_factory=dict_row,
        autocommit=True,
    )


# transaction helpers

async def begin(cursor: AsyncCursor, level: IsolationLevel | None) -> None:
    if level is None:
        return

    await cursor.execute("begin transaction")
    match level:
        case IsolationLevel.READ_UNCOMMITTED:
            await cursor.execute("set transaction isolation level read uncommitted")
        case IsolationLevel.READ_COMMITTED:
            await cursor.execute("set transaction isolation level read committed")
        case IsolationLevel.REPEATABLE_READ:
            await cursor.execute("set transaction isolation level repeatable read")
        case IsolationLevel.SERIALIZABLE:
            await cursor.execute("set transaction isolation level serializable")
        case _:
            raise ValueError(f"Unknown isolation level {level}.")


async def commit(cursor: AsyncCursor, level: IsolationLevel | None) -> None:
    if level is not None:
        await cursor.execute("commit")


async def rollback(cursor: AsyncCursor, level: IsolationLevel | None) -> None:
    if level is not None:
        await cursor.execute("rollback")


def is_serialization_failure(exc: BaseException) -> bool:
    return isinstance(exc, psycopg.Error) and exc.sqlstate == SERIALIZATION_FAILURE


# database provisioning

def database_name(conninfo: str) -> str | None:
    return conninfo_to_dict(conninfo).get("dbname")


def describe(conninfo: str) -> str:
    params = conninfo_to_dict(conninfo)
    return (
        f"database {params.get('dbname')} on host {params.get('host', 'localhost')}"
        f" under username {params.get('user')}"
    )


def database_exists(conninfo: str) -> bool:
    dbname = database_name(conninfo)
    with connect_sync(make_conninfo(conninfo, dbname=MAINTENANCE_DB)) as conn:
        row = conn.execute(
            "select 1 as found from pg_database where datname = %s",
            (dbname,),
        ).fetchone()

    return row is not None


def create_database(conninfo: str) -> bool:
    """Create the database named by `conninfo`; returns False if it already existed."""
    dbname = database_name(conninfo)
    if not dbname:
        raise ValueError("Database not specified in connection string")

    with connect_sync(make_conninfo(conninfo, dbname=MAINTENANCE_DB)) as conn:
        try:
            conn.execute(sql.SQL("create database {}").format(sql.Identifier(dbname)))
        except psycopg.Error as exc:
            if exc.sqlstate != DUPLICATE_DATABASE:
                raise
            logger.info("Database %s already exists", dbname)
            return False

    logger.info("Created database %s", dbname)
    return True
