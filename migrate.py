"""
Interactive schema management for the anomaly scenarios.

    PG_CONNECTION_STRING="host=localhost user=postgres password=password dbname=isolation_levels" python migrate.py
"""

import logging
import sys
from os import environ

import psycopg
import typer

import db
from migrations import MigrationError, Migrator


logger = logging.getLogger(__name__)

ACTIONS = (
    "Migrate to latest",
    "Migrate to version",
    "Rollback latest",
    "Rollback to version",
    "List migrations",
    "Quit",
)


def list_migrations(migrator: Migrator) -> None:
    for version, description, applied in migrator.list_migrations():
        typer.echo(f"  {version:>3}  {'applied' if applied else 'pending':<8} {description}")


def choose_action() -> str:
    typer.echo("==========================")
    for number, action in enumerate(ACTIONS, start=1):
        typer.echo(f"{number}. {action}")

    while True:
        number = typer.prompt("Choose action", type=int)
        if 1 <= number <= len(ACTIONS):
            return ACTIONS[number - 1]
        typer.echo(f"Choose a number between 1 and {len(ACTIONS)}")


def perform(migrator: Migrator, action: str) -> None:
    match action:
        case "Migrate to latest":
            applied = migrator.migrate_up()
            typer.echo(f"Applied versions: {applied}" if applied else "Schema is up-to-date")

        case "Migrate to version":
            version = typer.prompt("Input version number", type=int)
            if not migrator.has_migrations_to_apply_up(version):
                typer.echo(f"No migrations to apply up to version {version}")
            else:
                typer.echo(f"Applied versions: {migrator.migrate_up(version)}")

        case "Rollback latest":
            if not migrator.has_migrations_to_rollback():
                typer.echo("No migration to rollback")
            elif typer.confirm(f"Roll back version {migrator.current_version()}?", default=False):
                typer.echo(f"Reverted versions: {migrator.rollback(1)}")

        case "Rollback to version":
            version = typer.prompt("Input version number", type=int)
            if typer.confirm(f"Roll back every version above {version}?", default=False):
                typer.echo(f"Reverted versions: {migrator.rollback_to_version(version)}")

        case "List migrations":
            list_migrations(migrator)

        case _:
            raise ValueError(f"Unknown action {action}")


def main() -> int:
    conninfo = db.connection_string()
    if not db.database_name(conninfo):
        typer.echo("Database not specified in connection string")
        return 1

    typer.echo(f"Trying to connect to {db.describe(conninfo)}")

    if not db.database_exists(conninfo):
        dbname = db.database_name(conninfo)
        if not typer.confirm(f"Database {dbname} does not exist. Create?", default=True):
            return 0
        db.create_database(conninfo)

    migrator = Migrator(conninfo)
    typer.echo()
    typer.echo(f"Current version: {migrator.current_version()}")
    list_migrations(migrator)

    while True:
        action = choose_action()
        if action == "Quit":
            return 0

        try:
            perform(migrator, action)
        except MigrationError as exc:
            logger.error("%s", exc)


if __name__ == "__main__":
    logging.basicConfig(
        level=environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(levelname)s: %(message)s",
    )
    try:
        sys.exit(main())
    except (RuntimeError, MigrationError, psycopg.Error, typer.Abort) as exc:
        print(exc)
        sys.exit(1)
