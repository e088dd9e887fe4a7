"""
Versioned, reversible schema for the anomaly scenarios.

The versions are alembic revisions under `schema/versions`, numbered 0001, 0002, ...
`Migrator` maps those revisions to plain integer versions (0 meaning nothing applied)
and runs alembic's upgrade and downgrade commands against one database.
"""

import logging
from pathlib import Path
from typing import List, Tuple

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.util import CommandError
from psycopg.conninfo import conninfo_to_dict
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError


logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema"


class MigrationError(Exception):
    """Raised when a schema version cannot be applied or reverted."""


def sqlalchemy_url(conninfo: str) -> URL:
    """The psycopg connection string as a SQLAlchemy URL on the psycopg 3 driver."""
    params = conninfo_to_dict(conninfo)
    port = params.pop("port", None)
    return URL.create(
        "postgresql+psycopg",
        username=params.pop("user", None),
        password=params.pop("password", None),
        host=params.pop("host", None),
        port=int(port) if port else None,
        database=params.pop("dbname", None),
        query={key: str(value) for key, value in params.items()},
    )


def make_config(conninfo: str) -> Config:
    config = Config()
    config.set_main_option("script_location", str(SCHEMA_PATH))
    # config options go through configparser interpolation
    url = sqlalchemy_url(conninfo).render_as_string(hide_password=False)
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return config


def revision_id(version: int) -> str:
    return "base" if version == 0 else f"{version:04d}"


def version_number(revision: str | None) -> int:
    return int(revision) if revision else 0


class Migrator:

    config: Config
    script: ScriptDirectory

    def __init__(self, conninfo: str):
        self.config = make_config(conninfo)
        self.script = ScriptDirectory.from_config(self.config)

    def versions(self) -> List[int]:
        return sorted(version_number(script.revision) for script in self.script.walk_revisions())

    def latest_version(self) -> int:
        return max(self.versions(), default=0)

    def current_version(self) -> int:
        engine = create_engine(self.config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)
        try:
            with engine.connect() as conn:
                return version_number(MigrationContext.configure(conn).get_current_revision())
        except SQLAlchemyError as exc:
            raise MigrationError(f"Cannot read the schema version: {exc}") from exc
        finally:
            engine.dispose()

    def list_migrations(self) -> List[Tuple[int, str, bool]]:
        current = self.current_version()
        migrations = []
        for script in reversed(list(self.script.walk_revisions())):
            version = version_number(script.revision)
            migrations.append((version, script.doc, version <= current))
        return migrations

    def has_migrations_to_apply_up(self, target: int | None = None) -> bool:
        return self._resolve_target(target) > self.current_version()

    def has_migrations_to_rollback(self) -> bool:
        return self.current_version() > 0

    def migrate_up(self, target: int | None = None) -> List[int]:
        target = self._resolve_target(target)
        current = self.current_version()
        applied = [v for v in self.versions() if current < v <= target]
        if not applied:
            logger.info("Schema is up-to-date at version %s", current)
            return []

        self._upgrade("head" if target == self.latest_version() else revision_id(target))
        return applied

    def rollback(self, steps: int = 1) -> List[int]:
        if steps < 1:
            raise MigrationError(f"Cannot roll back {steps} steps")

        current = self.current_version()
        reverted = [v for v in reversed(self.versions()) if v <= current][:steps]
        if not reverted:
            return []

        self._downgrade(f"-{len(reverted)}")
        return reverted

    def rollback_to_version(self, target: int) -> List[int]:
        if target != 0:
            self._resolve_target(target)

        current = self.current_version()
        reverted = [v for v in reversed(self.versions()) if target < v <= current]
        if not reverted:
            return []

        self._downgrade(revision_id(target))
        return reverted

    def _resolve_target(self, target: int | None) -> int:
        if target is None:
            return self.latest_version()
        if target not in self.versions():
            raise MigrationError(f"Unknown schema version {target}")
        return target

    def _upgrade(self, revision: str) -> None:
        logger.info("Upgrading schema to %s", revision)
        try:
            command.upgrade(self.config, revision)
        except (CommandError, SQLAlchemyError) as exc:
            raise MigrationError(f"Failed to upgrade to {revision}: {exc}") from exc

    def _downgrade(self, revision: str) -> None:
        logger.info("Downgrading schema to %s", revision)
        try:
            command.downgrade(self.config, revision)
        except (CommandError, SQLAlchemyError) as exc:
            raise MigrationError(f"Failed to downgrade to {revision}: {exc}") from exc
