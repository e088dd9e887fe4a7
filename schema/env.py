"""Alembic environment for the anomaly schema.

The database URL comes from the `sqlalchemy.url` option set by `migrations.make_config`,
or from PG_CONNECTION_STRING when alembic is run from the command line.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

import db
from migrations import sqlalchemy_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# the schema is written by hand in the revisions, there is no model metadata
target_metadata = None


def get_database_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    return sqlalchemy_url(db.connection_string()).render_as_string(hide_password=False)


def run_migrations_offline() -> None:
    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        transaction_per_migration=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = get_database_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            transaction_per_migration=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
