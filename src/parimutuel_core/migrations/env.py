"""Alembic environment for the ``parimutuel`` schema.

The database URL comes from the application config, so the same
``config.yaml`` / ``PARIMUTUEL_DATABASE_URL`` that drive the API drive
migrations too::

    alembic -x config=config.yaml upgrade head

Without ``-x config=...`` the ``sqlalchemy.url`` in alembic.ini is the
fallback, still subject to the env override.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

import parimutuel_core.db.tables  # noqa: F401  (registers every table on Base.metadata)
from parimutuel_core.config.loader import load_config
from parimutuel_core.config.schema import DatabaseConfig
from parimutuel_core.db.base import Base
from parimutuel_core.db.engine import sqlalchemy_url
from parimutuel_core.db.tables._schema import SCHEMA

alembic_cfg = context.config
if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name)


def database_url() -> str:
    config_path = context.get_x_argument(as_dictionary=True).get("config")
    app_config = load_config(config_path)
    if config_path is None and app_config.database.url == DatabaseConfig().url:
        # No config file and no env override: use alembic.ini
        ini_url = alembic_cfg.get_main_option("sqlalchemy.url")
        if ini_url:
            return sqlalchemy_url(ini_url)
    return sqlalchemy_url(app_config.database.url)


def _only_our_schema(obj, name, type_, reflected, compare_to) -> bool:
    return type_ != "table" or obj.schema == SCHEMA


_COMMON = dict(
    target_metadata=Base.metadata,
    include_schemas=True,
    include_object=_only_our_schema,
    version_table_schema=SCHEMA,
)


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(url=database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"}, **_COMMON)
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        # The version table lives inside the schema, so it must exist first
        connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}"))
        connection.commit()

        context.configure(connection=connection, **_COMMON)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
