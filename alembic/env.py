"""Alembic environment configuration for BingoSim.

Online mode migrates the database in DATABASE_URL (pydantic-settings, so
.env works); ``alembic -x db_url=...`` overrides it, e.g. to migrate a
worker's database from a laptop. Offline mode emits SQL to stdout.
SQLite gets batch mode so ALTERs work in local experiments.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from bingosim.config.settings import get_settings
from bingosim.db.session import Base
import bingosim.db.tables  # noqa: F401 (registers all ORM models)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_db_url = context.get_x_argument(as_dictionary=True).get("db_url") or get_settings().DATABASE_URL
config.set_main_option("sqlalchemy.url", _db_url)


def _configure_kwargs(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, **_configure_kwargs(_db_url))
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(_migrate)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
