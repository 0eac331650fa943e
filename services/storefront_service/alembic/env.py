"""Alembic entrypoint for the storefront service.

The database may be shared with the auth provider's own schemas, so autogenerate
only looks at tables declared by the storefront models and the version table is
kept separate.
"""

import asyncio
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.append(str(PROJECT_ROOT))

from libs.common.config import get_settings  # noqa: E402
from libs.db.base import Base  # noqa: E402
from services.storefront_service import models  # noqa: E402,F401

VERSION_TABLE = "alembic_version_storefront"

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
STOREFRONT_TABLES = frozenset(target_metadata.tables)

url = get_settings().DATABASE_URL
config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table":
        return name in STOREFRONT_TABLES
    table = getattr(obj, "table", None)
    if table is not None:
        return table.name in STOREFRONT_TABLES
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        version_table=VERSION_TABLE,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connect_args = {}
    if url.startswith("postgresql+psycopg"):
        # Poolers (pgbouncer) reject psycopg's server-side prepared statements
        connect_args["prepare_threshold"] = 0

    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=connect_args,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
