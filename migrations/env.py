"""Alembic environment script.

SQLite cannot run most ALTER operations directly, so migrations use Alembic
"batch mode" ("move and copy") via render_as_batch=True.
See: https://alembic.sqlalchemy.org/en/latest/batch.html
"""

from __future__ import annotations

import os

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from spec_companion.config import ServerConfig
from spec_companion.database import Base, enable_sqlite_foreign_keys

# Alembic Config object provides access to values within the config file.
config = context.config

# NOTE: We intentionally do not call logging.config.fileConfig() here.
# Alembic configuration lives in `pyproject.toml` ([tool.alembic]) and there is
# no `alembic.ini` with logging sections.

target_metadata = Base.metadata


def _get_database_url() -> str:
    """Get the database URL.

    Priority:
    1. Alembic command-line override (via set_main_option / -x url=...)
    2. DATABASE_URL environment variable
    3. ServerConfig default
    """
    x_args = context.get_x_argument(as_dictionary=True)
    return (
        x_args.get("url")
        or config.get_main_option("sqlalchemy.url")
        or os.getenv("DATABASE_URL")
        or ServerConfig.DATABASE_URL
    )


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    url = _get_database_url()

    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}

    engine = create_engine(url, connect_args=connect_args, poolclass=NullPool)
    enable_sqlite_foreign_keys(engine)

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,  # Required for SQLite
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


run_migrations_online()
