"""
Alembic Environment Configuration

This file configures Alembic for the rate limit window store.
It handles:
- Database connection from settings (RATE_LIMIT_DATABASE_URL)
- Model imports for autogenerate
- Sync engine creation for migrations (Alembic uses sync drivers)
"""

from logging.config import fileConfig

from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection, make_url

from alembic import context

# Import settings and models
from app.core.setting import settings
from sqlmodel import SQLModel
from app.db import models  # noqa: F401  Import all models so Alembic can detect them
from app.db.sqlite_adapter import get_database_adapter

# this is the Alembic Config object
config = context.config

# Alembic runs on the sync sqlite3 driver: sqlite+aiosqlite:///x -> sqlite:///x
url = make_url(settings.RATE_LIMIT_DATABASE_URL)
database_url = url.set(drivername=url.get_backend_name()).render_as_string(hide_password=False)

config.set_main_option("sqlalchemy.url", database_url)

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Get SQLModel metadata for autogenerate
target_metadata = SQLModel.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Emits the SQL to the script output instead of executing it, so no
    DBAPI is needed.
    """
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Run migrations with a connection."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,  # SQLite cannot ALTER most constraints in place
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    # Same directory handling as the application, so a fresh checkout can migrate
    get_database_adapter().prepare_database(settings.RATE_LIMIT_DATABASE_URL)

    connectable = create_engine(
        database_url,
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        do_run_migrations(connection)

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
