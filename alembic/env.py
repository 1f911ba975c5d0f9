"""
env.py — Alembic migration environment for the storefront mirror

The target database is DATABASE_URL from storefront settings; the metadata
is storefront.models.Base (products, sync_logs).

Business Rules:
- One transaction per migration
- SQLite cannot ALTER most columns in place, so every migration renders in
  batch mode (copy-and-move tables)
- Column type changes are compared too: the mirror relies on Numeric prices
  and UTC datetimes, and autogenerate should flag drift in either
- The data directory for a file database is created before connecting

Called by: alembic CLI (alembic.ini at repo root)
Depends on: storefront.config (Settings), storefront.models (Base), storefront.database
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from storefront.config import Settings
from storefront.database import _ensure_sqlite_dir
from storefront.models import Base

config = context.config

database_url = Settings().database_url
config.set_main_option("sqlalchemy.url", database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
is_sqlite = database_url.startswith("sqlite")


def _configure_options() -> dict:
    return {
        "target_metadata": target_metadata,
        "render_as_batch": is_sqlite,
        "compare_type": True,
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL without a connection (alembic upgrade --sql)."""
    context.configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    if is_sqlite:
        _ensure_sqlite_dir(database_url)
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options())
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
