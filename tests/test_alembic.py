"""
test_alembic.py — Run the real migration environment against a scratch SQLite file

Checks that alembic/env.py picks DATABASE_URL up from settings, creates
the data directory, and that upgrade head produces exactly the tables and
columns the models declare.

Called by: pytest
Depends on: alembic/, storefront.models
"""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from storefront.models import Base

ROOT = Path(__file__).parent.parent


@pytest.fixture()
def migration(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path / 'data' / 'storefront.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    cfg = Config()  # no ini file, so alembic leaves test logging alone
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    return cfg, db_url, tmp_path


def test_upgrade_head_matches_models(migration):
    cfg, db_url, tmp_path = migration

    command.upgrade(cfg, "head")

    assert (tmp_path / "data" / "storefront.db").exists()
    engine = create_engine(db_url)
    try:
        insp = inspect(engine)
        assert {"products", "sync_logs"} <= set(insp.get_table_names())
        for table in Base.metadata.sorted_tables:
            assert {c["name"] for c in insp.get_columns(table.name)} == {c.name for c in table.columns}
        assert {ix["name"] for ix in insp.get_indexes("products")} >= {
            "ix_products_storefront",
            "ix_products_synced",
        }
    finally:
        engine.dispose()


def test_downgrade_removes_tables(migration):
    cfg, db_url, _ = migration
    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    engine = create_engine(db_url)
    try:
        assert not {"products", "sync_logs"} & set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def test_offline_mode_renders_sql(migration, capsys):
    cfg, _, _ = migration
    command.upgrade(cfg, "head", sql=True)
    out = capsys.readouterr().out
    assert "CREATE TABLE products" in out
    assert "CREATE TABLE sync_logs" in out
