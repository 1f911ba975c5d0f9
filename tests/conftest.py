"""
conftest.py — Shared Test Fixtures for the storefront sync core

Provides an in-memory SQLite database, a session factory bound to it,
a fresh cache manager and a scriptable fake Square connector. Payload
and row builders live in tests/factories.py.

Business Rules:
- All tests run against an isolated in-memory DB
- The fake connector never touches the network
- Each test function gets fresh tables (created, then dropped)

Called by: all test files via pytest autodiscovery
Depends on: storefront.models (Base), storefront.cache.regions
"""

import os
os.environ["DATABASE_URL"] = "sqlite://"  # Must be set before importing storefront modules

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

from storefront.cache.regions import CacheInvalidationManager
from storefront.models import Base
from tests.factories import FakeConnector

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def session_factory():
    return TestSessionLocal


@pytest.fixture()
def cache() -> CacheInvalidationManager:
    return CacheInvalidationManager()


@pytest.fixture()
def connector() -> FakeConnector:
    return FakeConnector()
