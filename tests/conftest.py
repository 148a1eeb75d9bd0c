"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine, event

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.ext.compiler import compiles

from joydrop.config import JoydropConfig
from joydrop.database.models import Base


@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


def _enable_sqlite_transactions(engine: Engine, begin: str = "BEGIN") -> Engine:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs work under pysqlite.

    *begin* is ``BEGIN IMMEDIATE`` for multi-threaded tests so writers
    take the database lock up front instead of failing on upgrade.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(begin)

    return engine


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Joydrop tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by the API routes).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_sqlite_transactions(engine)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def threaded_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests that race real threads.

    Every connection is its own transaction; ``BEGIN IMMEDIATE`` makes
    concurrent writers queue on the database lock.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'joydrop.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _enable_sqlite_transactions(engine, begin="BEGIN IMMEDIATE")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_config() -> JoydropConfig:
    return JoydropConfig(
        app_name="Joydrop Test",
        api_port=8000,
        leaderboard_default_limit=10,
        leaderboard_max_limit=50,
        map_point_limit=100,
        slug_retry_attempts=5,
    )


@pytest.fixture
def client(db_engine, test_config):
    """FastAPI TestClient wired to the in-memory engine."""
    from fastapi.testclient import TestClient

    from joydrop.api.deps import get_config, get_engine
    from joydrop.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: test_config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
