"""Pytest configuration and fixtures for Vigil tests.

This module provides fixtures for:
- Database: file-backed SQLite with foreign keys and working SAVEPOINTs
- Collaborators: fake classifier, notifier, identity provider and dispatcher
- Services: job queue and record store bound to the test session
- Celery: eager task execution
"""

import os
from collections.abc import Generator

# Keep the worker's Celery app off real brokers when it is imported
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import Session, sessionmaker

from vigil_core.config import Settings
from vigil_core.domain.models import Base
from vigil_core.domain.services.jobs import JobQueue
from vigil_core.domain.services.store import SqlRecordStore
from vigil_core.observability.metrics import MetricsCollector
from vigil_core.observability.sink import OperationalSink

from tests.fakes import (
    FakeClassifier,
    FakeIdentityProvider,
    FakeNotifier,
    FrozenClock,
    RecordingDispatcher,
)


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'vigil.db'}",
        redis_url="redis://localhost:6379/15",  # Use DB 15 for tests
        celery_broker_url="memory://",
        celery_result_backend="cache+memory://",
        classifier_url="http://classifier.test",
        identity_provider_url="http://identity.test",
        smtp_host="smtp.test",
        log_json=False,
    )


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine(tmp_path):
    """Create a file-backed SQLite engine for testing.

    A file (rather than ``:memory:``) lets several sessions, and threads,
    see each other's commits, as worker processes do.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'vigil.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works with pysqlite
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    # SQLite only autoincrements INTEGER PRIMARY KEY columns
    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Collaborators
# -----------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def fake_classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def fake_identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def sink(metrics) -> OperationalSink:
    return OperationalSink(metrics=metrics)


@pytest.fixture
def store(db_session) -> SqlRecordStore:
    return SqlRecordStore(db_session)


@pytest.fixture
def job_queue(db_session, dispatcher, clock) -> JobQueue:
    """Job queue on the test session, with a frozen clock."""
    return JobQueue(db_session, dispatcher=dispatcher, lease_seconds=120, clock=clock)


# -----------------------------------------------------------------------------
# FastAPI
# -----------------------------------------------------------------------------


@pytest.fixture
def test_app(test_settings, sync_session_factory, dispatcher):
    """Create the operations app with the test database and dispatcher."""
    from vigil_core.api.deps import get_db, get_dispatcher
    from vigil_core.main import app

    app.state.settings = test_settings

    def override_get_db():
        session = sync_session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    yield app

    # Clean up overrides
    app.dependency_overrides.clear()


# -----------------------------------------------------------------------------
# Celery
# -----------------------------------------------------------------------------


@pytest.fixture
def celery_eager():
    """Run worker tasks synchronously."""
    from vigil_worker.celery_app import app

    app.conf.update(task_always_eager=True, task_eager_propagates=True)
    yield app
    app.conf.update(task_always_eager=False, task_eager_propagates=False)


# -----------------------------------------------------------------------------
# Cleanup Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    from vigil_core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
