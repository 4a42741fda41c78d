"""Pytest configuration and fixtures."""

import os

# Point the app at an in-memory database before it is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from typing import Callable, Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pos_sync.core.config import Settings, get_settings
from pos_sync.db.base import Base
from pos_sync.db.session import get_db, get_session_factory
from pos_sync.main import app
# Import all models to ensure they're registered with Base.metadata
from pos_sync.models import *
from pos_sync.services.pos.registry import AdapterRegistry, get_registry

from factories import FAKE_DESCRIPTOR, FakeAdapter

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(db_engine) -> Callable[[], Session]:
    """Session factory bound to the test engine, for per-client sessions."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with pacing delays disabled and Odoo pointed at a test host."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        sync_batch_delay_ms=0,
        odoo_retry_delay_ms=0,
        odoo_batch_delay_ms=0,
        odoo_url="http://odoo.test",
        odoo_database="testdb",
        odoo_username="admin",
        odoo_password="admin",
    )


@pytest.fixture
def fake_registry() -> AdapterRegistry:
    """Frozen registry holding only the in-memory fake provider."""
    registry = AdapterRegistry()
    registry.register("fake", FakeAdapter, FAKE_DESCRIPTOR)
    return registry.freeze()


@pytest.fixture(scope="function")
def client(
    db_session: Session,
    session_factory: Callable[[], Session],
    fake_registry: AdapterRegistry,
    test_settings: Settings,
) -> Generator[TestClient, None, None]:
    """Create a test client with database, registry and settings overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_registry] = lambda: fake_registry
    app.dependency_overrides[get_settings] = lambda: test_settings
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()
