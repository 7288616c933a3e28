"""
Test fixtures for the entitlement service tests.

Provides database session fixtures, an API client wired to the test
database, and helpers for building entitlements and auth headers.
"""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-identity-tokens-0123456789")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from typing import Callable, Generator
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from rockid.core.jwt import create_access_token
from rockid.models import UserEntitlement, ProcessedEvent  # noqa: F401 - registers tables
from rockid.services.store import EntitlementStore

WEBHOOK_SECRET = "rc_test_webhook_secret"

# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def store(test_session: Session) -> EntitlementStore:
    """Entitlement store bound to the test session."""
    return EntitlementStore(test_session)


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """
    File-backed SQLite engine for tests that use several threads.

    Transactions start with BEGIN IMMEDIATE so concurrent writers queue on the
    database lock instead of failing with "database is locked".
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def make_entitlement(test_session: Session) -> Callable[..., UserEntitlement]:
    """Factory that inserts an entitlement row directly."""

    def _make(user_id: str, tokens: int = 1, **fields) -> UserEntitlement:
        entitlement = UserEntitlement(user_id=user_id, tokens=tokens, **fields)
        test_session.add(entitlement)
        test_session.commit()
        test_session.refresh(entitlement)
        return entitlement

    return _make


@pytest.fixture(scope="function")
def client(test_engine):
    """Create test client with test database and a configured webhook secret."""
    from rockid.main import app
    from rockid.db import get_session
    from rockid.api.deps import get_webhook_secret

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[str], dict]:
    """Build Authorization headers carrying a verified identity for a user id."""

    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest.fixture
def webhook_headers() -> dict:
    return {"Authorization": f"Bearer {WEBHOOK_SECRET}"}


@pytest.fixture
def fetch(test_engine) -> Callable[[str], UserEntitlement | None]:
    """Fresh read of an entitlement through a new session."""

    def _fetch(user_id: str) -> UserEntitlement | None:
        with Session(test_engine) as session:
            return EntitlementStore(session).get(user_id)

    return _fetch
