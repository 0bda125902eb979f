"""Pytest configuration and fixtures."""

import os

# Keep the app's own engine off disk during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from resortops.core.rbac import UserRole
from resortops.core.security import create_access_token
from resortops.db.base import Base
from resortops.db.session import enable_sqlite_pragmas, get_db
from resortops.main import app
# Import all models to ensure they're registered with Base.metadata
from resortops.models import *  # noqa: F401,F403
from resortops.models.stock import StockItem
from resortops.services.lifecycle_service import LifecycleService

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
    enable_sqlite_pragmas(engine)
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
def file_session_factory(tmp_path):
    """Sessions over a file-backed database, for tests that need two connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'resortops.db'}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_pragmas(engine)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiters during tests to avoid flaky failures
    from resortops.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


def make_token(user_id: int = 7, role: UserRole = UserRole.STAFF) -> str:
    return create_access_token(
        data={"sub": str(user_id), "email": f"user{user_id}@resort.test", "role": role.value}
    )


@pytest.fixture
def auth_headers() -> dict:
    """Headers for a housekeeping/front-desk staff member."""
    return {"Authorization": f"Bearer {make_token(7, UserRole.STAFF)}"}


@pytest.fixture
def manager_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(2, UserRole.MANAGER)}"}


@pytest.fixture
def service(db_session: Session) -> LifecycleService:
    return LifecycleService(db_session)


@pytest.fixture
def towels(service: LifecycleService) -> StockItem:
    """A stock item whose ledger sums to 10."""
    return service.create_stock_item(
        actor_id="1",
        name="Bath Towel",
        unit="pcs",
        category="Housekeeping",
        min_level=4,
        max_level=40,
        opening_level=10,
    )
