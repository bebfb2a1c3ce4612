"""
Global pytest fixtures for the Resource Grid test suite.

Provides:
- Async database session on in-memory SQLite
- ASGI test client wired to the real app
- User/bearer token factories for each role
- Fake clock and page source for the client core
"""
import os

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret-for-testing-at-least-32-bytes"
os.environ["ENVIRONMENT"] = "development"

from typing import AsyncGenerator, Callable, Optional
from uuid import uuid4

import pytest
import pytest_asyncio

from resgrid.models.user import User, UserRole
from tests.utils import FakeClock, FakePageSource, create_test_token


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine shared by every connection in the test."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator:
    """Create database tables and provide async session."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from resgrid.shared.db.session import init_models

    await init_models(async_engine)

    session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def db(db_session):
    """Alias for db_session."""
    return db_session


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================

@pytest.fixture
def app():
    """The real Resource Grid app."""
    from resgrid.main import app as resgrid_app

    return resgrid_app


@pytest_asyncio.fixture
async def async_client(app, db) -> AsyncGenerator:
    """Async test client for FastAPI. Overrides get_db to share the test session."""
    from httpx import ASGITransport, AsyncClient

    from resgrid.shared.db.session import get_db

    old_override = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = lambda: db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    if old_override:
        app.dependency_overrides[get_db] = old_override
    else:
        app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def ac(async_client):
    """Alias for async_client."""
    return async_client


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def user_factory(db) -> Callable:
    """Insert a user with the given role and return (user, auth headers)."""

    async def _create(role: UserRole = UserRole.USER, email: Optional[str] = None):
        external_id = f"auth0|{uuid4().hex[:10]}"
        user = User(
            external_id=external_id,
            email=email or f"{role.value.lower()}-{uuid4().hex[:6]}@example.com",
            role=role.value,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        headers = {"Authorization": f"Bearer {create_test_token(external_id, user.email)}"}
        return user, headers

    return _create


# ============================================================================
# Client Core Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def page_source_factory() -> Callable[..., FakePageSource]:
    return FakePageSource
