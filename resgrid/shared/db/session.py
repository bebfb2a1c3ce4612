from dataclasses import dataclass
from threading import Lock
from typing import Any, AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from resgrid.shared.core.config import get_settings
from resgrid.shared.db.base import Base

logger = structlog.get_logger()

# Ensure ORM mappings are registered for scripts that import the DB layer
# without importing `resgrid/main.py`.
import resgrid.models  # noqa: F401, E402

_SQLITE_MEMORY_URL = "sqlite+aiosqlite:///:memory:"


@dataclass(slots=True)
class _DBRuntime:
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    effective_url: str


_db_runtime: _DBRuntime | None = None
_db_runtime_lock = Lock()


def _normalize_db_url(raw_url: str) -> str:
    url = (raw_url or "").strip()
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _resolve_effective_url(settings_obj: Any) -> str:
    db_url = _normalize_db_url(str(getattr(settings_obj, "DATABASE_URL", "") or ""))
    is_testing = bool(getattr(settings_obj, "TESTING", False))
    if is_testing and "sqlite" not in db_url:
        # Tests never write to a real database.
        return _SQLITE_MEMORY_URL
    if not db_url:
        raise ValueError("DATABASE_URL is not set. The application cannot start.")
    return db_url


def _build_engine(effective_url: str, echo: bool) -> AsyncEngine:
    if "sqlite" in effective_url:
        return create_async_engine(
            effective_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        effective_url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=10,
        max_overflow=10,
    )


def _get_runtime() -> _DBRuntime:
    global _db_runtime
    if _db_runtime is not None:
        return _db_runtime
    with _db_runtime_lock:
        if _db_runtime is None:
            settings = get_settings()
            effective_url = _resolve_effective_url(settings)
            engine = _build_engine(effective_url, settings.DB_ECHO)
            _db_runtime = _DBRuntime(
                engine=engine,
                session_maker=async_sessionmaker(
                    engine, class_=AsyncSession, expire_on_commit=False
                ),
                effective_url=effective_url,
            )
            logger.info(
                "db_engine_created",
                dialect=engine.dialect.name,
            )
    return _db_runtime


def get_engine() -> AsyncEngine:
    return _get_runtime().engine


def async_session_maker() -> AsyncSession:
    """Open a new session from the shared session factory."""
    return _get_runtime().session_maker()


async def init_models(engine: AsyncEngine | None = None) -> None:
    """Create all tables. Used by tests, local development and the seed script."""
    target = engine or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db_schema_ready")


async def dispose_engine() -> None:
    global _db_runtime
    with _db_runtime_lock:
        runtime, _db_runtime = _db_runtime, None
    if runtime is not None:
        await runtime.engine.dispose()
        logger.info("db_engine_disposed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
