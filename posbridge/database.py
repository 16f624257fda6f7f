"""
Database Connection Module
Handles the relational store connection using SQLAlchemy async engine.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from posbridge.core.config import get_settings

settings = get_settings()

DATABASE_URL = settings.sqlalchemy_url
IS_SQLITE = DATABASE_URL.startswith("sqlite")

# SQLite pools do not accept sizing arguments
engine_kwargs = {} if IS_SQLITE else {
    "pool_size": 5,  # Connection pool size
    "max_overflow": 10,  # Extra connections when pool is full
    "pool_pre_ping": True,
}

engine = create_async_engine(
    DATABASE_URL,
    echo=settings.db_echo,
    **engine_kwargs,
)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; every persisted datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def get_db() -> AsyncSession:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """
    Dependency for handlers that outlive a single session (SSE, WebSocket).
    """
    return async_session_maker


async def init_db():
    """
    Create all tables in database.
    Called once at application startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
