"""
Database session management with SQLAlchemy async
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.dialects import postgresql, sqlite
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development" and settings.LOG_LEVEL.upper() == "DEBUG",
    poolclass=NullPool,
    future=True
)

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session


def upsert_statement(session: AsyncSession, model):
    """
    Build a dialect-specific INSERT that supports ON CONFLICT.

    PostgreSQL is the production target; SQLite is accepted so the
    same upsert paths run against an in-memory database.
    """
    dialect_name = session.bind.dialect.name if session.bind is not None else "postgresql"
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)
