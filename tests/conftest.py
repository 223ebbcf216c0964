"""
Pytest configuration and fixtures
"""

import os

# Pacing and scheduler settings must be in place before core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("REQUEST_MIN_INTERVAL_SECONDS", "0")
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("BATCH_DELAY_SECONDS", "0")
os.environ.setdefault("LOCATION_DELAY_SECONDS", "0")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator
from core.resilience import RateLimiter, RetryPolicy
from models import Base, Provider, ProviderCredential


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite engine so every session gets its own connection"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync_test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    yield engine
    
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def no_wait_limiter():
    return RateLimiter(min_interval=0, name="test")


@pytest.fixture
def limiter_factory():
    """Builds a separate no-wait limiter for each role (client, store, locations)"""
    def build(name="test"):
        return RateLimiter(min_interval=0, name=name)
    return build


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def eitje_credentials():
    return {
        "partner_username": "partner",
        "partner_password": "partner-secret",
        "api_username": "api",
        "api_password": "api-secret",
    }


@pytest_asyncio.fixture
async def bork_credential(db_session):
    """Active Bork credentials for location loc-1"""
    credential = ProviderCredential(
        provider=Provider.BORK,
        location_id="loc-1",
        base_url="https://bork.test/api",
        credentials={"api_key": "bork-key"},
        is_active=True,
    )
    db_session.add(credential)
    await db_session.commit()
    return credential


@pytest.fixture
def shift_records():
    """Eitje time registration shifts for one environment and day"""
    return [
        {
            "id": 101,
            "date": "2024-03-01",
            "environment": {"id": 7, "name": "Centrum"},
            "team": {"id": 3, "name": "Keuken"},
            "user": {"id": 11},
            "start": "2024-03-01T09:00:00Z",
            "end": "2024-03-01T17:00:00Z",
            "break_minutes": 30,
            "wage_cost": 120.0,
        },
        {
            "id": 102,
            "date": "2024-03-01",
            "environment": {"id": 7, "name": "Centrum"},
            "team": {"id": 3, "name": "Keuken"},
            "user": {"id": 12},
            "hours_worked": 4,
            "break_minutes": 0,
        },
    ]


@pytest.fixture
def revenue_records():
    """Two revenue days for environment 7 on 2024-03-01"""
    return [
        {"id": 501, "date": "2024-03-01", "environment_id": 7, "amt_in_cents": 1050},
        {"id": 502, "date": "2024-03-01", "environment_id": 7, "amt_in_cents": 2550},
    ]


@pytest.fixture
def bork_tickets():
    return [
        {
            "Key": "T1",
            "Orders": [
                {
                    "Lines": [
                        {"ProductName": "Bier", "Category": "Drinks", "TotalInc": 10.9, "Qty": 2, "VatPerc": 21},
                        {"ProductName": "Tosti", "Category": "Food", "TotalInc": 10.9, "Qty": 1, "VatPerc": 9},
                    ]
                }
            ],
        },
        {
            "Key": "T2",
            "Orders": [
                {"Lines": [{"ProductName": "Bier", "Category": "Drinks", "TotalInc": 12.1, "Qty": 2, "VatPerc": 21}]}
            ],
        },
    ]
