"""Pytest configuration and shared fixtures."""

import os
from datetime import date, datetime, timezone
from typing import Any, AsyncGenerator, Optional

# The API module reads settings at import time
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cafestock.config import Settings
from cafestock.database.crud import create_ingredient, create_user
from cafestock.database.models import Base, Batch, Ingredient, IngredientCategory, User, UserRole, UserStatus
from cafestock.ledger.batches import receive_stock
from cafestock.ledger.schemas import StockInItem

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed reference day for date-dependent tests
TODAY = date(2026, 3, 5)


def day(n: int) -> datetime:
    """Stock-in timestamp for day ``n`` of March 2026, in UTC."""
    return datetime(2026, 3, n, 1, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        postgres_db="cafestock_test",
        postgres_user="postgres",
        postgres_password="postgres",
        postgres_host="localhost",
        debug=True,
        scheduler_enabled=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[Any, None]:
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine: Any) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


class AsyncContextManagerMock:
    """Mock async context manager for testing."""

    def __init__(self, return_value: Any) -> None:
        self.return_value = return_value

    async def __aenter__(self) -> Any:
        return self.return_value

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        return False


@pytest.fixture
def mock_session_factory(db_session: AsyncSession) -> Any:
    """Create a mock session factory that returns the test session."""

    def factory() -> AsyncContextManagerMock:
        return AsyncContextManagerMock(db_session)

    return factory


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, "owner@cafe.test", "owner", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def staff_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, "barista@cafe.test", "barista")


@pytest_asyncio.fixture
async def pending_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, "new@cafe.test", "newhire", status=UserStatus.PENDING)


@pytest_asyncio.fixture
async def milk(db_session: AsyncSession) -> Ingredient:
    """Batch-tracked liquid stocked in milliliters."""
    return await create_ingredient(
        db_session, "Milk", "ml", IngredientCategory.LIQUID, alert_threshold=200
    )


@pytest_asyncio.fixture
async def flour(db_session: AsyncSession) -> Ingredient:
    return await create_ingredient(
        db_session, "Flour", "g", IngredientCategory.SOLID, alert_threshold=500
    )


@pytest_asyncio.fixture
async def cups(db_session: AsyncSession) -> Ingredient:
    """Legacy ingredient: stock on hand but no batches."""
    return await create_ingredient(
        db_session, "Paper Cups", "pcs", IngredientCategory.MATERIAL, quantity=50, alert_threshold=20
    )


@pytest.fixture
def add_batch(db_session: AsyncSession) -> Any:
    """Receive a single-line stock-in and return the batch it created."""

    async def _add(
        ingredient: Ingredient,
        quantity: float,
        on_day: int,
        expires: Optional[date] = None,
        unit: Optional[str] = None,
    ) -> Batch:
        _, batches = await receive_stock(
            db_session,
            stockman_id=None,
            items=[
                StockInItem(
                    ingredient_id=ingredient.id,
                    quantity=quantity,
                    unit=unit or ingredient.unit,
                    expiration_date=expires,
                )
            ],
            received_at=day(on_day),
        )
        return batches[0]

    return _add
