"""Tests for the expiration reconciliation job."""

from datetime import date, timedelta
from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cafestock.database.crud import get_system_actor
from cafestock.database.models import (
    BatchStatus,
    Ingredient,
    SpoilageReason,
    SpoilageRecord,
    SpoilageType,
    User,
    UserRole,
)
from cafestock.ledger.fifo import deduct_fifo
from cafestock.ledger.reconciliation import process_expired_batches

TODAY = date(2026, 3, 5)


async def spoilage_records(session: AsyncSession) -> list[SpoilageRecord]:
    result = await session.execute(select(SpoilageRecord).order_by(SpoilageRecord.id))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_expired_batch_becomes_spoilage(
    db_session: AsyncSession, milk: Ingredient, admin_user: User, add_batch: Any
) -> None:
    expired = await add_batch(milk, 300, on_day=1, expires=TODAY - timedelta(days=1))
    fresh = await add_batch(milk, 700, on_day=2, expires=TODAY + timedelta(days=3))

    result = await process_expired_batches(db_session, admin_user.id, today=TODAY)

    assert result.processed_batches == 1
    assert result.spoilage_records == 1
    assert result.expired_ingredients == 1

    assert expired.status == BatchStatus.EXPIRED
    assert expired.current_quantity == 0
    assert fresh.current_quantity == 700
    assert milk.quantity == 700

    (record,) = await spoilage_records(db_session)
    assert record.spoilage_type == SpoilageType.AUTO_EXPIRED
    assert record.person_in_charge_id == admin_user.id
    assert record.total_waste == 300
    assert len(record.items) == 1
    assert record.items[0].batch_number == expired.batch_number
    assert record.items[0].reason == SpoilageReason.EXPIRED


@pytest.mark.asyncio
async def test_rerun_is_idempotent(
    db_session: AsyncSession, milk: Ingredient, admin_user: User, add_batch: Any
) -> None:
    await add_batch(milk, 300, on_day=1, expires=TODAY - timedelta(days=2))

    first = await process_expired_batches(db_session, admin_user.id, today=TODAY)
    second = await process_expired_batches(db_session, admin_user.id, today=TODAY)

    assert first.processed_batches == 1
    assert second.processed_batches == 0
    assert second.spoilage_records == 0
    assert len(await spoilage_records(db_session)) == 1
    assert milk.quantity == 0


@pytest.mark.asyncio
async def test_one_record_per_ingredient(
    db_session: AsyncSession, milk: Ingredient, flour: Ingredient, admin_user: User, add_batch: Any
) -> None:
    await add_batch(milk, 100, on_day=1, expires=TODAY - timedelta(days=3))
    await add_batch(milk, 200, on_day=2, expires=TODAY - timedelta(days=1))
    await add_batch(flour, 1, on_day=1, expires=TODAY - timedelta(days=1), unit="kg")

    result = await process_expired_batches(db_session, admin_user.id, today=TODAY)

    assert result.processed_batches == 3
    assert result.spoilage_records == 2
    records = await spoilage_records(db_session)
    waste = sorted((len(r.items), r.total_waste) for r in records)
    assert waste == [(1, 1000), (2, 300)]


@pytest.mark.asyncio
async def test_lazily_expired_batch_is_still_written_off(
    db_session: AsyncSession, milk: Ingredient, admin_user: User, add_batch: Any
) -> None:
    """A batch flipped to expired by a deduction still has stock to write off."""
    old = await add_batch(milk, 400, on_day=1, expires=TODAY - timedelta(days=1))
    await add_batch(milk, 400, on_day=2)
    await deduct_fifo(db_session, milk.id, 100, "ml", today=TODAY)
    assert old.status == BatchStatus.EXPIRED
    assert old.current_quantity == 400

    result = await process_expired_batches(db_session, admin_user.id, today=TODAY)

    assert result.processed_batches == 1
    assert old.current_quantity == 0
    assert milk.quantity == 300


@pytest.mark.asyncio
async def test_day_eleven_after_milk_deduction_finds_nothing(
    db_session: AsyncSession, milk: Ingredient, admin_user: User, add_batch: Any
) -> None:
    await add_batch(milk, 1000, on_day=1, expires=date(2026, 3, 10))
    await add_batch(milk, 1000, on_day=3, expires=date(2026, 3, 12))
    await deduct_fifo(db_session, milk.id, 1500, "ml", today=date(2026, 3, 5))

    result = await process_expired_batches(db_session, admin_user.id, today=date(2026, 3, 11))

    assert result.processed_batches == 0
    assert result.spoilage_records == 0
    count = (await db_session.execute(select(func.count(SpoilageRecord.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_non_perishable_batches_are_ignored(
    db_session: AsyncSession, flour: Ingredient, admin_user: User, add_batch: Any
) -> None:
    await add_batch(flour, 500, on_day=1)
    result = await process_expired_batches(db_session, admin_user.id, today=date(2030, 1, 1))
    assert result.processed_batches == 0


class TestSystemActor:
    @pytest.mark.asyncio
    async def test_prefers_oldest_admin(
        self, db_session: AsyncSession, staff_user: User, admin_user: User
    ) -> None:
        actor = await get_system_actor(db_session)
        assert actor.id == admin_user.id

    @pytest.mark.asyncio
    async def test_falls_back_to_any_user(self, db_session: AsyncSession, staff_user: User) -> None:
        actor = await get_system_actor(db_session)
        assert actor.id == staff_user.id

    @pytest.mark.asyncio
    async def test_creates_system_user_when_empty(self, db_session: AsyncSession) -> None:
        actor = await get_system_actor(db_session)
        assert actor.username == "system"
        assert actor.role == UserRole.ADMIN
        again = await get_system_actor(db_session)
        assert again.id == actor.id
