"""Batch creation from stock receipts, and read-side batch queries."""

import logging
import random
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.crud import require_ingredient
from ..database.models import (
    Batch,
    BatchStatus,
    Ingredient,
    SpoilageItem,
    SpoilageRecord,
    StockInRecord,
    round_quantity,
    utcnow,
)
from ..errors import DuplicateBatchNumber, RecordNotFound
from ..units import convert
from ..utils import local_today, stock_in_date_part
from .schemas import StockInItem, StockInPayload

logger = logging.getLogger(__name__)

# Random suffix draws before a batch-number collision is reported as a conflict
BATCH_NUMBER_ATTEMPTS = 5


def derive_batch_number(parent_batch_number: str, ingredient_name: str) -> str:
    """``{parent}-{first three letters}-{random 4 digits}``, e.g. BATCH-01/02/26-1-MIL-4821."""
    prefix = ingredient_name.strip().upper()[:3]
    return f"{parent_batch_number}-{prefix}-{random.randint(1000, 9999)}"


async def _batch_number_taken(session: AsyncSession, batch_number: str) -> bool:
    result = await session.execute(
        select(Batch.id).where(Batch.batch_number == batch_number).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _unique_batch_number(
    session: AsyncSession, parent: str, ingredient_name: str, reserved: set[str]
) -> str:
    candidate = derive_batch_number(parent, ingredient_name)
    for _ in range(BATCH_NUMBER_ATTEMPTS):
        if candidate not in reserved and not await _batch_number_taken(session, candidate):
            return candidate
        candidate = derive_batch_number(parent, ingredient_name)
    raise DuplicateBatchNumber(candidate)


async def next_stock_in_number(session: AsyncSession, received_at: Optional[datetime] = None) -> str:
    """Next sequential receipt number for the local day: BATCH-MM/DD/YY-N."""
    prefix = f"BATCH-{stock_in_date_part(received_at)}-"
    result = await session.execute(
        select(StockInRecord.batch_number).where(StockInRecord.batch_number.startswith(prefix))
    )
    highest = 0
    for number in result.scalars():
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1}"


async def create_batches_from_stock_in(
    session: AsyncSession,
    payload: StockInPayload,
    stock_in_record_id: Optional[int],
) -> list[Batch]:
    """Turn each line of a persisted stock receipt into one batch.

    Quantities are converted into the ingredient's canonical unit. Every line
    is resolved and converted before anything is added to the session, so an
    unknown ingredient or unit pair leaves no partial batches behind. Does not
    commit and does not touch ingredient aggregates.

    Raises:
        IngredientNotFound: a line references a missing or deleted ingredient
        UnsupportedConversion: a line's unit cannot be converted
        DuplicateBatchNumber: no free batch number could be derived
    """
    resolved: list[tuple[StockInItem, Ingredient, float]] = []
    for item in payload.items:
        ingredient = await require_ingredient(session, item.ingredient_id, for_update=True)
        quantity = round_quantity(convert(item.quantity, item.unit, ingredient.unit))
        resolved.append((item, ingredient, quantity))

    reserved: set[str] = set()
    created: list[Batch] = []
    for item, ingredient, quantity in resolved:
        batch_number = await _unique_batch_number(session, payload.batch_number, ingredient.name, reserved)
        reserved.add(batch_number)
        batch = Batch(
            ingredient_id=ingredient.id,
            batch_number=batch_number,
            original_quantity=quantity,
            current_quantity=quantity,
            unit=ingredient.unit,
            stock_in_date=payload.received_at,
            expiration_date=item.expiration_date,
            status=BatchStatus.ACTIVE,
            ingredient_snapshot=ingredient.snapshot(),
            stock_in_record_id=stock_in_record_id,
        )
        session.add(batch)
        created.append(batch)

    try:
        await session.flush()
    except IntegrityError as exc:
        raise DuplicateBatchNumber(", ".join(b.batch_number for b in created)) from exc

    for batch in created:
        logger.info(
            f"Created batch {batch.batch_number} for ingredient id={batch.ingredient_id} "
            f"({batch.original_quantity} {batch.unit}, expires {batch.expiration_date or 'never'})"
        )
    return created


async def receive_stock(
    session: AsyncSession,
    stockman_id: Optional[int],
    items: list[StockInItem],
    received_at: Optional[datetime] = None,
    batch_number: Optional[str] = None,
) -> tuple[StockInRecord, list[Batch]]:
    """Record a stock receipt, create its batches and raise the aggregates.

    Everything commits together or not at all.

    Args:
        session: Database session
        stockman_id: User receiving the stock
        items: One entry per ingredient received
        received_at: Receipt time; defaults to now
        batch_number: Explicit receipt number; generated when omitted

    Returns:
        The stock-in record and the batches created from it
    """
    received_at = received_at or utcnow()
    try:
        if batch_number is None:
            batch_number = await next_stock_in_number(session, received_at)
        else:
            existing = await session.execute(
                select(StockInRecord.id).where(StockInRecord.batch_number == batch_number)
            )
            if existing.scalar_one_or_none() is not None:
                raise DuplicateBatchNumber(batch_number)

        record = StockInRecord(
            batch_number=batch_number,
            stockman_id=stockman_id,
            received_at=received_at,
            items=[],
        )
        session.add(record)
        await session.flush()

        payload = StockInPayload(batch_number=batch_number, received_at=received_at, items=items)
        batches = await create_batches_from_stock_in(session, payload, record.id)

        lines: list[dict[str, Any]] = []
        for item, batch in zip(items, batches):
            ingredient = await session.get(Ingredient, batch.ingredient_id)
            ingredient.quantity = round_quantity(ingredient.quantity + batch.original_quantity)
            lines.append({
                "ingredient_id": item.ingredient_id,
                "ingredient_snapshot": batch.ingredient_snapshot,
                "quantity": item.quantity,
                "unit": item.unit,
                "expiration_date": item.expiration_date.isoformat() if item.expiration_date else None,
                "individual_batch_number": batch.batch_number,
                "batch_id": batch.id,
            })
        record.items = lines

        await session.commit()
    except Exception:  # Intentionally broad: nothing from a failed receipt may persist
        await session.rollback()
        raise

    logger.info(f"Stock-in {record.batch_number}: {len(batches)} batch(es) received")
    return record, batches


# ===== Queries =====


async def get_active_batches(
    session: AsyncSession, ingredient_id: int, for_update: bool = False
) -> list[Batch]:
    """Active batches with stock left, in FIFO order (oldest stock-in first).

    Ties on ``stock_in_date`` fall back to creation order so the ordering is
    total and stable.
    """
    query = (
        select(Batch)
        .where(
            Batch.ingredient_id == ingredient_id,
            Batch.status == BatchStatus.ACTIVE,
            Batch.current_quantity > 0,
        )
        .order_by(Batch.stock_in_date.asc(), Batch.id.asc())
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return list(result.scalars().all())


async def has_batch_stock(session: AsyncSession, ingredient_id: int) -> bool:
    """Whether an active or not-yet-reconciled expired batch still holds stock."""
    result = await session.execute(
        select(Batch.id)
        .where(
            Batch.ingredient_id == ingredient_id,
            Batch.status.in_((BatchStatus.ACTIVE, BatchStatus.EXPIRED)),
            Batch.current_quantity > 0,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def get_ingredient_batches(
    session: AsyncSession, ingredient_id: int, include_expired: bool = False
) -> list[Batch]:
    """Batches of one ingredient, oldest first; every status when ``include_expired``."""
    if not include_expired:
        return await get_active_batches(session, ingredient_id)
    result = await session.execute(
        select(Batch)
        .where(Batch.ingredient_id == ingredient_id)
        .order_by(Batch.stock_in_date.asc(), Batch.id.asc())
    )
    return list(result.scalars().all())


async def get_expiring_within(
    session: AsyncSession, days: int = 7, today: Optional[date] = None
) -> list[Batch]:
    """Active batches with stock whose expiration falls in [today, today + days]."""
    today = today or local_today()
    result = await session.execute(
        select(Batch)
        .where(
            Batch.status == BatchStatus.ACTIVE,
            Batch.current_quantity > 0,
            Batch.expiration_date.is_not(None),
            Batch.expiration_date >= today,
            Batch.expiration_date <= today + timedelta(days=days),
        )
        .order_by(Batch.expiration_date.asc(), Batch.id.asc())
    )
    return list(result.scalars().all())


async def get_expired_batches(
    session: AsyncSession, ingredient_id: Optional[int] = None, today: Optional[date] = None
) -> list[Batch]:
    """Batches already marked expired, plus active ones whose date has passed."""
    today = today or local_today()
    query = select(Batch).where(
        or_(
            Batch.status == BatchStatus.EXPIRED,
            (Batch.status == BatchStatus.ACTIVE)
            & Batch.expiration_date.is_not(None)
            & (Batch.expiration_date < today)
            & (Batch.current_quantity > 0),
        )
    )
    if ingredient_id is not None:
        query = query.where(Batch.ingredient_id == ingredient_id)
    result = await session.execute(query.order_by(Batch.expiration_date.asc(), Batch.id.asc()))
    return list(result.scalars().all())


async def get_batch_by_number(session: AsyncSession, batch_number: str) -> Optional[Batch]:
    result = await session.execute(select(Batch).where(Batch.batch_number == batch_number))
    return result.scalar_one_or_none()


async def get_batch_history(session: AsyncSession, batch_id: int) -> dict[str, Any]:
    """Stock-in plus every spoilage line drawn from the batch, in date order."""
    batch = await session.get(Batch, batch_id)
    if batch is None:
        raise RecordNotFound("Batch", batch_id)

    result = await session.execute(
        select(SpoilageItem, SpoilageRecord)
        .join(SpoilageRecord, SpoilageItem.record_id == SpoilageRecord.id)
        .where(SpoilageItem.batch_id == batch_id)
        .order_by(SpoilageRecord.created_at.asc(), SpoilageItem.id.asc())
    )
    rows = result.all()

    history: list[dict[str, Any]] = [
        {
            "type": "stock_in",
            "date": batch.stock_in_date.isoformat(),
            "quantity": batch.original_quantity,
            "remaining_quantity": batch.original_quantity,
            "reference": batch.stock_in_record_id,
            "description": f"Initial stock-in: {batch.original_quantity:g} {batch.unit}",
        }
    ]
    remaining = batch.original_quantity
    for item, record in rows:
        remaining = round_quantity(remaining - item.quantity)
        history.append({
            "type": "spoilage",
            "date": record.created_at.isoformat() if record.created_at else None,
            "quantity": -item.quantity,
            "remaining_quantity": max(0.0, remaining),
            "reference": record.id,
            "description": f"Spoilage: {item.quantity:g} {item.unit} ({item.reason})",
            "reason": item.reason,
            "person_in_charge_id": record.person_in_charge_id,
        })

    return {
        "batch": batch,
        "usage_history": history,
        "summary": {
            "original_quantity": batch.original_quantity,
            "current_quantity": batch.current_quantity,
            "total_used": round_quantity(batch.original_quantity - batch.current_quantity),
            "spoilage_records": len({record.id for _, record in rows}),
            "status": batch.status,
        },
    }


async def get_batch_statistics(session: AsyncSession, today: Optional[date] = None) -> dict[str, Any]:
    """Batch and ingredient counts for the expiration dashboard."""
    today = today or local_today()
    tomorrow = today + timedelta(days=1)
    next_week = today + timedelta(days=7)

    async def count(*criteria: Any) -> int:
        result = await session.execute(select(func.count(Batch.id)).where(*criteria))
        return int(result.scalar_one())

    has_stock = (Batch.status == BatchStatus.ACTIVE, Batch.current_quantity > 0)
    total_active = await count(*has_stock)
    expired = await count(Batch.status == BatchStatus.EXPIRED)
    depleted = await count(Batch.status == BatchStatus.DEPLETED)
    expires_today = await count(
        *has_stock, Batch.expiration_date.is_not(None), Batch.expiration_date == today
    )
    expires_this_week = await count(
        *has_stock,
        Batch.expiration_date.is_not(None),
        Batch.expiration_date >= tomorrow,
        Batch.expiration_date < next_week,
    )
    non_perishable = await count(*has_stock, Batch.expiration_date.is_(None))

    ingredients_total = (
        await session.execute(select(func.count(Ingredient.id)).where(Ingredient.deleted_at.is_(None)))
    ).scalar_one()
    low_stock = (
        await session.execute(
            select(func.count(Ingredient.id)).where(
                Ingredient.deleted_at.is_(None),
                Ingredient.quantity <= Ingredient.alert_threshold,
            )
        )
    ).scalar_one()

    return {
        "batches": {
            "total_active": total_active,
            "expired": expired,
            "depleted": depleted,
            "expires_today": expires_today,
            "expires_this_week": expires_this_week,
            "non_perishable": non_perishable,
        },
        "ingredients": {"total": int(ingredients_total), "low_stock": int(low_stock)},
        "alerts": {
            "urgent": expired + expires_today,
            "warning": expires_this_week,
            "low_stock": int(low_stock),
        },
    }
