"""FIFO deduction engine.

Stock always leaves the oldest batch first (by stock-in date, then id). The
ingredient row is locked for the whole operation and batch rows are locked
as they are read, so concurrent deductions on one ingredient serialize.

Public functions own their transaction: one commit on success, a rollback on
any failure. The underscore helpers only flush, so several of them can be
combined into a single unit of work.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.crud import require_ingredient
from ..database.models import (
    QUANTITY_EPSILON,
    BatchStatus,
    Ingredient,
    SpoilageReason,
    round_quantity,
)
from ..errors import InsufficientStock, NoActiveBatches
from ..units import convert
from ..utils import local_today
from .batches import get_active_batches, has_batch_stock
from .schemas import ConsumptionLine, DeductionDetail, DeductionResult

logger = logging.getLogger(__name__)


async def _deduct_batches(
    session: AsyncSession, ingredient: Ingredient, quantity: float, today: date
) -> DeductionResult:
    """Take ``quantity`` (already in the ingredient's unit) from its batches."""
    candidates = await get_active_batches(session, ingredient.id, for_update=True)

    usable = []
    for batch in candidates:
        if batch.check_expiration(today):
            logger.info(f"Batch {batch.batch_number} expired on load, skipping")
            continue
        # Rows read back can lag unflushed in-memory changes within one transaction
        if batch.status != BatchStatus.ACTIVE or batch.current_quantity <= QUANTITY_EPSILON:
            continue
        usable.append(batch)

    if not usable:
        # Expired stock still on the books belongs to reconciliation, not the aggregate
        if await has_batch_stock(session, ingredient.id):
            raise InsufficientStock(ingredient.name, 0.0, quantity, ingredient.unit)
        raise NoActiveBatches(ingredient.name)

    available = round_quantity(sum(batch.current_quantity for batch in usable))
    if available + QUANTITY_EPSILON < quantity:
        raise InsufficientStock(ingredient.name, available, quantity, ingredient.unit)

    details: list[DeductionDetail] = []
    remaining = quantity
    for batch in usable:
        if remaining <= QUANTITY_EPSILON:
            break
        take = min(remaining, batch.current_quantity)
        left = batch.deduct(take)
        details.append(
            DeductionDetail(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity_deducted=round_quantity(take),
                remaining_in_batch=left,
                expiration_date=batch.expiration_date,
            )
        )
        remaining = round_quantity(remaining - take)

    ingredient.quantity = round_quantity(max(0.0, ingredient.quantity - quantity))
    await session.flush()

    return DeductionResult(
        ingredient_id=ingredient.id,
        total_deducted=round_quantity(quantity),
        unit=ingredient.unit,
        deduction_details=details,
        remaining_stock=ingredient.quantity,
    )


async def _deduct_aggregate(
    session: AsyncSession, ingredient: Ingredient, quantity: float
) -> DeductionResult:
    """Legacy path: subtract straight from the aggregate of an ingredient with no batches."""
    if ingredient.quantity + QUANTITY_EPSILON < quantity:
        raise InsufficientStock(ingredient.name, ingredient.quantity, quantity, ingredient.unit)

    logger.warning(
        f"No active batches for {ingredient.name}, deducting {quantity:g} {ingredient.unit} "
        f"from aggregate stock"
    )
    ingredient.quantity = round_quantity(max(0.0, ingredient.quantity - quantity))
    await session.flush()

    return DeductionResult(
        ingredient_id=ingredient.id,
        total_deducted=round_quantity(quantity),
        unit=ingredient.unit,
        remaining_stock=ingredient.quantity,
        batch_tracked=False,
    )


async def _consume(
    session: AsyncSession,
    ingredient_id: int,
    amount: float,
    unit: str,
    today: date,
) -> DeductionResult:
    ingredient = await require_ingredient(session, ingredient_id, for_update=True)
    quantity = round_quantity(convert(amount, unit, ingredient.unit))
    try:
        return await _deduct_batches(session, ingredient, quantity, today)
    except NoActiveBatches:
        return await _deduct_aggregate(session, ingredient, quantity)


async def deduct_fifo(
    session: AsyncSession,
    ingredient_id: int,
    amount: float,
    unit: str,
    reason: str = SpoilageReason.OTHER,
    today: Optional[date] = None,
) -> DeductionResult:
    """Deduct stock from an ingredient's batches, oldest first.

    Args:
        session: Database session
        ingredient_id: Ingredient to deduct from
        amount: Quantity to remove, expressed in ``unit``
        unit: Unit of ``amount``; converted to the ingredient's unit
        reason: Why the stock is leaving (logged)
        today: Reference date for lazy expiration; defaults to the local date

    Returns:
        Per-batch breakdown and the ingredient's remaining aggregate

    Raises:
        UnsupportedConversion: ``unit`` cannot be converted
        NoActiveBatches: the ingredient holds no batch stock at all
        InsufficientStock: usable batches hold less than requested, or the only
            batch stock left is expired and awaiting reconciliation
    """
    today = today or local_today()
    try:
        ingredient = await require_ingredient(session, ingredient_id, for_update=True)
        quantity = round_quantity(convert(amount, unit, ingredient.unit))
        result = await _deduct_batches(session, ingredient, quantity, today)
        await session.commit()
    except Exception:  # Intentionally broad: a partial deduction must never persist
        await session.rollback()
        raise

    logger.info(
        f"Deducted {result.total_deducted:g} {result.unit} of ingredient id={ingredient_id} "
        f"from {len(result.deduction_details)} batch(es) ({reason})"
    )
    return result


async def consume_stock(
    session: AsyncSession,
    ingredient_id: int,
    amount: float,
    unit: str,
    reason: str = SpoilageReason.OTHER,
    today: Optional[date] = None,
) -> DeductionResult:
    """FIFO deduction that falls back to the aggregate for legacy ingredients."""
    today = today or local_today()
    try:
        result = await _consume(session, ingredient_id, amount, unit, today)
        await session.commit()
    except Exception:  # Intentionally broad: a partial deduction must never persist
        await session.rollback()
        raise

    logger.info(
        f"Consumed {result.total_deducted:g} {result.unit} of ingredient id={ingredient_id} ({reason})"
    )
    return result


async def deduct_for_sale(
    session: AsyncSession,
    lines: list[ConsumptionLine],
    today: Optional[date] = None,
) -> list[DeductionResult]:
    """Consume every ingredient line of one sale in a single transaction.

    If any line fails, none of the sale's deductions persist.
    """
    today = today or local_today()
    results: list[DeductionResult] = []
    try:
        for line in lines:
            results.append(await _consume(session, line.ingredient_id, line.quantity, line.unit, today))
        await session.commit()
    except Exception:  # Intentionally broad: a sale deducts all of its lines or none
        await session.rollback()
        raise

    logger.info(f"Sale deducted {len(results)} ingredient line(s)")
    return results


async def restore_stock(
    session: AsyncSession,
    ingredient_id: int,
    amount: float,
    unit: str,
) -> Ingredient:
    """Add stock back to an ingredient after a voided sale or deleted spoilage.

    Only the aggregate is restored. Batches that were drawn down stay as they
    are, so after a reversal the aggregate can exceed the batch total.
    """
    try:
        ingredient = await require_ingredient(session, ingredient_id, for_update=True)
        quantity = round_quantity(convert(amount, unit, ingredient.unit))
        ingredient.quantity = round_quantity(ingredient.quantity + quantity)
        await session.commit()
    except Exception:  # Intentionally broad: keep the aggregate untouched on failure
        await session.rollback()
        raise

    logger.info(f"Restored {quantity:g} {ingredient.unit} to {ingredient.name} (now {ingredient.quantity:g})")
    return ingredient
