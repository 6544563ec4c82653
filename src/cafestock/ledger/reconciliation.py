"""Expiration reconciliation: write off whatever is left in expired batches."""

import logging
from collections import defaultdict
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.crud import get_ingredient
from ..database.models import (
    Batch,
    BatchStatus,
    SpoilageItem,
    SpoilageReason,
    SpoilageRecord,
    SpoilageType,
    round_quantity,
)
from ..utils import local_today
from .schemas import ReconciliationResult

logger = logging.getLogger(__name__)


async def _expired_batches_with_stock(session: AsyncSession, today: date) -> list[Batch]:
    # Expired-status batches are included: a lazy check or the notification
    # generator may have flipped the status without zeroing the quantity.
    result = await session.execute(
        select(Batch)
        .where(
            Batch.status.in_((BatchStatus.ACTIVE, BatchStatus.EXPIRED)),
            Batch.expiration_date.is_not(None),
            Batch.expiration_date < today,
            Batch.current_quantity > 0,
        )
        .order_by(Batch.ingredient_id.asc(), Batch.stock_in_date.asc(), Batch.id.asc())
        .with_for_update()
    )
    return list(result.scalars().all())


async def process_expired_batches(
    session: AsyncSession,
    system_actor_id: Optional[int],
    today: Optional[date] = None,
) -> ReconciliationResult:
    """Convert the remaining stock of every expired batch into spoilage.

    One auto-expired spoilage record is written per ingredient, with one item
    per batch. Batches are zeroed and the ingredient aggregates reduced by the
    same amount. Everything commits once, and a second run over the same data
    finds nothing to do.

    Args:
        session: Database session
        system_actor_id: User the spoilage records are attributed to
        today: Reference date; defaults to the local date

    Returns:
        Counts of batches processed, records written and ingredients touched
    """
    today = today or local_today()
    try:
        batches = await _expired_batches_with_stock(session, today)
        if not batches:
            logger.info("No expired batches to process")
            return ReconciliationResult()

        by_ingredient: dict[int, list[Batch]] = defaultdict(list)
        for batch in batches:
            by_ingredient[batch.ingredient_id].append(batch)

        records = 0
        for ingredient_id, group in by_ingredient.items():
            ingredient = await get_ingredient(session, ingredient_id, for_update=True, include_deleted=True)
            record = SpoilageRecord(
                person_in_charge_id=system_actor_id,
                spoilage_type=SpoilageType.AUTO_EXPIRED,
                total_waste=0.0,
                remarks=f"Auto-generated: {len(group)} expired batch(es)",
                items=[],
            )
            session.add(record)

            total = 0.0
            for batch in group:
                record.items.append(
                    SpoilageItem(
                        ingredient_id=ingredient_id,
                        ingredient_snapshot=batch.ingredient_snapshot,
                        batch_id=batch.id,
                        batch_number=batch.batch_number,
                        quantity=batch.current_quantity,
                        unit=batch.unit,
                        expiration_date=batch.expiration_date,
                        reason=SpoilageReason.EXPIRED,
                    )
                )
                total += batch.force_expire()

            record.total_waste = round_quantity(total)
            if ingredient is not None:
                ingredient.quantity = round_quantity(max(0.0, ingredient.quantity - total))
            records += 1
            logger.info(
                f"Expired {len(group)} batch(es) of ingredient id={ingredient_id}, "
                f"wasted {record.total_waste:g}"
            )

        await session.commit()
    except Exception:  # Intentionally broad: a run either reconciles everything or nothing
        await session.rollback()
        raise

    result = ReconciliationResult(
        processed_batches=len(batches),
        spoilage_records=records,
        expired_ingredients=len(by_ingredient),
    )
    logger.info(
        f"Expiration processing complete: {result.processed_batches} batch(es), "
        f"{result.spoilage_records} spoilage record(s)"
    )
    return result
