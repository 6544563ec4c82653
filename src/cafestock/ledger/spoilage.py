"""Manual spoilage: write-offs recorded by staff, and their reversal."""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.crud import get_ingredient
from ..database.models import (
    SpoilageItem,
    SpoilageRecord,
    SpoilageType,
    round_quantity,
)
from ..errors import RecordNotFound
from ..units import convert
from ..utils import local_today
from .fifo import _consume
from .schemas import ConsumptionLine

logger = logging.getLogger(__name__)


async def record_spoilage(
    session: AsyncSession,
    person_in_charge_id: Optional[int],
    items: list[ConsumptionLine],
    remarks: Optional[str] = None,
    today: Optional[date] = None,
) -> SpoilageRecord:
    """Write off stock and record where it came from.

    Each line is consumed oldest batch first and becomes one spoilage item per
    batch it touched. Ingredients without batches produce a single item with
    no batch reference. The whole record commits or nothing does.
    """
    today = today or local_today()
    try:
        record = SpoilageRecord(
            person_in_charge_id=person_in_charge_id,
            spoilage_type=SpoilageType.MANUAL,
            total_waste=0.0,
            remarks=remarks,
            items=[],
        )
        session.add(record)

        total = 0.0
        for line in items:
            result = await _consume(session, line.ingredient_id, line.quantity, line.unit, today)
            ingredient = await get_ingredient(session, line.ingredient_id)
            snapshot = ingredient.snapshot()

            if result.batch_tracked:
                for detail in result.deduction_details:
                    record.items.append(
                        SpoilageItem(
                            ingredient_id=ingredient.id,
                            ingredient_snapshot=snapshot,
                            batch_id=detail.batch_id,
                            batch_number=detail.batch_number,
                            quantity=detail.quantity_deducted,
                            unit=result.unit,
                            expiration_date=detail.expiration_date,
                            reason=line.reason,
                        )
                    )
            else:
                record.items.append(
                    SpoilageItem(
                        ingredient_id=ingredient.id,
                        ingredient_snapshot=snapshot,
                        quantity=result.total_deducted,
                        unit=result.unit,
                        expiration_date=ingredient.expiration_date,
                        reason=line.reason,
                    )
                )
            total += result.total_deducted

        record.total_waste = round_quantity(total)
        await session.commit()
    except Exception:  # Intentionally broad: spoilage and its deductions persist together
        await session.rollback()
        raise

    logger.info(f"Recorded spoilage id={record.id}: {len(record.items)} item(s), total {record.total_waste:g}")
    return record


async def delete_spoilage_record(session: AsyncSession, record_id: int) -> None:
    """Delete a spoilage record and put its quantities back into stock.

    As with any reversal, quantities return to the ingredient aggregates only.
    Items whose ingredient has since been deleted are dropped without restoring.
    """
    try:
        record = await session.get(SpoilageRecord, record_id)
        if record is None:
            raise RecordNotFound("Spoilage record", record_id)

        for item in record.items:
            if item.ingredient_id is None:
                continue
            ingredient = await get_ingredient(session, item.ingredient_id, for_update=True)
            if ingredient is None:
                logger.warning(f"Ingredient id={item.ingredient_id} is gone, not restoring spoilage item {item.id}")
                continue
            restored = round_quantity(convert(item.quantity, item.unit, ingredient.unit))
            ingredient.quantity = round_quantity(ingredient.quantity + restored)

        await session.delete(record)
        await session.commit()
    except Exception:  # Intentionally broad: restore everything or nothing
        await session.rollback()
        raise

    logger.info(f"Deleted spoilage record id={record_id} and restored its stock")
