"""Typed inputs and results passed across the ledger boundary."""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class StockInItem(BaseModel):
    ingredient_id: int
    quantity: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)
    expiration_date: Optional[date] = None


class StockInPayload(BaseModel):
    """A persisted stock receipt, as seen by batch creation."""

    batch_number: str
    received_at: datetime
    items: list[StockInItem]


class DeductionDetail(BaseModel):
    batch_id: int
    batch_number: str
    quantity_deducted: float
    remaining_in_batch: float
    expiration_date: Optional[date] = None


class DeductionResult(BaseModel):
    ingredient_id: int
    total_deducted: float
    unit: str
    deduction_details: list[DeductionDetail] = Field(default_factory=list)
    remaining_stock: float
    # False when the ingredient had no usable batches and the aggregate was hit directly
    batch_tracked: bool = True


# Mirrors SpoilageReason.ALL
SpoilageReasonName = Literal["expired", "damaged", "contaminated", "other"]


class ConsumptionLine(BaseModel):
    ingredient_id: int
    quantity: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)
    reason: SpoilageReasonName = "other"


class ReconciliationResult(BaseModel):
    processed_batches: int = 0
    spoilage_records: int = 0
    expired_ingredients: int = 0
