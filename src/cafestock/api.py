"""FastAPI REST API for the café inventory ledger."""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Any, Optional, Union

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

# Load environment variables from .env file (find it relative to this file)
_env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(_env_path)

from .config import settings
from .database.crud import get_system_actor, get_user
from .database.engine import AsyncSessionLocal, close_db, init_db
from .database.models import Batch, Notification, SpoilageRecord, StockInRecord
from .errors import (
    DuplicateBatchNumber,
    IngredientNotFound,
    InsufficientBatchStock,
    InsufficientStock,
    LedgerError,
    NoActiveBatches,
    RecordNotFound,
    UnsupportedConversion,
)
from .ledger import (
    clear_all_notifications,
    clear_notification,
    consume_stock,
    deduct_for_sale,
    delete_spoilage_record,
    generate_notifications,
    get_batch_by_number,
    get_batch_history,
    get_batch_statistics,
    get_expired_batches,
    get_expiring_within,
    get_ingredient_batches,
    list_notifications,
    process_expired_batches,
    receive_stock,
    record_spoilage,
    restore_stock,
)
from .ledger.schemas import ConsumptionLine, StockInItem
from .scheduler import ExpirationScheduler
from .utils import local_today, parse_expiration_date

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[LedgerError], int] = {
    UnsupportedConversion: status.HTTP_400_BAD_REQUEST,
    NoActiveBatches: status.HTTP_400_BAD_REQUEST,
    InsufficientStock: status.HTTP_400_BAD_REQUEST,
    InsufficientBatchStock: status.HTTP_400_BAD_REQUEST,
    IngredientNotFound: status.HTTP_404_NOT_FOUND,
    RecordNotFound: status.HTTP_404_NOT_FOUND,
    DuplicateBatchNumber: status.HTTP_409_CONFLICT,
}


# Pydantic models for API
class StockInLine(BaseModel):
    ingredient_id: int = Field(..., description="Ingredient being received")
    quantity: float = Field(..., gt=0, description="Quantity received, in `unit`")
    unit: str = Field(..., min_length=1, description="Unit of the received quantity")
    expiration_date: Optional[Union[date, str]] = Field(
        None, description="ISO date or phrase such as 'in 5 days'; omit for non-perishables"
    )

    @field_validator("expiration_date", mode="before")
    @classmethod
    def _parse_expiration(cls, value: Any) -> Optional[date]:
        if value is None or value == "":
            return None
        parsed = parse_expiration_date(value)
        if parsed is None:
            raise ValueError(f"Unrecognized expiration date: {value}")
        return parsed


class StockInRequest(BaseModel):
    items: list[StockInLine] = Field(..., min_length=1)
    received_at: Optional[datetime] = None
    batch_number: Optional[str] = Field(None, description="Receipt number; generated when omitted")


class SpoilageRequest(BaseModel):
    items: list[ConsumptionLine] = Field(..., min_length=1)
    remarks: Optional[str] = None


class SaleRequest(BaseModel):
    lines: list[ConsumptionLine] = Field(..., min_length=1)


class StockAdjustment(BaseModel):
    ingredient_id: int
    quantity: float = Field(..., gt=0)
    unit: str = Field(..., min_length=1)
    reason: str = "other"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database and scheduler lifecycle."""
    logger.info("Starting cafestock API...")
    await init_db()
    logger.info("Database initialized")

    scheduler: Optional[ExpirationScheduler] = None
    if settings.scheduler_enabled:
        scheduler = ExpirationScheduler()
        scheduler.start()
    else:
        logger.info("Expiration scheduler disabled")

    yield
    logger.info("Shutting down...")
    if scheduler is not None:
        scheduler.shutdown()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title="Cafestock API",
    description="FIFO batch inventory ledger for café stock, spoilage and alerts",
    version="0.3.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Translate ledger errors into JSON responses with a stable error code."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "details": exc.details},
    )


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError) -> JSONResponse:
    logger.warning(f"Concurrent modification detected: {exc}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "Stock was modified concurrently, please retry", "code": "CONCURRENT_UPDATE"},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint - verifies DB connectivity."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "dependencies": {"database": "healthy"},
        }
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "dependencies": {"database": "unhealthy"},
            },
        )


# API router for versioned endpoints, mounted at both /api and /api/v1
api_router = APIRouter()


async def get_acting_user_id(
    x_user_id: Annotated[int | None, Header()] = None,
) -> Optional[int]:
    """The user performing the request, if the caller identified one."""
    return x_user_id


async def require_user_id(
    user_id: Annotated[Optional[int], Depends(get_acting_user_id)],
) -> int:
    if user_id is None:
        raise HTTPException(status_code=400, detail="X-User-Id header is required")
    return user_id


def _batch_to_dict(batch: Batch, today: Optional[date] = None) -> dict[str, Any]:
    today = today or local_today()
    return {
        "id": batch.id,
        "ingredient_id": batch.ingredient_id,
        "batch_number": batch.batch_number,
        "original_quantity": batch.original_quantity,
        "current_quantity": batch.current_quantity,
        "unit": batch.unit,
        "stock_in_date": batch.stock_in_date.isoformat() if batch.stock_in_date else None,
        "expiration_date": batch.expiration_date.isoformat() if batch.expiration_date else None,
        "days_until_expiry": batch.days_until_expiry(today),
        "status": batch.status,
        "ingredient": batch.ingredient_snapshot,
    }


def _stock_in_to_dict(record: StockInRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "batch_number": record.batch_number,
        "stockman_id": record.stockman_id,
        "received_at": record.received_at.isoformat() if record.received_at else None,
        "items": record.items,
    }


def _spoilage_to_dict(record: SpoilageRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "person_in_charge_id": record.person_in_charge_id,
        "spoilage_type": record.spoilage_type,
        "total_waste": record.total_waste,
        "remarks": record.remarks,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "items": [
            {
                "ingredient_id": item.ingredient_id,
                "ingredient": item.ingredient_snapshot,
                "batch_id": item.batch_id,
                "batch_number": item.batch_number,
                "quantity": item.quantity,
                "unit": item.unit,
                "expiration_date": item.expiration_date.isoformat() if item.expiration_date else None,
                "reason": item.reason,
            }
            for item in record.items
        ],
    }


def _notification_to_dict(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type,
        "priority": notification.priority,
        "title": notification.title,
        "message": notification.message,
        "ingredient_id": notification.ingredient_id,
        "batch_number": notification.batch_number,
        "is_cleared": notification.is_cleared,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


# ===== Stock-in =====


@api_router.post("/stock-in", status_code=status.HTTP_201_CREATED)
async def create_stock_in(
    body: StockInRequest,
    user_id: Annotated[Optional[int], Depends(get_acting_user_id)],
):
    """Receive stock; each line becomes one dated batch."""
    items = [
        StockInItem(
            ingredient_id=line.ingredient_id,
            quantity=line.quantity,
            unit=line.unit,
            expiration_date=line.expiration_date,
        )
        for line in body.items
    ]
    async with AsyncSessionLocal() as session:
        record, batches = await receive_stock(
            session,
            stockman_id=user_id,
            items=items,
            received_at=body.received_at,
            batch_number=body.batch_number,
        )
        return {
            "status": "success",
            "message": f"Received {len(batches)} batch(es) under {record.batch_number}",
            "stock_in": _stock_in_to_dict(record),
            "batches": [_batch_to_dict(batch) for batch in batches],
        }


# ===== Deductions =====


@api_router.post("/deductions")
async def deduct_stock(body: StockAdjustment):
    """Consume stock from one ingredient, oldest batch first."""
    async with AsyncSessionLocal() as session:
        result = await consume_stock(session, body.ingredient_id, body.quantity, body.unit, reason=body.reason)
        return result.model_dump(mode="json")


@api_router.post("/sales/deduct")
async def deduct_sale(body: SaleRequest):
    """Consume every ingredient line of one sale atomically."""
    async with AsyncSessionLocal() as session:
        results = await deduct_for_sale(session, body.lines)
        return {
            "count": len(results),
            "deductions": [result.model_dump(mode="json") for result in results],
        }


@api_router.post("/stock/restore")
async def restore_ingredient_stock(body: StockAdjustment):
    """Return stock to an ingredient after a voided sale."""
    async with AsyncSessionLocal() as session:
        ingredient = await restore_stock(session, body.ingredient_id, body.quantity, body.unit)
        return {
            "ingredient_id": ingredient.id,
            "quantity": ingredient.quantity,
            "unit": ingredient.unit,
        }


# ===== Spoilage =====


@api_router.post("/spoilage", status_code=status.HTTP_201_CREATED)
async def create_spoilage(
    body: SpoilageRequest,
    user_id: Annotated[Optional[int], Depends(get_acting_user_id)],
):
    """Record wasted stock against the batches it came from."""
    async with AsyncSessionLocal() as session:
        record = await record_spoilage(session, user_id, body.items, remarks=body.remarks)
        return _spoilage_to_dict(record)


@api_router.delete("/spoilage/{record_id}")
async def remove_spoilage(record_id: int):
    """Delete a spoilage record, restoring its quantities to stock."""
    async with AsyncSessionLocal() as session:
        await delete_spoilage_record(session, record_id)
        return {"status": "success", "message": f"Spoilage record {record_id} deleted"}


# ===== Batches =====


@api_router.get("/ingredients/{ingredient_id}/batches")
async def list_ingredient_batches(
    ingredient_id: int,
    include_expired: bool = Query(False, description="Include expired and depleted batches"),
):
    """Batches of one ingredient, oldest first."""
    async with AsyncSessionLocal() as session:
        batches = await get_ingredient_batches(session, ingredient_id, include_expired=include_expired)
        return {
            "count": len(batches),
            "batches": [_batch_to_dict(batch) for batch in batches],
        }


@api_router.get("/batches/expiring")
async def list_expiring_batches(
    days: int = Query(7, ge=0, le=365, description="Number of days to look ahead"),
):
    """Active batches expiring within N days."""
    async with AsyncSessionLocal() as session:
        batches = await get_expiring_within(session, days=days)
        return {
            "count": len(batches),
            "days_window": days,
            "batches": [_batch_to_dict(batch) for batch in batches],
        }


@api_router.get("/batches/expired")
async def list_expired_batches(ingredient_id: Optional[int] = Query(None)):
    """Expired batches, including active ones whose date has passed."""
    async with AsyncSessionLocal() as session:
        batches = await get_expired_batches(session, ingredient_id=ingredient_id)
        return {
            "count": len(batches),
            "batches": [_batch_to_dict(batch) for batch in batches],
        }


@api_router.get("/batches/statistics")
async def batch_statistics():
    async with AsyncSessionLocal() as session:
        return await get_batch_statistics(session)


@api_router.get("/batches/lookup")
async def lookup_batch(batch_number: str = Query(..., min_length=1)):
    """Find a batch by its number (numbers contain slashes, so not a path segment)."""
    async with AsyncSessionLocal() as session:
        batch = await get_batch_by_number(session, batch_number)
        if batch is None:
            raise HTTPException(status_code=404, detail=f"Batch {batch_number} not found")
        return _batch_to_dict(batch)


@api_router.get("/batches/{batch_id}/history")
async def batch_history(batch_id: int):
    """Stock-in and spoilage history of a batch."""
    async with AsyncSessionLocal() as session:
        history = await get_batch_history(session, batch_id)
        return {
            "batch": _batch_to_dict(history["batch"]),
            "usage_history": history["usage_history"],
            "summary": history["summary"],
        }


@api_router.post("/expiration/process")
async def run_expiration_processing(
    user_id: Annotated[Optional[int], Depends(get_acting_user_id)],
):
    """Write off expired batches now instead of waiting for the scheduler."""
    async with AsyncSessionLocal() as session:
        actor = await get_user(session, user_id) if user_id is not None else None
        if actor is None:
            actor = await get_system_actor(session)
        result = await process_expired_batches(session, actor.id)
        return {
            "status": "success",
            "message": f"Processed {result.processed_batches} expired batch(es)",
            **result.model_dump(),
        }


# ===== Notifications =====


@api_router.get("/notifications")
async def get_notifications(
    user_id: Annotated[int, Depends(require_user_id)],
    include_cleared: bool = Query(False),
):
    """The acting user's notifications, most urgent first."""
    async with AsyncSessionLocal() as session:
        notifications = await list_notifications(session, user_id, include_cleared=include_cleared)
        return {
            "count": len(notifications),
            "notifications": [_notification_to_dict(n) for n in notifications],
        }


@api_router.post("/notifications/generate")
async def trigger_notifications():
    """Re-evaluate alert conditions for every user now."""
    async with AsyncSessionLocal() as session:
        created = await generate_notifications(session)
        return {
            "count": len(created),
            "notifications": [_notification_to_dict(n) for n in created],
        }


@api_router.post("/notifications/clear-all")
async def clear_every_notification(user_id: Annotated[int, Depends(require_user_id)]):
    async with AsyncSessionLocal() as session:
        cleared = await clear_all_notifications(session, user_id)
        return {"cleared": cleared}


@api_router.post("/notifications/{notification_id}/clear")
async def clear_one_notification(
    notification_id: int,
    user_id: Annotated[int, Depends(require_user_id)],
):
    async with AsyncSessionLocal() as session:
        notification = await clear_notification(session, user_id, notification_id)
        return _notification_to_dict(notification)


app.include_router(api_router, prefix="/api/v1")
app.include_router(api_router, prefix="/api")


def run_api():
    """Run the FastAPI server."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec B104


if __name__ == "__main__":
    run_api()
