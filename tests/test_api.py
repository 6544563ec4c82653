"""Tests for FastAPI REST API endpoints."""

from datetime import timedelta
from typing import Any
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from cafestock.api import app
from cafestock.database.models import Ingredient, User
from cafestock.utils import local_today


@pytest.fixture
def patch_db(mock_session_factory: Any) -> Any:
    """Patch AsyncSessionLocal in api module to use test session."""
    with patch("cafestock.api.AsyncSessionLocal", mock_session_factory):
        yield


@pytest_asyncio.fixture
async def client(patch_db: Any) -> AsyncClient:
    """Async HTTP test client wired to test database."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def as_user(user: User) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


async def stock_in(client: AsyncClient, ingredient: Ingredient, quantity: float, **extra: Any) -> dict[str, Any]:
    line = {"ingredient_id": ingredient.id, "quantity": quantity, "unit": ingredient.unit, **extra}
    resp = await client.post("/api/v1/stock-in", json={"items": [line]})
    assert resp.status_code == 201, resp.text
    return resp.json()


# ===== Health =====


class TestHealth:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    async def test_health_returns_healthy(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["dependencies"]["database"] == "healthy"


# ===== Stock-in =====


class TestStockIn:
    @pytest.mark.asyncio
    async def test_stock_in_creates_batches(
        self, client: AsyncClient, milk: Ingredient, staff_user: User
    ) -> None:
        resp = await client.post(
            "/api/stock-in",
            json={
                "items": [
                    {"ingredient_id": milk.id, "quantity": 1.5, "unit": "l", "expiration_date": "in 5 days"}
                ]
            },
            headers=as_user(staff_user),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["stock_in"]["batch_number"].startswith("BATCH-")
        assert data["stock_in"]["stockman_id"] == staff_user.id
        (batch,) = data["batches"]
        assert batch["current_quantity"] == 1500
        assert batch["unit"] == "ml"
        assert batch["expiration_date"] == (local_today() + timedelta(days=5)).isoformat()
        assert batch["days_until_expiry"] == 5

    @pytest.mark.asyncio
    async def test_unparseable_expiration_is_422(self, client: AsyncClient, milk: Ingredient) -> None:
        resp = await client.post(
            "/api/v1/stock-in",
            json={"items": [{"ingredient_id": milk.id, "quantity": 1, "unit": "l", "expiration_date": "someday"}]},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_ingredient_is_404(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/stock-in", json={"items": [{"ingredient_id": 999, "quantity": 1, "unit": "l"}]}
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "INGREDIENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_duplicate_receipt_number_is_409(self, client: AsyncClient, milk: Ingredient) -> None:
        body = {"batch_number": "DR-7", "items": [{"ingredient_id": milk.id, "quantity": 1, "unit": "l"}]}
        assert (await client.post("/api/v1/stock-in", json=body)).status_code == 201
        resp = await client.post("/api/v1/stock-in", json=body)
        assert resp.status_code == 409
        assert resp.json()["code"] == "DUPLICATE_BATCH"

    @pytest.mark.asyncio
    async def test_bad_unit_is_400(self, client: AsyncClient, milk: Ingredient) -> None:
        resp = await client.post(
            "/api/v1/stock-in", json={"items": [{"ingredient_id": milk.id, "quantity": 1, "unit": "kg"}]}
        )
        assert resp.status_code == 400
        data = resp.json()
        assert data["code"] == "UNIT_CONVERSION_ERROR"
        assert data["details"] == {"from_unit": "kg", "to_unit": "ml"}


# ===== Deductions =====


class TestDeductions:
    @pytest.mark.asyncio
    async def test_deduct_fifo(self, client: AsyncClient, milk: Ingredient) -> None:
        await stock_in(client, milk, 1000)
        await stock_in(client, milk, 1000)

        resp = await client.post(
            "/api/v1/deductions", json={"ingredient_id": milk.id, "quantity": 1500, "unit": "ml"}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_deducted"] == 1500
        assert [d["quantity_deducted"] for d in data["deduction_details"]] == [1000, 500]
        assert data["remaining_stock"] == 500

    @pytest.mark.asyncio
    async def test_insufficient_stock_is_400(self, client: AsyncClient, milk: Ingredient) -> None:
        await stock_in(client, milk, 100)
        resp = await client.post(
            "/api/v1/deductions", json={"ingredient_id": milk.id, "quantity": 200, "unit": "ml"}
        )
        assert resp.status_code == 400
        data = resp.json()
        assert data["code"] == "INSUFFICIENT_STOCK"
        assert data["details"]["available"] == 100
        assert data["details"]["requested"] == 200

    @pytest.mark.asyncio
    async def test_sale_deducts_all_lines(
        self, client: AsyncClient, milk: Ingredient, cups: Ingredient
    ) -> None:
        await stock_in(client, milk, 500)
        resp = await client.post(
            "/api/v1/sales/deduct",
            json={
                "lines": [
                    {"ingredient_id": milk.id, "quantity": 0.2, "unit": "l"},
                    {"ingredient_id": cups.id, "quantity": 1, "unit": "pcs"},
                ]
            },
        )
        assert resp.status_code == 200
        deductions = resp.json()["deductions"]
        assert deductions[0]["batch_tracked"] is True
        assert deductions[1]["batch_tracked"] is False
        assert deductions[1]["remaining_stock"] == 49

    @pytest.mark.asyncio
    async def test_restore(self, client: AsyncClient, cups: Ingredient) -> None:
        resp = await client.post(
            "/api/v1/stock/restore", json={"ingredient_id": cups.id, "quantity": 5, "unit": "pcs"}
        )
        assert resp.status_code == 200
        assert resp.json()["quantity"] == 55


# ===== Spoilage =====


class TestSpoilage:
    @pytest.mark.asyncio
    async def test_create_and_delete(
        self, client: AsyncClient, db_session: AsyncSession, milk: Ingredient, staff_user: User
    ) -> None:
        await stock_in(client, milk, 1000)
        resp = await client.post(
            "/api/v1/spoilage",
            json={
                "items": [{"ingredient_id": milk.id, "quantity": 250, "unit": "ml", "reason": "damaged"}],
                "remarks": "Dropped a carton",
            },
            headers=as_user(staff_user),
        )
        assert resp.status_code == 201
        record = resp.json()
        assert record["person_in_charge_id"] == staff_user.id
        assert record["total_waste"] == 250
        assert record["items"][0]["reason"] == "damaged"
        assert record["items"][0]["batch_number"] is not None

        resp = await client.delete(f"/api/v1/spoilage/{record['id']}")
        assert resp.status_code == 200
        await db_session.refresh(milk)
        assert milk.quantity == 1000

    @pytest.mark.asyncio
    async def test_unknown_reason_is_422(self, client: AsyncClient, cups: Ingredient) -> None:
        resp = await client.post(
            "/api/v1/spoilage",
            json={"items": [{"ingredient_id": cups.id, "quantity": 1, "unit": "pcs", "reason": "dropped"}]},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_delete_missing_is_404(self, client: AsyncClient) -> None:
        resp = await client.delete("/api/v1/spoilage/404")
        assert resp.status_code == 404


# ===== Batches =====


class TestBatches:
    @pytest.mark.asyncio
    async def test_ingredient_batches_and_lookup(self, client: AsyncClient, milk: Ingredient) -> None:
        created = await stock_in(client, milk, 300)
        number = created["batches"][0]["batch_number"]

        resp = await client.get(f"/api/v1/ingredients/{milk.id}/batches")
        assert resp.status_code == 200
        assert resp.json()["count"] == 1

        resp = await client.get("/api/v1/batches/lookup", params={"batch_number": number})
        assert resp.status_code == 200
        assert resp.json()["batch_number"] == number

        resp = await client.get("/api/v1/batches/lookup", params={"batch_number": "nope"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_expiring_and_statistics(self, client: AsyncClient, milk: Ingredient) -> None:
        soon = (local_today() + timedelta(days=2)).isoformat()
        await stock_in(client, milk, 300, expiration_date=soon)
        await stock_in(client, milk, 300)

        resp = await client.get("/api/v1/batches/expiring", params={"days": 3})
        assert resp.json()["count"] == 1

        resp = await client.get("/api/v1/batches/statistics")
        assert resp.status_code == 200
        assert resp.json()["batches"]["total_active"] == 2

    @pytest.mark.asyncio
    async def test_history(self, client: AsyncClient, milk: Ingredient) -> None:
        created = await stock_in(client, milk, 300)
        batch_id = created["batches"][0]["id"]

        resp = await client.get(f"/api/v1/batches/{batch_id}/history")
        assert resp.status_code == 200
        assert resp.json()["usage_history"][0]["type"] == "stock_in"

        assert (await client.get("/api/v1/batches/9999/history")).status_code == 404

    @pytest.mark.asyncio
    async def test_manual_expiration_processing(
        self, client: AsyncClient, milk: Ingredient, admin_user: User
    ) -> None:
        yesterday = (local_today() - timedelta(days=1)).isoformat()
        await stock_in(client, milk, 300, expiration_date=yesterday)

        resp = await client.post("/api/v1/expiration/process", headers=as_user(admin_user))
        assert resp.status_code == 200
        data = resp.json()
        assert data["processed_batches"] == 1
        assert data["spoilage_records"] == 1

        resp = await client.get("/api/v1/batches/expired", params={"ingredient_id": milk.id})
        assert resp.json()["count"] == 1


# ===== Notifications =====


class TestNotifications:
    @pytest.mark.asyncio
    async def test_header_required(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/notifications")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_generate_list_and_clear(
        self, client: AsyncClient, cups: Ingredient, staff_user: User
    ) -> None:
        await client.post(
            "/api/v1/deductions", json={"ingredient_id": cups.id, "quantity": 45, "unit": "pcs"}
        )

        resp = await client.post("/api/v1/notifications/generate")
        assert resp.status_code == 200
        assert resp.json()["count"] == 1

        resp = await client.get("/api/v1/notifications", headers=as_user(staff_user))
        (notification,) = resp.json()["notifications"]
        assert notification["type"] == "low_stock"
        assert notification["priority"] == "high"

        resp = await client.post(
            f"/api/v1/notifications/{notification['id']}/clear", headers=as_user(staff_user)
        )
        assert resp.status_code == 200
        assert resp.json()["is_cleared"] is True

        resp = await client.get("/api/v1/notifications", headers=as_user(staff_user))
        assert resp.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_clear_unknown_is_404(self, client: AsyncClient, staff_user: User) -> None:
        resp = await client.post("/api/v1/notifications/77/clear", headers=as_user(staff_user))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_clear_all(self, client: AsyncClient, cups: Ingredient, staff_user: User) -> None:
        await client.post(
            "/api/v1/deductions", json={"ingredient_id": cups.id, "quantity": 50, "unit": "pcs"}
        )
        await client.post("/api/v1/notifications/generate")

        resp = await client.post("/api/v1/notifications/clear-all", headers=as_user(staff_user))
        assert resp.json() == {"cleared": 1}
