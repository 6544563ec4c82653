"""Ledger error taxonomy.

Every error carries a stable ``code`` and a ``details`` dict so the HTTP layer
can report what was attempted (unit pair, available vs. requested quantity)
without leaking identifiers the caller did not already supply.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for all inventory ledger errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UnsupportedConversion(LedgerError):
    """No conversion factor exists between two unit tokens."""

    code = "UNIT_CONVERSION_ERROR"

    def __init__(self, from_unit: str, to_unit: str) -> None:
        self.from_unit = from_unit
        self.to_unit = to_unit
        super().__init__(
            f"Unit conversion not supported: {from_unit} -> {to_unit}",
            {"from_unit": from_unit, "to_unit": to_unit},
        )


class NoActiveBatches(LedgerError):
    """Routing signal: the ingredient holds no batch stock, active or expired.

    Callers fall back to deducting straight from the ingredient aggregate.
    """

    code = "NO_ACTIVE_BATCHES"

    def __init__(self, ingredient_name: str) -> None:
        self.ingredient_name = ingredient_name
        super().__init__(f"No active batches available for {ingredient_name}")


class InsufficientStock(LedgerError):
    """Requested quantity exceeds what is available for an ingredient."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, ingredient_name: str, available: float, requested: float, unit: str) -> None:
        self.available = available
        self.requested = requested
        self.unit = unit
        super().__init__(
            f"Insufficient stock for {ingredient_name}. "
            f"Available: {available:g} {unit}, Requested: {requested:g} {unit}",
            {"available": available, "requested": requested, "unit": unit},
        )


class InsufficientBatchStock(LedgerError):
    """A single batch cannot cover the amount asked of it."""

    code = "INSUFFICIENT_BATCH_STOCK"

    def __init__(self, batch_number: str, available: float, requested: float, unit: str) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            f"Cannot deduct {requested:g} {unit}. "
            f"Only {available:g} {unit} available in batch {batch_number}",
            {"batch_number": batch_number, "available": available, "requested": requested, "unit": unit},
        )


class DuplicateBatchNumber(LedgerError):
    code = "DUPLICATE_BATCH"

    def __init__(self, batch_number: str) -> None:
        self.batch_number = batch_number
        super().__init__(f"Batch number already exists: {batch_number}", {"batch_number": batch_number})


class IngredientNotFound(LedgerError):
    code = "INGREDIENT_NOT_FOUND"

    def __init__(self, ingredient_id: int) -> None:
        super().__init__(f"Ingredient with id={ingredient_id} not found")


class RecordNotFound(LedgerError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any) -> None:
        super().__init__(f"{resource} not found: {identifier}")
