"""SQLAlchemy database models."""

from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..errors import InsufficientBatchStock

# Quantities are floats; anything below this is treated as zero
QUANTITY_EPSILON = 1e-9


def round_quantity(value: float) -> float:
    """Round away float drift accumulated by repeated unit conversion."""
    rounded = round(value, 6)
    return 0.0 if abs(rounded) < QUANTITY_EPSILON else rounded


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class UserRole:
    ADMIN = "admin"
    STAFF = "staff"


class UserStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(Base):
    """Model for staff accounts (notification recipients and record actors)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, nullable=False, default=UserRole.STAFF)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=UserStatus.PENDING)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"


class IngredientCategory:
    LIQUID = "Liquid Ingredient"
    SOLID = "Solid Ingredient"
    MATERIAL = "Material"

    ALL = (LIQUID, SOLID, MATERIAL)


class Ingredient(Base):
    """Aggregate stock record for one ingredient.

    ``quantity`` is the running total in ``unit``. For batch-tracked
    ingredients it mirrors the sum of the batches' ``current_quantity``.
    """

    __tablename__ = "ingredients"
    __table_args__ = (
        # Name is unique only among ingredients that have not been soft-deleted
        Index(
            "uq_ingredients_active_name",
            "name",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    unit: Mapped[str] = mapped_column(String, nullable=False)
    alert_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=10)
    # Legacy flat expiration, only meaningful for ingredients without batches
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    __mapper_args__ = {"version_id_col": version}

    def snapshot(self) -> dict[str, Any]:
        """Frozen identity fields for historical records."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
        }

    def __repr__(self) -> str:
        return f"<Ingredient(id={self.id}, name='{self.name}', quantity={self.quantity} {self.unit})>"


class StockInRecord(Base):
    """A stock receipt; each line item becomes one batch."""

    __tablename__ = "stock_in_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    batch_number: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    stockman_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    # [{ingredient_id, ingredient_snapshot, quantity, unit, expiration_date,
    #   individual_batch_number, batch_id}]
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<StockInRecord(id={self.id}, batch_number='{self.batch_number}')>"


class BatchStatus:
    ACTIVE = "active"
    EXPIRED = "expired"
    DEPLETED = "depleted"


class Batch(Base):
    """A dated, quantified lot of one ingredient created by a stock receipt."""

    __tablename__ = "ingredient_batches"
    __table_args__ = (
        Index("ix_ingredient_batches_ingredient_status", "ingredient_id", "status"),
        Index("ix_ingredient_batches_expiration_status", "expiration_date", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    ingredient_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ingredients.id"), nullable=False, index=True
    )
    batch_number: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    original_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    current_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String, nullable=False)
    stock_in_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    # None means the batch never expires
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=BatchStatus.ACTIVE)
    ingredient_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    stock_in_record_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("stock_in_records.id", ondelete="SET NULL"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    __mapper_args__ = {"version_id_col": version}

    ingredient = relationship("Ingredient", lazy="raise")

    def is_past_expiration(self, today: date) -> bool:
        if self.expiration_date is None:
            return False
        return today > self.expiration_date

    def days_until_expiry(self, today: date) -> Optional[int]:
        if self.expiration_date is None:
            return None
        return (self.expiration_date - today).days

    def check_expiration(self, today: date) -> bool:
        """Flip an active batch to expired once its date has passed.

        Returns True only when this call made the transition.
        """
        if self.status == BatchStatus.ACTIVE and self.is_past_expiration(today):
            self.status = BatchStatus.EXPIRED
            return True
        return False

    def deduct(self, quantity: float) -> float:
        """Remove ``quantity`` from the batch and return what is left.

        Emptying the batch marks it depleted in the same write.
        """
        if quantity > self.current_quantity + QUANTITY_EPSILON:
            raise InsufficientBatchStock(self.batch_number, self.current_quantity, quantity, self.unit)
        self.current_quantity = round_quantity(max(0.0, self.current_quantity - quantity))
        if self.current_quantity <= 0 and self.status == BatchStatus.ACTIVE:
            self.status = BatchStatus.DEPLETED
        return self.current_quantity

    def force_expire(self) -> float:
        """Zero out the batch as spoiled; returns the quantity written off."""
        wasted = self.current_quantity
        self.status = BatchStatus.EXPIRED
        self.current_quantity = 0.0
        return wasted

    def __repr__(self) -> str:
        return (
            f"<Batch(id={self.id}, batch_number='{self.batch_number}', "
            f"current_quantity={self.current_quantity}, status='{self.status}')>"
        )


class SpoilageType:
    MANUAL = "manual"
    AUTO_EXPIRED = "auto_expired"


class SpoilageReason:
    EXPIRED = "expired"
    DAMAGED = "damaged"
    CONTAMINATED = "contaminated"
    OTHER = "other"

    ALL = (EXPIRED, DAMAGED, CONTAMINATED, OTHER)


class SpoilageRecord(Base):
    """Immutable audit entry for wasted stock."""

    __tablename__ = "spoilage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    person_in_charge_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    spoilage_type: Mapped[str] = mapped_column(String, nullable=False, default=SpoilageType.MANUAL)
    total_waste: Mapped[float] = mapped_column(Float, nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    items = relationship(
        "SpoilageItem",
        back_populates="record",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SpoilageItem.id",
    )

    def __repr__(self) -> str:
        return f"<SpoilageRecord(id={self.id}, type='{self.spoilage_type}', total_waste={self.total_waste})>"


class SpoilageItem(Base):
    """One consumed slice of stock; batch fields are empty for legacy stock."""

    __tablename__ = "spoilage_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    record_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("spoilage_records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ingredient_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ingredients.id"), nullable=True, index=True
    )
    ingredient_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    batch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ingredient_batches.id"), nullable=True, index=True
    )
    batch_number: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String, nullable=False)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    reason: Mapped[str] = mapped_column(String, nullable=False, default=SpoilageReason.OTHER)

    record = relationship("SpoilageRecord", back_populates="items")

    def __repr__(self) -> str:
        return f"<SpoilageItem(id={self.id}, batch_number={self.batch_number!r}, quantity={self.quantity})>"


class NotificationType:
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    EXPIRING = "expiring"
    EXPIRED = "expired"


class NotificationPriority:
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"

    ORDER = {CRITICAL: 0, HIGH: 1, MEDIUM: 2}


class Notification(Base):
    """Derived alert state for one (user, ingredient, batch, type)."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_open", "user_id", "is_cleared"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    priority: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    ingredient_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ingredients.id"), nullable=True, index=True
    )
    batch_number: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    dedup_key: Mapped[str] = mapped_column(String, nullable=False, index=True)
    is_cleared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cleared_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, type='{self.type}', cleared={self.is_cleared})>"
