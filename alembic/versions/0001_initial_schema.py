"""Initial schema: users, ingredients, stock-in records, batches, spoilage, notifications.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Ingredients (aggregate stock)
    op.create_table(
        "ingredients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("alert_threshold", sa.Float(), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ingredients_id", "ingredients", ["id"])
    op.create_index("ix_ingredients_name", "ingredients", ["name"])
    op.create_index("ix_ingredients_deleted_at", "ingredients", ["deleted_at"])
    op.create_index(
        "uq_ingredients_active_name",
        "ingredients",
        ["name"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    # Stock-in records
    op.create_table(
        "stock_in_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_number", sa.String(), nullable=False),
        sa.Column("stockman_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_in_records_id", "stock_in_records", ["id"])
    op.create_index("ix_stock_in_records_batch_number", "stock_in_records", ["batch_number"], unique=True)

    # Batches
    op.create_table(
        "ingredient_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ingredient_id", sa.Integer(), sa.ForeignKey("ingredients.id"), nullable=False),
        sa.Column("batch_number", sa.String(), nullable=False),
        sa.Column("original_quantity", sa.Float(), nullable=False),
        sa.Column("current_quantity", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("stock_in_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("ingredient_snapshot", sa.JSON(), nullable=False),
        sa.Column(
            "stock_in_record_id",
            sa.Integer(),
            sa.ForeignKey("stock_in_records.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ingredient_batches_id", "ingredient_batches", ["id"])
    op.create_index("ix_ingredient_batches_ingredient_id", "ingredient_batches", ["ingredient_id"])
    op.create_index("ix_ingredient_batches_batch_number", "ingredient_batches", ["batch_number"], unique=True)
    op.create_index("ix_ingredient_batches_stock_in_date", "ingredient_batches", ["stock_in_date"])
    op.create_index("ix_ingredient_batches_ingredient_status", "ingredient_batches", ["ingredient_id", "status"])
    op.create_index("ix_ingredient_batches_expiration_status", "ingredient_batches", ["expiration_date", "status"])

    # Spoilage
    op.create_table(
        "spoilage_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "person_in_charge_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("spoilage_type", sa.String(), nullable=False),
        sa.Column("total_waste", sa.Float(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_spoilage_records_id", "spoilage_records", ["id"])

    op.create_table(
        "spoilage_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "record_id", sa.Integer(), sa.ForeignKey("spoilage_records.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("ingredient_id", sa.Integer(), sa.ForeignKey("ingredients.id"), nullable=True),
        sa.Column("ingredient_snapshot", sa.JSON(), nullable=False),
        sa.Column("batch_id", sa.Integer(), sa.ForeignKey("ingredient_batches.id"), nullable=True),
        sa.Column("batch_number", sa.String(), nullable=True),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("reason", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_spoilage_items_id", "spoilage_items", ["id"])
    op.create_index("ix_spoilage_items_record_id", "spoilage_items", ["record_id"])
    op.create_index("ix_spoilage_items_ingredient_id", "spoilage_items", ["ingredient_id"])
    op.create_index("ix_spoilage_items_batch_id", "spoilage_items", ["batch_id"])

    # Notifications
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("ingredient_id", sa.Integer(), sa.ForeignKey("ingredients.id"), nullable=True),
        sa.Column("batch_number", sa.String(), nullable=True),
        sa.Column("dedup_key", sa.String(), nullable=False),
        sa.Column("is_cleared", sa.Boolean(), nullable=False),
        sa.Column("cleared_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_ingredient_id", "notifications", ["ingredient_id"])
    op.create_index("ix_notifications_dedup_key", "notifications", ["dedup_key"])
    op.create_index("ix_notifications_user_open", "notifications", ["user_id", "is_cleared"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("spoilage_items")
    op.drop_table("spoilage_records")
    op.drop_table("ingredient_batches")
    op.drop_table("stock_in_records")
    op.drop_table("ingredients")
    op.drop_table("users")
