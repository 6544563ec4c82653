"""FIFO batch inventory ledger."""

from .batches import (
    create_batches_from_stock_in,
    get_active_batches,
    has_batch_stock,
    get_batch_by_number,
    get_batch_history,
    get_batch_statistics,
    get_expired_batches,
    get_expiring_within,
    get_ingredient_batches,
    receive_stock,
)
from .fifo import consume_stock, deduct_fifo, deduct_for_sale, restore_stock
from .notifications import (
    clear_all_notifications,
    clear_notification,
    generate_notifications,
    list_notifications,
)
from .reconciliation import process_expired_batches
from .spoilage import delete_spoilage_record, record_spoilage

__all__ = [
    # Batches
    "create_batches_from_stock_in",
    "receive_stock",
    "get_active_batches",
    "has_batch_stock",
    "get_ingredient_batches",
    "get_expiring_within",
    "get_expired_batches",
    "get_batch_by_number",
    "get_batch_history",
    "get_batch_statistics",
    # Deduction
    "deduct_fifo",
    "consume_stock",
    "deduct_for_sale",
    "restore_stock",
    # Spoilage
    "record_spoilage",
    "delete_spoilage_record",
    "process_expired_batches",
    # Notifications
    "generate_notifications",
    "list_notifications",
    "clear_notification",
    "clear_all_notifications",
]
