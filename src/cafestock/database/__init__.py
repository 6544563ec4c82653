"""Database package initialization."""

from .crud import (
    create_ingredient,
    create_user,
    delete_ingredient,
    get_ingredient,
    get_system_actor,
    get_user,
    list_ingredients,
    list_notification_recipients,
    require_ingredient,
)
from .engine import AsyncSessionLocal, close_db, get_session, init_db
from .models import (
    Base,
    Batch,
    Ingredient,
    Notification,
    SpoilageItem,
    SpoilageRecord,
    StockInRecord,
    User,
)

__all__ = [
    # Models
    "Base",
    "Batch",
    "Ingredient",
    "Notification",
    "SpoilageItem",
    "SpoilageRecord",
    "StockInRecord",
    "User",
    # Engine
    "AsyncSessionLocal",
    "init_db",
    "close_db",
    "get_session",
    # CRUD - Users
    "create_user",
    "get_user",
    "get_system_actor",
    "list_notification_recipients",
    # CRUD - Ingredients
    "create_ingredient",
    "get_ingredient",
    "require_ingredient",
    "list_ingredients",
    "delete_ingredient",
]
