"""CRUD operations for the records the ledger reads and writes around."""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import IngredientNotFound
from .models import Ingredient, User, UserRole, UserStatus, utcnow

logger = logging.getLogger(__name__)


# ===== User Operations =====


async def create_user(
    session: AsyncSession,
    email: str,
    username: str,
    role: str = UserRole.STAFF,
    status: str = UserStatus.APPROVED,
    is_active: bool = True,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    """Create a staff account.

    Args:
        session: Database session
        email: Unique email address
        username: Unique username
        role: admin or staff
        status: Approval status; only approved users receive notifications
        is_active: Whether the account is enabled

    Returns:
        The created user
    """
    user = User(
        email=email,
        username=username,
        role=role,
        status=status,
        is_active=is_active,
        first_name=first_name,
        last_name=last_name,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info(f"Created user id={user.id} ({user.username}, role={user.role})")
    return user


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    return await session.get(User, user_id)


async def list_notification_recipients(session: AsyncSession) -> list[User]:
    """Active, approved users, oldest first."""
    result = await session.execute(
        select(User)
        .where(User.is_active.is_(True), User.status == UserStatus.APPROVED)
        .order_by(User.id)
    )
    return list(result.scalars().all())


async def get_system_actor(session: AsyncSession) -> User:
    """Resolve the user that automated records are attributed to.

    Prefers the oldest admin, then the oldest user of any role. When the
    database has no users at all a dedicated system account is created.
    """
    result = await session.execute(
        select(User).where(User.role == UserRole.ADMIN).order_by(User.created_at, User.id).limit(1)
    )
    actor = result.scalar_one_or_none()
    if actor is not None:
        return actor

    result = await session.execute(select(User).order_by(User.created_at, User.id).limit(1))
    actor = result.scalar_one_or_none()
    if actor is not None:
        return actor

    logger.warning("No users found, creating system user for automated operations")
    return await create_user(
        session,
        email=settings.system_actor_email,
        username="system",
        role=UserRole.ADMIN,
        status=UserStatus.APPROVED,
        first_name="System",
        last_name="Automated",
    )


# ===== Ingredient Operations =====


async def create_ingredient(
    session: AsyncSession,
    name: str,
    unit: str,
    category: str,
    quantity: float = 0,
    alert_threshold: Optional[float] = None,
    expiration_date: Optional[date] = None,
) -> Ingredient:
    """Create an ingredient.

    A non-zero starting ``quantity`` makes it a legacy (non-batch) ingredient
    until its first stock receipt.
    """
    ingredient = Ingredient(
        name=name,
        unit=unit,
        category=category,
        quantity=quantity,
        alert_threshold=alert_threshold if alert_threshold is not None else settings.default_alert_threshold,
        expiration_date=expiration_date,
    )
    session.add(ingredient)
    await session.commit()
    await session.refresh(ingredient)
    logger.info(f"Created ingredient id={ingredient.id} ({ingredient.name}, {ingredient.quantity} {ingredient.unit})")
    return ingredient


async def get_ingredient(
    session: AsyncSession,
    ingredient_id: int,
    for_update: bool = False,
    include_deleted: bool = False,
) -> Optional[Ingredient]:
    """Fetch an ingredient, optionally locking its row for the transaction."""
    query = select(Ingredient).where(Ingredient.id == ingredient_id)
    if not include_deleted:
        query = query.where(Ingredient.deleted_at.is_(None))
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def require_ingredient(
    session: AsyncSession, ingredient_id: int, for_update: bool = False
) -> Ingredient:
    ingredient = await get_ingredient(session, ingredient_id, for_update=for_update)
    if ingredient is None:
        raise IngredientNotFound(ingredient_id)
    return ingredient


async def list_ingredients(session: AsyncSession) -> list[Ingredient]:
    """Non-deleted ingredients ordered by name."""
    result = await session.execute(
        select(Ingredient).where(Ingredient.deleted_at.is_(None)).order_by(Ingredient.name)
    )
    return list(result.scalars().all())


async def delete_ingredient(session: AsyncSession, ingredient_id: int) -> bool:
    """Soft-delete an ingredient.

    Batches and spoilage lines keep pointing at the row, so it is never
    physically removed.
    """
    ingredient = await get_ingredient(session, ingredient_id)
    if ingredient is None:
        return False
    ingredient.deleted_at = utcnow()
    await session.commit()
    logger.info(f"Soft-deleted ingredient id={ingredient_id}")
    return True
