"""Alert generation from current stock and batch state.

Notifications are derived state: each run re-evaluates every ingredient,
clears open alerts whose condition has gone away, refreshes the ones that
still hold and creates the rest. An open alert is identified by a structured
key of (type, ingredient, batch), scoped to its user.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.crud import list_ingredients, list_notification_recipients
from ..database.models import (
    Batch,
    BatchStatus,
    Ingredient,
    Notification,
    NotificationPriority,
    NotificationType,
    utcnow,
)
from ..errors import RecordNotFound
from ..utils import local_today

logger = logging.getLogger(__name__)

# Aggregate at or below this is a high-priority low-stock alert
LOW_STOCK_HIGH_PRIORITY = 5


def dedup_key(notification_type: str, ingredient_id: int, batch_number: Optional[str] = None) -> str:
    return f"{notification_type}:{ingredient_id}:{batch_number or '-'}"


@dataclass
class Condition:
    """An alert condition that currently holds for one ingredient."""

    type: str
    priority: str
    title: str
    message: str
    ingredient_id: int
    batch_number: Optional[str] = None

    @property
    def key(self) -> str:
        return dedup_key(self.type, self.ingredient_id, self.batch_number)


def expiring_priority(days_left: int) -> str:
    if days_left <= 1:
        return NotificationPriority.CRITICAL
    if days_left <= 2:
        return NotificationPriority.HIGH
    return NotificationPriority.MEDIUM


def _stock_conditions(ingredient: Ingredient) -> list[Condition]:
    quantity = ingredient.quantity
    if quantity <= 0:
        return [
            Condition(
                type=NotificationType.OUT_OF_STOCK,
                priority=NotificationPriority.CRITICAL,
                title="Out of Stock!",
                message=f"{ingredient.name} is completely out of stock!",
                ingredient_id=ingredient.id,
            )
        ]
    if quantity <= ingredient.alert_threshold:
        return [
            Condition(
                type=NotificationType.LOW_STOCK,
                priority=(
                    NotificationPriority.HIGH
                    if quantity <= LOW_STOCK_HIGH_PRIORITY
                    else NotificationPriority.MEDIUM
                ),
                title="Low Stock Alert",
                message=(
                    f"{ingredient.name} is running low ({quantity:g} {ingredient.unit} left). "
                    f"Alert level: {ingredient.alert_threshold:g}"
                ),
                ingredient_id=ingredient.id,
            )
        ]
    return []


def _expiration_condition(
    ingredient: Ingredient,
    expiration_date: date,
    today: date,
    batch_number: Optional[str] = None,
) -> Optional[Condition]:
    days_left = (expiration_date - today).days
    label = f"{ingredient.name} (batch {batch_number})" if batch_number else ingredient.name

    if days_left < 0:
        return Condition(
            type=NotificationType.EXPIRED,
            priority=NotificationPriority.CRITICAL,
            title="Expired Ingredient!",
            message=f"{label} expired {abs(days_left)} day(s) ago!",
            ingredient_id=ingredient.id,
            batch_number=batch_number,
        )
    if days_left <= settings.expiring_soon_days:
        return Condition(
            type=NotificationType.EXPIRING,
            priority=expiring_priority(days_left),
            title="Expiring Soon",
            message=f"{label} expires in {days_left} day(s) on {expiration_date:%m/%d/%Y}",
            ingredient_id=ingredient.id,
            batch_number=batch_number,
        )
    return None


async def _batches_with_stock(session: AsyncSession) -> dict[int, list[Batch]]:
    result = await session.execute(
        select(Batch)
        .where(
            Batch.status.in_((BatchStatus.ACTIVE, BatchStatus.EXPIRED)),
            Batch.current_quantity > 0,
        )
        .order_by(Batch.stock_in_date.asc(), Batch.id.asc())
    )
    grouped: dict[int, list[Batch]] = defaultdict(list)
    for batch in result.scalars():
        grouped[batch.ingredient_id].append(batch)
    return grouped


async def evaluate_conditions(session: AsyncSession, today: date) -> list[Condition]:
    """Every alert condition that holds right now, across all ingredients.

    Batches found past their expiration date are moved to expired status as
    a side effect. Their remaining stock is left for reconciliation to write off.
    """
    batches_by_ingredient = await _batches_with_stock(session)
    conditions: list[Condition] = []

    for ingredient in await list_ingredients(session):
        conditions.extend(_stock_conditions(ingredient))

        batches = batches_by_ingredient.get(ingredient.id, [])
        if batches:
            for batch in batches:
                if batch.expiration_date is None:
                    continue
                if batch.check_expiration(today):
                    logger.info(f"Batch {batch.batch_number} marked expired during notification check")
                condition = _expiration_condition(ingredient, batch.expiration_date, today, batch.batch_number)
                if condition is not None:
                    conditions.append(condition)
        elif ingredient.expiration_date is not None:
            # Legacy flat expiration applies only to stock that is not batch-tracked
            condition = _expiration_condition(ingredient, ingredient.expiration_date, today)
            if condition is not None:
                conditions.append(condition)

    return conditions


async def _open_notifications(session: AsyncSession, user_id: int) -> list[Notification]:
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id, Notification.is_cleared.is_(False))
        .order_by(Notification.id)
    )
    return list(result.scalars().all())


def _sort_key(notification: Notification):
    return (
        NotificationPriority.ORDER.get(notification.priority, len(NotificationPriority.ORDER)),
        -notification.created_at.timestamp() if notification.created_at else 0,
        -(notification.id or 0),
    )


async def generate_notifications(
    session: AsyncSession, today: Optional[date] = None
) -> list[Notification]:
    """Bring every recipient's open notifications in line with current stock.

    Returns:
        Notifications created by this run, most urgent first
    """
    today = today or local_today()
    try:
        conditions = await evaluate_conditions(session, today)
        recipients = await list_notification_recipients(session)

        created: list[Notification] = []
        cleared = 0
        now = utcnow()
        for user in recipients:
            current = {condition.key: condition for condition in conditions}
            open_by_key: dict[str, Notification] = {}

            for notification in await _open_notifications(session, user.id):
                if notification.dedup_key in current and notification.dedup_key not in open_by_key:
                    open_by_key[notification.dedup_key] = notification
                else:
                    notification.is_cleared = True
                    notification.cleared_at = now
                    cleared += 1

            for key, condition in current.items():
                existing = open_by_key.get(key)
                if existing is not None:
                    existing.priority = condition.priority
                    existing.title = condition.title
                    existing.message = condition.message
                    continue
                notification = Notification(
                    user_id=user.id,
                    type=condition.type,
                    priority=condition.priority,
                    title=condition.title,
                    message=condition.message,
                    ingredient_id=condition.ingredient_id,
                    batch_number=condition.batch_number,
                    dedup_key=key,
                )
                session.add(notification)
                created.append(notification)

        await session.commit()
    except Exception:  # Intentionally broad: a half-reconciled alert set must not persist
        await session.rollback()
        raise

    logger.info(
        f"Notifications generated: {len(created)} new, {cleared} cleared "
        f"for {len(recipients)} user(s)"
    )
    return sorted(created, key=_sort_key)


async def list_notifications(
    session: AsyncSession, user_id: int, include_cleared: bool = False
) -> list[Notification]:
    """A user's notifications, most urgent first and newest first within a priority."""
    query = select(Notification).where(Notification.user_id == user_id)
    if not include_cleared:
        query = query.where(Notification.is_cleared.is_(False))
    result = await session.execute(query)
    return sorted(result.scalars().all(), key=_sort_key)


async def clear_notification(session: AsyncSession, user_id: int, notification_id: int) -> Notification:
    """Soft-clear one of the user's notifications.

    Raises:
        RecordNotFound: no such notification belongs to the user
    """
    notification = await session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise RecordNotFound("Notification", notification_id)
    if not notification.is_cleared:
        notification.is_cleared = True
        notification.cleared_at = utcnow()
        await session.commit()
    return notification


async def clear_all_notifications(session: AsyncSession, user_id: int) -> int:
    """Clear every open notification of a user; returns how many were cleared."""
    now = utcnow()
    open_notifications = await _open_notifications(session, user_id)
    for notification in open_notifications:
        notification.is_cleared = True
        notification.cleared_at = now
    await session.commit()
    return len(open_notifications)
