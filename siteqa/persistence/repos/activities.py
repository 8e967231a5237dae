from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.models import Activity, Notification


async def list_activities_for_user(
    session: AsyncSession, user_id: str, *, limit: int = 50
) -> list[Activity]:
    result = await session.execute(
        select(Activity)
        .where(Activity.user_id == user_id)
        .order_by(Activity.created_at.desc(), Activity.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_notifications_for_user(session: AsyncSession, user_id: str) -> list[Notification]:
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id)
    )
    return list(result.scalars().all())


async def get_notification_for_user(
    session: AsyncSession, notification_id: str, user_id: str
) -> Notification | None:
    result = await session.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def mark_all_read(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    return int(result.rowcount or 0)
