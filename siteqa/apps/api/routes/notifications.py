from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import get_current_user, get_db
from siteqa.domain.models import User
from siteqa.services.notifications.feed import (
    build_notification_feed,
    mark_all_notifications_read,
    mark_notification_read,
)


router = APIRouter(prefix="/notifications", tags=["notifications"])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_clock() -> Callable[[], datetime]:
    return _utc_now


@router.get("")
async def list_notifications(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> list[dict]:
    entries = await build_notification_feed(db, user.id, clock())
    return [entry.as_dict() for entry in entries]


@router.post("/read-all")
async def read_all(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    updated = await mark_all_notifications_read(db, user.id)
    return {"updated": updated}


@router.post("/{notification_id}/read")
async def read_one(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await mark_notification_read(db, user.id, notification_id)
    return {"id": notification_id, "read": True}
