from __future__ import annotations

import asyncio
import logging

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from siteqa.domain.models import User, utc_now
from siteqa.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

# Strong references so scheduled touches are not garbage collected mid-flight.
_pending: set[asyncio.Task] = set()


async def touch_last_active(user_id: str) -> None:
    # Runs in its own session so it never joins a request transaction.
    async with SessionLocal() as session:
        try:
            await session.execute(
                update(User).where(User.id == user_id).values(last_active_at=utc_now())
            )
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            logger.warning("last_active_touch_failed user_id=%s", user_id, exc_info=True)


def schedule_last_active_touch(user_id: str) -> asyncio.Task:
    task = asyncio.create_task(touch_last_active(user_id))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain_background_tasks() -> None:
    # Used by tests and shutdown to wait for outstanding touches.
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
