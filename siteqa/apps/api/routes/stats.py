from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import get_current_user, get_db
from siteqa.domain.models import User
from siteqa.services import stats as stats_service


router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/open-issues")
async def open_issues(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
    return {"open_issues": await stats_service.count_open_issues(db, user.id)}


@router.get("/in-progress")
async def in_progress(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
    return {"in_progress": await stats_service.count_in_progress(db, user.id)}


@router.get("/resolved")
async def resolved(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
    return {"resolved": await stats_service.count_resolved(db, user.id)}


@router.get("/reports-this-week")
async def reports_this_week(
    user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)
) -> dict:
    now = datetime.now(timezone.utc)
    return {"reports_this_week": await stats_service.count_reports_this_week(db, user.id, now)}


@router.get("/avg-resolution-time")
async def avg_resolution_time(
    user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)
) -> dict:
    return {"avg_resolution_time_hours": await stats_service.average_resolution_hours(db, user.id)}
