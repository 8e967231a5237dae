from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import get_current_user, get_db
from siteqa.domain.models import User
from siteqa.persistence.repos import activities as activities_repo
from siteqa.services.activity import present_activity


router = APIRouter(tags=["activities"])


@router.get("/activities")
async def list_activities(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    activities = await activities_repo.list_activities_for_user(db, user.id, limit=limit)
    return [present_activity(activity) for activity in activities]
