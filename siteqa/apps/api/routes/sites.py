from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import get_current_user, get_db, get_storage
from siteqa.domain.models import User
from siteqa.persistence.repos import reports as reports_repo
from siteqa.providers.storage.base import ObjectStorage
from siteqa.services import sites as sites_service
from siteqa.services.reports import report_to_dict


router = APIRouter(tags=["sites"])


class SiteInviteRequest(BaseModel):
    email: str | None = None


class SiteArchiveRequest(BaseModel):
    archived: bool


class SitePinRequest(BaseModel):
    pinned: bool


@router.get("/sites")
async def list_sites(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    return await sites_service.list_sites_for_user(db, user.id)


@router.get("/site/{slug}")
async def get_site_reports(
    slug: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> list[dict]:
    site = await sites_service.get_accessible_site_by_slug(db, slug, user.id)
    reports = await reports_repo.list_site_reports(db, site.id)
    return [await report_to_dict(report, storage) for report in reports]


@router.post("/site/{slug}/invite")
async def invite_to_site(
    slug: str,
    payload: SiteInviteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    added = await sites_service.invite_user_to_site(
        db, slug=slug, email=payload.email or "", inviter=user
    )
    message = "User invited successfully" if added else "User already has access"
    return {"message": message, "added": added}


@router.get("/site/{slug}/users")
async def site_users(
    slug: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    return await sites_service.list_site_users(db, slug, user.id)


@router.patch("/site/{slug}/archive")
async def archive_site(
    slug: str,
    payload: SiteArchiveRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    count = await sites_service.set_site_archived(
        db, slug=slug, user_id=user.id, archived=payload.archived
    )
    verb = "archived" if payload.archived else "unarchived"
    return {"message": f'{count} report(s) {verb} for site "{slug}"', "count": count}


@router.patch("/site/{slug}/pin")
async def pin_site(
    slug: str,
    payload: SitePinRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await sites_service.set_site_pinned(db, slug=slug, user_id=user.id, pinned=payload.pinned)
    return {"slug": slug, "is_pinned": payload.pinned}
