from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import (
    get_current_user,
    get_db,
    get_site_metadata,
    get_storage,
    require_plan_for_report,
)
from siteqa.core.errors import ValidationError
from siteqa.domain.models import User
from siteqa.persistence.repos import reports as reports_repo
from siteqa.providers.sitemeta.base import SiteMetadataProvider
from siteqa.providers.storage.base import ObjectStorage
from siteqa.services.plans import PlanContext
from siteqa.services.reports import NewReport, ReportService, parse_due_date, report_to_dict


router = APIRouter(tags=["reports"])


def get_report_service() -> ReportService:
    return ReportService()


class StatusRequest(BaseModel):
    status: str | None = None


class PriorityRequest(BaseModel):
    priority: str | None = None


class DueDateRequest(BaseModel):
    # null clears the due date.
    due_date: str | None = None


class ArchiveRequest(BaseModel):
    archived: bool


@router.post("/report", status_code=201)
async def create_report(
    screenshot: UploadFile | None = File(default=None),
    url: str = Form(...),
    comment: str = Form(...),
    x: int = Form(...),
    y: int = Form(...),
    title: str | None = Form(default=None),
    priority: str | None = Form(default=None),
    report_type: str | None = Form(default=None, alias="type"),
    due_date: str | None = Form(default=None),
    plan: PlanContext = Depends(require_plan_for_report),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    site_metadata: SiteMetadataProvider = Depends(get_site_metadata),
    service: ReportService = Depends(get_report_service),
) -> dict:
    if screenshot is None:
        raise ValidationError("No screenshot uploaded")
    data = await screenshot.read()
    payload = NewReport(
        url=url,
        comment=comment,
        x=x,
        y=y,
        screenshot=data,
        screenshot_content_type=screenshot.content_type or "image/png",
        title=title,
        priority=priority,
        type=report_type,
        due_date=parse_due_date(due_date),
    )
    report = await service.create_report(
        db,
        user=user,
        payload=payload,
        team_id=plan.team_id,
        storage=storage,
        site_metadata=site_metadata,
    )
    return await report_to_dict(report, storage)


@router.get("/report")
async def list_reports(
    q: str | None = Query(default=None),
    status: str | None = Query(default=None),
    archived: bool | None = Query(default=None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> list[dict]:
    reports = await reports_repo.list_user_reports(
        db, user.id, query=q, status=status, archived=archived
    )
    return [await report_to_dict(report, storage) for report in reports]


@router.get("/archive")
async def list_archived(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> list[dict]:
    reports = await reports_repo.list_archived_reports(db, user.id)
    return [await report_to_dict(report, storage) for report in reports]


@router.get("/report/{report_id}")
async def get_report(
    report_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    service: ReportService = Depends(get_report_service),
) -> dict:
    report = await service.get_accessible_report(db, report_id, user.id)
    return await report_to_dict(report, storage)


@router.get("/report/{report_id}/status")
async def get_report_status(
    report_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: ReportService = Depends(get_report_service),
) -> dict:
    report = await service.get_accessible_report(db, report_id, user.id)
    return {"status": report.status}


@router.patch("/report/{report_id}/status")
async def update_status(
    report_id: str,
    payload: StatusRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    service: ReportService = Depends(get_report_service),
) -> dict:
    report = await service.update_status(db, report_id=report_id, actor=user, status=payload.status or "")
    return await report_to_dict(report, storage)


@router.patch("/report/{report_id}/priority")
async def update_priority(
    report_id: str,
    payload: PriorityRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    service: ReportService = Depends(get_report_service),
) -> dict:
    report = await service.update_priority(
        db, report_id=report_id, actor=user, priority=payload.priority or ""
    )
    return await report_to_dict(report, storage)


@router.patch("/report/{report_id}/due-date")
async def update_due_date(
    report_id: str,
    payload: DueDateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    service: ReportService = Depends(get_report_service),
) -> dict:
    report = await service.update_due_date(
        db, report_id=report_id, actor=user, due_date=parse_due_date(payload.due_date)
    )
    return await report_to_dict(report, storage)


@router.patch("/report/{report_id}/archive")
async def update_archived(
    report_id: str,
    payload: ArchiveRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    service: ReportService = Depends(get_report_service),
) -> dict:
    report = await service.set_archived(db, report_id=report_id, actor=user, archived=payload.archived)
    return await report_to_dict(report, storage)


@router.delete("/report/{report_id}")
async def delete_report(
    report_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    service: ReportService = Depends(get_report_service),
) -> dict:
    site_removed = await service.delete_report(db, report_id=report_id, actor=user, storage=storage)
    return {"message": "Report deleted successfully", "site_removed": site_removed}
