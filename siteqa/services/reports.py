from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import math
from typing import Any, Callable
from urllib.parse import urlparse

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import AuthorizationError, ConflictError, NotFoundError, UpstreamError, ValidationError
from siteqa.domain.enums import ActivityType, ReportStatus, Role
from siteqa.domain.models import (
    Activity,
    Attachment,
    Comment,
    Notification,
    QAReport,
    Site,
    SiteUser,
    User,
    new_id,
)
from siteqa.persistence.repos import comments as comments_repo
from siteqa.persistence.repos import reports as reports_repo
from siteqa.persistence.repos import sites as sites_repo
from siteqa.persistence.repos import teams as teams_repo
from siteqa.providers.sitemeta.base import SiteMetadataProvider
from siteqa.providers.storage.base import ObjectStorage
from siteqa.services.activity import activity_type_for_status, record_report_activity
from siteqa.services.sites import resolve_site_for_report, slugify, user_can_access_site


logger = logging.getLogger(__name__)

MAX_STATUS_LENGTH = 32
MAX_TITLE_LENGTH = 120
PRIORITIES = ("low", "medium", "high", "critical")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def image_key_for(report_id: str) -> str:
    return f"reports/{report_id}.png"


def metadata_key_for(report_id: str) -> str:
    return f"reports/{report_id}.json"


def duration_minutes(started_at: datetime, resolved_at: datetime) -> int:
    # Whole minutes, halves rounded up.
    minutes = (resolved_at - started_at).total_seconds() / 60.0
    return int(math.floor(minutes + 0.5))


def parse_due_date(value: str | None) -> datetime | None:
    if value is None or not str(value).strip():
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError("due_date must be an ISO 8601 date or datetime", due_date=value) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _default_title(comment: str) -> str:
    lines = (comment or "").strip().splitlines()
    return (lines[0].strip()[:MAX_TITLE_LENGTH] if lines else "") or "Untitled report"


def _page_path(url: str) -> str:
    return urlparse(url).path or "/"


async def report_to_dict(report: QAReport, storage: ObjectStorage) -> dict[str, Any]:
    image_url = await storage.signed_read_url(report.image_key) if report.image_key else None
    return {
        "id": report.id,
        "slug": report.slug,
        "url": report.url,
        "domain": report.domain,
        "site_name": report.site_name,
        "site_id": report.site_id,
        "page_path": report.page_path,
        "title": report.title,
        "comment": report.comment,
        "x": report.x,
        "y": report.y,
        "image_url": image_url,
        "timestamp": report.timestamp.isoformat(),
        "status": report.status,
        "priority": report.priority,
        "type": report.type,
        "resolved_at": report.resolved_at.isoformat() if report.resolved_at else None,
        "duration": report.duration,
        "due_date": report.due_date.isoformat() if report.due_date else None,
        "archived": report.archived,
        "archived_at": report.archived_at.isoformat() if report.archived_at else None,
        "user_id": report.user_id,
        "user_name": report.user_name,
    }


@dataclass(frozen=True)
class NewReport:
    url: str
    comment: str
    x: int
    y: int
    screenshot: bytes
    screenshot_content_type: str = "image/png"
    title: str | None = None
    priority: str | None = None
    type: str | None = None
    due_date: datetime | None = None


class ReportService:
    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Allow time injection for deterministic duration tests.
        self._time_provider = time_provider or _utc_now

    async def _unique_report_slug(self, session: AsyncSession, site_id: str | None, title: str) -> str:
        base = slugify(title) or "report"
        if site_id is None:
            return base
        candidate = base
        suffix = 2
        while await reports_repo.report_slug_exists(session, site_id, candidate):
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    async def get_accessible_report(self, session: AsyncSession, report_id: str, user_id: str) -> QAReport:
        report = await reports_repo.get_report(session, report_id)
        if report is None:
            raise NotFoundError("Report not found", report_id=report_id)
        if report.user_id == user_id:
            return report
        site = await sites_repo.get_site(session, report.site_id) if report.site_id else None
        if site is None or not await user_can_access_site(session, site, user_id):
            raise AuthorizationError("Access denied to this report", report_id=report_id)
        return report

    async def create_report(
        self,
        session: AsyncSession,
        *,
        user: User,
        payload: NewReport,
        team_id: str | None,
        storage: ObjectStorage,
        site_metadata: SiteMetadataProvider,
    ) -> QAReport:
        """Persist a report, creating its site when the domain is new.

        Uploads happen before commit; if either upload fails nothing is
        persisted and any object already written is removed.
        """
        if not payload.screenshot:
            raise ValidationError("No screenshot uploaded")
        if not (payload.comment or "").strip():
            raise ValidationError("comment is required")
        priority = (payload.priority or "medium").strip().lower()
        if priority not in PRIORITIES:
            raise ValidationError("Unsupported priority", priority=payload.priority)

        # Losing the site insert race rolls the session back and expires `user`.
        user_id = user.id
        user_label = user.name or user.email
        site = await resolve_site_for_report(
            session,
            url=payload.url,
            user=user,
            team_id=team_id,
            site_metadata=site_metadata,
        )
        title = (payload.title or "").strip()[:MAX_TITLE_LENGTH] or _default_title(payload.comment)
        report_id = new_id()
        now = self._time_provider()
        report = QAReport(
            id=report_id,
            slug=await self._unique_report_slug(session, site.id, title),
            url=payload.url,
            domain=site.domain,
            site_name=site.name,
            page_path=_page_path(payload.url),
            title=title,
            comment=payload.comment,
            x=payload.x,
            y=payload.y,
            image_key=image_key_for(report_id),
            timestamp=now,
            status=str(ReportStatus.NEW),
            priority=priority,
            type=(payload.type or "bug").strip().lower() or "bug",
            user_name=user_label,
            due_date=payload.due_date,
            user_id=user_id,
            site_id=site.id,
        )
        metadata = {
            "id": report_id,
            "image": report.image_key,
            "comment": report.comment,
            "url": report.url,
            "site": report.domain,
            "slug": report.slug,
            "site_name": report.site_name,
            "x": report.x,
            "y": report.y,
            "timestamp": now.isoformat(),
            "user_id": user_id,
            "user_name": report.user_name,
        }
        try:
            await storage.upload(payload.screenshot, report.image_key, payload.screenshot_content_type)
            try:
                await storage.upload(
                    json.dumps(metadata, indent=2).encode("utf-8"),
                    metadata_key_for(report_id),
                    "application/json",
                )
            except UpstreamError:
                await self._delete_objects(storage, [report.image_key])
                raise
        except UpstreamError:
            await session.rollback()
            raise
        session.add(report)
        slug = report.slug
        try:
            await session.commit()
        except IntegrityError as exc:
            # A concurrent report on the same site took this slug between check and insert.
            await session.rollback()
            await self._delete_objects(storage, [image_key_for(report_id), metadata_key_for(report_id)])
            logger.warning("report_slug_conflict report_id=%s slug=%s", report_id, slug)
            raise ConflictError("A report with this slug was just created; retry the request", slug=slug) from exc
        logger.info("report_created report_id=%s site_id=%s user_id=%s", report.id, site.id, user_id)
        return report

    async def update_status(
        self, session: AsyncSession, *, report_id: str, actor: User, status: str
    ) -> QAReport:
        """Write any non-empty status string.

        The first move to done stamps resolved_at and duration; later moves to
        done, including after the report left done, keep the first values.
        """
        cleaned = (status or "").strip()
        if not cleaned or len(cleaned) > MAX_STATUS_LENGTH:
            raise ValidationError("Status is required")
        report = await self.get_accessible_report(session, report_id, actor.id)
        report.status = cleaned
        if cleaned == ReportStatus.DONE and report.resolved_at is None:
            resolved_at = self._time_provider()
            report.resolved_at = resolved_at
            report.duration = duration_minutes(report.timestamp, resolved_at)
        await record_report_activity(
            session,
            report=report,
            actor=actor,
            activity_type=activity_type_for_status(cleaned),
            status=cleaned,
        )
        await session.commit()
        return report

    async def update_priority(
        self, session: AsyncSession, *, report_id: str, actor: User, priority: str
    ) -> QAReport:
        cleaned = (priority or "").strip().lower()
        if cleaned not in PRIORITIES:
            raise ValidationError("Unsupported priority", priority=priority)
        report = await self.get_accessible_report(session, report_id, actor.id)
        report.priority = cleaned
        await record_report_activity(
            session, report=report, actor=actor, activity_type=ActivityType.PRIORITY, priority=cleaned
        )
        await session.commit()
        return report

    async def update_due_date(
        self, session: AsyncSession, *, report_id: str, actor: User, due_date: datetime | None
    ) -> QAReport:
        report = await self.get_accessible_report(session, report_id, actor.id)
        report.due_date = due_date
        await record_report_activity(
            session, report=report, actor=actor, activity_type=ActivityType.DUE_DATE, due_date=due_date
        )
        await session.commit()
        return report

    async def set_archived(
        self, session: AsyncSession, *, report_id: str, actor: User, archived: bool
    ) -> QAReport:
        report = await self.get_accessible_report(session, report_id, actor.id)
        report.archived = archived
        report.archived_at = self._time_provider() if archived else None
        await session.commit()
        return report

    async def _can_delete(self, session: AsyncSession, report: QAReport, user_id: str) -> bool:
        if report.user_id == user_id:
            return True
        site = await sites_repo.get_site(session, report.site_id) if report.site_id else None
        if site is None or site.team_id is None:
            return False
        membership = await teams_repo.get_membership(session, site.team_id, user_id)
        return membership is not None and membership.role == Role.OWNER

    async def delete_report(
        self, session: AsyncSession, *, report_id: str, actor: User, storage: ObjectStorage
    ) -> bool:
        """Delete a report and everything hanging off it in one transaction.

        Returns True when the site was removed because it had no reports left.
        Stored objects are removed after commit and failures there are only
        logged.
        """
        report = await reports_repo.get_report(session, report_id)
        if report is None:
            raise NotFoundError("Report not found", report_id=report_id)
        if not await self._can_delete(session, report, actor.id):
            raise AuthorizationError("Only the author or a team owner can delete this report")

        site_id = report.site_id
        if site_id is not None:
            # Serialize concurrent deletes on the same site before counting.
            await session.execute(select(Site.id).where(Site.id == site_id).with_for_update())

        attachments = await comments_repo.list_report_attachments(session, report_id)
        object_keys = [report.image_key, metadata_key_for(report_id)]
        for attachment in attachments:
            object_keys.append(attachment.key)
            if attachment.thumbnail_key:
                object_keys.append(attachment.thumbnail_key)

        comment_ids = select(Comment.id).where(Comment.report_id == report_id)
        await session.execute(
            delete(Attachment)
            .where(or_(Attachment.comment_id.in_(comment_ids), Attachment.report_id == report_id))
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(Notification)
            .where(Notification.comment_id.in_(comment_ids))
            .values(comment_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(Comment)
            .where(Comment.report_id == report_id)
            .values(parent_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Comment)
            .where(Comment.report_id == report_id)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(Activity)
            .where(Activity.report_id == report_id)
            .values(report_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(Notification)
            .where(Notification.report_id == report_id)
            .values(report_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.delete(report)
        await session.flush()

        site_removed = False
        if site_id is not None:
            remaining = await session.execute(
                select(func.count()).select_from(QAReport).where(QAReport.site_id == site_id)
            )
            if int(remaining.scalar_one()) == 0:
                await session.execute(
                    delete(SiteUser)
                    .where(SiteUser.site_id == site_id)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(Notification)
                    .where(Notification.site_id == site_id)
                    .values(site_id=None)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    delete(Site).where(Site.id == site_id).execution_options(synchronize_session=False)
                )
                site_removed = True
        await session.commit()
        logger.info(
            "report_deleted report_id=%s site_id=%s site_removed=%s", report_id, site_id, site_removed
        )
        await self._delete_objects(storage, object_keys)
        return site_removed

    async def _delete_objects(self, storage: ObjectStorage, keys: list[str]) -> None:
        for key in keys:
            try:
                await storage.delete(key)
            except UpstreamError:
                logger.warning("storage_cleanup_failed key=%s", key, exc_info=True)
