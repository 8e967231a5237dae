from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.models import QAReport


DONE_STATUS = "done"


async def get_report(session: AsyncSession, report_id: str) -> QAReport | None:
    result = await session.execute(select(QAReport).where(QAReport.id == report_id))
    return result.scalar_one_or_none()


async def report_slug_exists(session: AsyncSession, site_id: str, slug: str) -> bool:
    result = await session.execute(
        select(QAReport.id).where(QAReport.site_id == site_id, QAReport.slug == slug).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def count_site_reports(session: AsyncSession, site_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(QAReport).where(QAReport.site_id == site_id)
    )
    return int(result.scalar_one())


def _escape_like(value: str) -> str:
    # LIKE wildcards in user input match literally.
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def list_user_reports(
    session: AsyncSession,
    user_id: str,
    *,
    query: str | None = None,
    status: str | None = None,
    archived: bool | None = None,
) -> list[QAReport]:
    stmt = select(QAReport).where(QAReport.user_id == user_id)
    if query:
        # Plain substring match; no ranking or tokenisation.
        pattern = f"%{_escape_like(query.strip().lower())}%"
        stmt = stmt.where(
            or_(
                func.lower(QAReport.title).like(pattern, escape="\\"),
                func.lower(QAReport.comment).like(pattern, escape="\\"),
                func.lower(QAReport.url).like(pattern, escape="\\"),
            )
        )
    if status:
        stmt = stmt.where(QAReport.status == status)
    if archived is not None:
        stmt = stmt.where(QAReport.archived.is_(archived))
    result = await session.execute(stmt.order_by(QAReport.timestamp.desc(), QAReport.id))
    return list(result.scalars().all())


async def list_archived_reports(session: AsyncSession, user_id: str) -> list[QAReport]:
    result = await session.execute(
        select(QAReport)
        .where(QAReport.user_id == user_id, QAReport.archived.is_(True))
        .order_by(QAReport.archived_at.desc(), QAReport.id)
    )
    return list(result.scalars().all())


async def list_site_reports(session: AsyncSession, site_id: str) -> list[QAReport]:
    result = await session.execute(
        select(QAReport)
        .where(QAReport.site_id == site_id)
        .order_by(QAReport.timestamp.desc(), QAReport.id)
    )
    return list(result.scalars().all())


async def list_open_reports_due_between(
    session: AsyncSession,
    user_id: str,
    *,
    due_from: datetime | None,
    due_before: datetime,
) -> list[QAReport]:
    # Open means not done and not archived.
    stmt = select(QAReport).where(
        QAReport.user_id == user_id,
        QAReport.archived.is_(False),
        QAReport.status != DONE_STATUS,
        QAReport.due_date.is_not(None),
        QAReport.due_date < due_before,
    )
    if due_from is not None:
        stmt = stmt.where(QAReport.due_date >= due_from)
    result = await session.execute(stmt.order_by(QAReport.due_date.desc()))
    return list(result.scalars().all())


async def count_user_reports(
    session: AsyncSession,
    user_id: str,
    *,
    status: str | None = None,
    since: datetime | None = None,
) -> int:
    stmt = (
        select(func.count())
        .select_from(QAReport)
        .where(QAReport.user_id == user_id, QAReport.archived.is_(False))
    )
    if status is not None:
        stmt = stmt.where(QAReport.status == status)
    if since is not None:
        stmt = stmt.where(QAReport.timestamp >= since)
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def list_resolved_reports(session: AsyncSession, user_id: str) -> list[QAReport]:
    result = await session.execute(
        select(QAReport).where(
            QAReport.user_id == user_id,
            QAReport.archived.is_(False),
            QAReport.status == DONE_STATUS,
            QAReport.resolved_at.is_not(None),
        )
    )
    return list(result.scalars().all())
