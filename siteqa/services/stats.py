from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.enums import ReportStatus
from siteqa.persistence.repos import reports as reports_repo


def start_of_week(now: datetime) -> datetime:
    # Weeks start on Sunday 00:00 UTC.
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    days_since_sunday = (midnight.weekday() + 1) % 7
    return midnight - timedelta(days=days_since_sunday)


async def count_open_issues(session: AsyncSession, user_id: str) -> int:
    return await reports_repo.count_user_reports(session, user_id, status=str(ReportStatus.NEW))


async def count_in_progress(session: AsyncSession, user_id: str) -> int:
    return await reports_repo.count_user_reports(
        session, user_id, status=str(ReportStatus.IN_PROGRESS)
    )


async def count_resolved(session: AsyncSession, user_id: str) -> int:
    return await reports_repo.count_user_reports(session, user_id, status=str(ReportStatus.DONE))


async def count_reports_this_week(session: AsyncSession, user_id: str, now: datetime) -> int:
    return await reports_repo.count_user_reports(session, user_id, since=start_of_week(now))


async def average_resolution_hours(session: AsyncSession, user_id: str) -> str:
    # Two-decimal string; "0.00" when nothing has been resolved yet.
    reports = await reports_repo.list_resolved_reports(session, user_id)
    durations = [(report.resolved_at - report.timestamp).total_seconds() for report in reports]
    average_s = sum(durations) / (len(durations) or 1)
    return f"{average_s / 3600:.2f}"
