from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Union

from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import NotFoundError
from siteqa.domain.enums import NotificationType
from siteqa.domain.models import Notification, QAReport
from siteqa.persistence.repos import activities as activities_repo
from siteqa.persistence.repos import reports as reports_repo


OVERDUE_PREFIX = "overdue:"
DUE_TODAY_PREFIX = "due-today:"


@dataclass(frozen=True)
class PersistedEntry:
    notification: Notification

    @property
    def timestamp(self) -> datetime:
        return self.notification.created_at

    def as_dict(self) -> dict[str, Any]:
        row = self.notification
        return {
            "id": row.id,
            "type": row.type,
            "message": row.message,
            "site_id": row.site_id,
            "report_id": row.report_id,
            "comment_id": row.comment_id,
            "read": bool(row.read),
            "derived": False,
            "created_at": row.created_at.isoformat(),
        }


@dataclass(frozen=True)
class OverdueEntry:
    report: QAReport

    @property
    def timestamp(self) -> datetime:
        return self.report.due_date

    def as_dict(self) -> dict[str, Any]:
        return _derived_dict(
            f"{OVERDUE_PREFIX}{self.report.id}",
            NotificationType.TASK_OVERDUE,
            f'"{self.report.title}" is overdue',
            self.report,
        )


@dataclass(frozen=True)
class DueTodayEntry:
    report: QAReport

    @property
    def timestamp(self) -> datetime:
        return self.report.due_date

    def as_dict(self) -> dict[str, Any]:
        return _derived_dict(
            f"{DUE_TODAY_PREFIX}{self.report.id}",
            NotificationType.TASK_DUE_TODAY,
            f'"{self.report.title}" is due today',
            self.report,
        )


FeedEntry = Union[PersistedEntry, OverdueEntry, DueTodayEntry]


def _derived_dict(
    entry_id: str, entry_type: NotificationType, message: str, report: QAReport
) -> dict[str, Any]:
    # Derived entries have no stored read state.
    return {
        "id": entry_id,
        "type": str(entry_type),
        "message": message,
        "site_id": report.site_id,
        "report_id": report.id,
        "comment_id": None,
        "read": False,
        "derived": True,
        "created_at": report.due_date.isoformat(),
    }


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


async def build_notification_feed(
    session: AsyncSession, user_id: str, now: datetime
) -> list[FeedEntry]:
    # Derived entries are recomputed on every read and never written back.
    today = start_of_day(now)
    tomorrow = today + timedelta(days=1)
    persisted = await activities_repo.list_notifications_for_user(session, user_id)
    overdue = await reports_repo.list_open_reports_due_between(
        session, user_id, due_from=None, due_before=today
    )
    due_today = await reports_repo.list_open_reports_due_between(
        session, user_id, due_from=today, due_before=tomorrow
    )
    entries: list[FeedEntry] = [PersistedEntry(row) for row in persisted]
    entries.extend(OverdueEntry(report) for report in overdue)
    entries.extend(DueTodayEntry(report) for report in due_today)
    entries.sort(key=lambda entry: entry.timestamp, reverse=True)
    return entries


async def mark_notification_read(session: AsyncSession, user_id: str, notification_id: str) -> None:
    if notification_id.startswith((OVERDUE_PREFIX, DUE_TODAY_PREFIX)):
        # Derived entries are always unread; acknowledging them is a no-op.
        return
    notification = await activities_repo.get_notification_for_user(
        session, notification_id, user_id
    )
    if notification is None:
        raise NotFoundError("Notification not found", notification_id=notification_id)
    notification.read = True
    await session.commit()


async def mark_all_notifications_read(session: AsyncSession, user_id: str) -> int:
    updated = await activities_repo.mark_all_read(session, user_id)
    await session.commit()
    return updated
