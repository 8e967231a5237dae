from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.enums import ActivityType, ReportStatus
from siteqa.domain.models import Activity, QAReport, User


logger = logging.getLogger(__name__)

# Read-time presentation only; never persisted.
ACTIVITY_PRESENTATION: dict[ActivityType, dict[str, str]] = {
    ActivityType.COMMENT: {"icon": "message-square", "color": "blue"},
    ActivityType.STATUS: {"icon": "refresh-cw", "color": "amber"},
    ActivityType.PRIORITY: {"icon": "flag", "color": "red"},
    ActivityType.DUE_DATE: {"icon": "calendar", "color": "purple"},
    ActivityType.ASSIGNMENT: {"icon": "user-plus", "color": "teal"},
    ActivityType.COMPLETED: {"icon": "check-circle", "color": "green"},
    ActivityType.CREATED: {"icon": "plus-circle", "color": "gray"},
}

_DEFAULT_PRESENTATION = {"icon": "activity", "color": "gray"}


def _format_due_date(value: datetime | None) -> str:
    if value is None:
        return "no due date"
    return value.strftime("%Y-%m-%d")


def build_activity_message(
    activity_type: ActivityType,
    actor_name: str,
    title: str,
    *,
    status: str | None = None,
    priority: str | None = None,
    due_date: datetime | None = None,
) -> str:
    """Render the human readable line for an activity.

    Output depends only on the arguments so the same event always reads the
    same way in every feed.
    """
    actor = actor_name or "Someone"
    subject = f'"{title}"' if title else "a report"
    if activity_type == ActivityType.COMMENT:
        return f"{actor} commented on {subject}"
    if activity_type == ActivityType.STATUS:
        return f"{actor} changed the status of {subject} to {status}"
    if activity_type == ActivityType.PRIORITY:
        return f"{actor} set the priority of {subject} to {priority}"
    if activity_type == ActivityType.DUE_DATE:
        return f"{actor} set the due date of {subject} to {_format_due_date(due_date)}"
    if activity_type == ActivityType.ASSIGNMENT:
        return f"{actor} assigned {subject} to you"
    if activity_type == ActivityType.COMPLETED:
        return f"{actor} marked {subject} as done"
    if activity_type == ActivityType.CREATED:
        return f"{actor} created {subject}"
    raise ValueError(f"Unsupported activity type: {activity_type}")


def activity_type_for_status(status: str) -> ActivityType:
    return ActivityType.COMPLETED if status == ReportStatus.DONE else ActivityType.STATUS


def present_activity(activity: Activity) -> dict[str, Any]:
    try:
        presentation = ACTIVITY_PRESENTATION[ActivityType(activity.type)]
    except ValueError:
        presentation = _DEFAULT_PRESENTATION
    return {
        "id": activity.id,
        "type": activity.type,
        "message": activity.message,
        "report_id": activity.report_id,
        "actor_id": activity.actor_id,
        "status": activity.status,
        "priority": activity.priority,
        "due_date": activity.due_date.isoformat() if activity.due_date else None,
        "created_at": activity.created_at.isoformat(),
        **presentation,
    }


async def record_report_activity(
    session: AsyncSession,
    *,
    report: QAReport,
    actor: User,
    activity_type: ActivityType,
    status: str | None = None,
    priority: str | None = None,
    due_date: datetime | None = None,
) -> Activity | None:
    # Self-actions are not recorded; nobody else to tell.
    if report.user_id is None or report.user_id == actor.id:
        return None
    message = build_activity_message(
        activity_type,
        actor.name or actor.email,
        report.title,
        status=status,
        priority=priority,
        due_date=due_date,
    )
    activity = Activity(
        user_id=report.user_id,
        actor_id=actor.id,
        type=str(activity_type),
        report_id=report.id,
        message=message,
        status=status,
        priority=priority,
        due_date=due_date,
    )
    try:
        # Savepoint keeps a failed write from poisoning the caller's transaction.
        async with session.begin_nested():
            session.add(activity)
    except SQLAlchemyError:
        logger.warning(
            "activity_write_failed report_id=%s type=%s", report.id, activity_type, exc_info=True
        )
        return None
    return activity
