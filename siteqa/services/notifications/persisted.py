from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.enums import NotificationType
from siteqa.domain.models import Comment, Notification, QAReport, Site, User


def add_mention_notification(
    session: AsyncSession,
    *,
    recipient_id: str,
    author: User,
    report: QAReport,
    comment: Comment,
) -> Notification:
    # Added to the caller's transaction; committed with the comment.
    notification = Notification(
        user_id=recipient_id,
        type=str(NotificationType.MENTION),
        message=f'{author.name or author.email} mentioned you on "{report.title}"',
        site_id=report.site_id,
        report_id=report.id,
        comment_id=comment.id,
    )
    session.add(notification)
    return notification


def add_site_invite_notification(
    session: AsyncSession, *, recipient_id: str, inviter: User, site: Site
) -> Notification:
    notification = Notification(
        user_id=recipient_id,
        type=str(NotificationType.SITE_INVITE),
        message=f"{inviter.name or inviter.email} invited you to {site.name}",
        site_id=site.id,
    )
    session.add(notification)
    return notification
