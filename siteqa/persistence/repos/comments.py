from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.models import Attachment, Comment


async def get_comment(session: AsyncSession, comment_id: str) -> Comment | None:
    result = await session.execute(select(Comment).where(Comment.id == comment_id))
    return result.scalar_one_or_none()


async def list_report_comments(session: AsyncSession, report_id: str) -> list[Comment]:
    result = await session.execute(
        select(Comment)
        .where(Comment.report_id == report_id)
        .order_by(Comment.created_at.desc(), Comment.id)
    )
    return list(result.scalars().all())


async def list_attachments_for_comments(
    session: AsyncSession, comment_ids: list[str]
) -> dict[str, list[Attachment]]:
    # Group attachments by comment id for a single round trip.
    grouped: dict[str, list[Attachment]] = {comment_id: [] for comment_id in comment_ids}
    if not comment_ids:
        return grouped
    result = await session.execute(
        select(Attachment)
        .where(Attachment.comment_id.in_(comment_ids))
        .order_by(Attachment.created_at, Attachment.id)
    )
    for attachment in result.scalars().all():
        grouped.setdefault(attachment.comment_id, []).append(attachment)
    return grouped


async def list_report_attachments(session: AsyncSession, report_id: str) -> list[Attachment]:
    comment_ids = select(Comment.id).where(Comment.report_id == report_id)
    result = await session.execute(
        select(Attachment).where(Attachment.comment_id.in_(comment_ids))
    )
    return list(result.scalars().all())
