from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import re
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import UpstreamError, ValidationError
from siteqa.domain.enums import ActivityType
from siteqa.domain.models import Attachment, Comment, User, new_id
from siteqa.persistence.repos import comments as comments_repo
from siteqa.persistence.repos import users as users_repo
from siteqa.providers.storage.base import ObjectStorage
from siteqa.providers.storage.thumbnails import THUMBNAIL_CONTENT_TYPE, make_thumbnail
from siteqa.services.activity import record_report_activity
from siteqa.services.notifications.persisted import add_mention_notification
from siteqa.services.reports import ReportService


logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class UploadedFile:
    name: str
    content_type: str
    data: bytes


def parse_mentions(raw: str | None) -> list[str]:
    # Comma separated user ids; order kept, duplicates dropped.
    if not raw:
        return []
    seen: list[str] = []
    for part in raw.split(","):
        candidate = part.strip()
        if candidate and candidate not in seen:
            seen.append(candidate)
    return seen


def _object_name(filename: str) -> str:
    return _SAFE_NAME.sub("_", filename or "file").strip("_") or "file"


async def _delete_quietly(storage: ObjectStorage, keys: list[str]) -> None:
    for key in keys:
        try:
            await storage.delete(key)
        except UpstreamError:
            logger.warning("storage_cleanup_failed key=%s", key, exc_info=True)


async def _store_attachment(
    storage: ObjectStorage,
    *,
    comment_id: str,
    report_id: str,
    user_id: str,
    upload: UploadedFile,
    written: list[str],
) -> Attachment:
    attachment_id = new_id()
    key = f"comments/{comment_id}/{attachment_id}-{_object_name(upload.name)}"
    await storage.upload(upload.data, key, upload.content_type)
    written.append(key)
    thumbnail_key = None
    if upload.content_type.startswith("image/"):
        try:
            thumbnail = await asyncio.to_thread(make_thumbnail, upload.data)
        except ValidationError:
            # Unreadable images are kept as plain files.
            logger.warning("thumbnail_failed key=%s", key, exc_info=True)
        else:
            thumbnail_key = f"comments/{comment_id}/{attachment_id}-thumb.webp"
            await storage.upload(thumbnail, thumbnail_key, THUMBNAIL_CONTENT_TYPE)
            written.append(thumbnail_key)
    return Attachment(
        id=attachment_id,
        key=key,
        thumbnail_key=thumbnail_key,
        name=upload.name or "file",
        size=len(upload.data),
        content_type=upload.content_type,
        comment_id=comment_id,
        report_id=report_id,
        user_id=user_id,
    )


async def create_comment(
    session: AsyncSession,
    *,
    report_id: str,
    author: User,
    content: str,
    storage: ObjectStorage,
    parent_id: str | None = None,
    mentions: str | None = None,
    files: list[UploadedFile] | None = None,
) -> Comment:
    """Add a comment with optional attachments and mentions.

    Replies are one level deep: answering a reply attaches to its parent.
    """
    if not (content or "").strip():
        raise ValidationError("content is required")
    report = await ReportService().get_accessible_report(session, report_id, author.id)

    resolved_parent_id = None
    if parent_id:
        parent = await comments_repo.get_comment(session, parent_id)
        if parent is None or parent.report_id != report.id:
            raise ValidationError("parent_id does not belong to this report", parent_id=parent_id)
        resolved_parent_id = parent.parent_id or parent.id

    comment = Comment(
        id=new_id(),
        content=content,
        report_id=report.id,
        user_id=author.id,
        parent_id=resolved_parent_id,
    )
    session.add(comment)
    await session.flush()

    written: list[str] = []
    try:
        for upload in files or []:
            session.add(
                await _store_attachment(
                    storage,
                    comment_id=comment.id,
                    report_id=report.id,
                    user_id=author.id,
                    upload=upload,
                    written=written,
                )
            )
    except UpstreamError:
        await session.rollback()
        await _delete_quietly(storage, written)
        raise
    await session.flush()

    mention_ids = [user_id for user_id in parse_mentions(mentions) if user_id != author.id]
    known = await users_repo.get_users_by_ids(session, mention_ids)
    for user_id in mention_ids:
        if user_id in known:
            add_mention_notification(
                session, recipient_id=user_id, author=author, report=report, comment=comment
            )

    await record_report_activity(
        session, report=report, actor=author, activity_type=ActivityType.COMMENT
    )
    await session.commit()
    logger.info(
        "comment_created comment_id=%s report_id=%s attachments=%s mentions=%s",
        comment.id,
        report.id,
        len(files or []),
        len(known),
    )
    return comment


async def _attachment_dict(attachment: Attachment, storage: ObjectStorage) -> dict[str, Any]:
    return {
        "id": attachment.id,
        "name": attachment.name,
        "size": attachment.size,
        "content_type": attachment.content_type,
        "url": await storage.signed_read_url(attachment.key),
        "thumbnail_url": (
            await storage.signed_read_url(attachment.thumbnail_key)
            if attachment.thumbnail_key
            else None
        ),
    }


async def list_comments(
    session: AsyncSession, *, report_id: str, user_id: str, storage: ObjectStorage
) -> list[dict[str, Any]]:
    # Top-level comments newest first, each with its replies oldest first.
    report = await ReportService().get_accessible_report(session, report_id, user_id)
    comments = await comments_repo.list_report_comments(session, report.id)
    attachments = await comments_repo.list_attachments_for_comments(
        session, [comment.id for comment in comments]
    )
    authors = await users_repo.get_users_by_ids(
        session, [comment.user_id for comment in comments if comment.user_id]
    )

    rendered: dict[str, dict[str, Any]] = {}
    for comment in comments:
        author = authors.get(comment.user_id) if comment.user_id else None
        rendered[comment.id] = {
            "id": comment.id,
            "content": comment.content,
            "parent_id": comment.parent_id,
            "user": {"id": author.id, "name": author.name, "email": author.email} if author else None,
            "created_at": comment.created_at.isoformat(),
            "attachments": [
                await _attachment_dict(attachment, storage)
                for attachment in attachments.get(comment.id, [])
            ],
            "replies": [],
        }

    top_level: list[dict[str, Any]] = []
    for comment in comments:
        item = rendered[comment.id]
        parent = rendered.get(comment.parent_id) if comment.parent_id else None
        if parent is None:
            top_level.append(item)
        else:
            parent["replies"].insert(0, item)
    return top_level
