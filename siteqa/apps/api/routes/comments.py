from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import get_current_user, get_db, get_storage
from siteqa.domain.models import User
from siteqa.providers.storage.base import ObjectStorage
from siteqa.services.comments import UploadedFile, create_comment, list_comments


router = APIRouter(prefix="/reports", tags=["comments"])


@router.post("/{report_id}/comments", status_code=201)
async def add_comment(
    report_id: str,
    content: str = Form(...),
    parent_id: str | None = Form(default=None),
    mentions: str | None = Form(default=None),
    files: list[UploadFile] | None = File(default=None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> dict:
    uploads = [
        UploadedFile(
            name=upload.filename or "file",
            content_type=upload.content_type or "application/octet-stream",
            data=await upload.read(),
        )
        for upload in files or []
    ]
    comment = await create_comment(
        db,
        report_id=report_id,
        author=user,
        content=content,
        storage=storage,
        parent_id=parent_id or None,
        mentions=mentions,
        files=uploads,
    )
    return {
        "id": comment.id,
        "content": comment.content,
        "report_id": comment.report_id,
        "parent_id": comment.parent_id,
        "user_id": comment.user_id,
        "attachments": len(uploads),
        "created_at": comment.created_at.isoformat(),
    }


@router.get("/{report_id}/comments")
async def get_comments(
    report_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
) -> list[dict]:
    return await list_comments(db, report_id=report_id, user_id=user.id, storage=storage)
