from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import AuthError, ConflictError, ValidationError
from siteqa.domain.models import User
from siteqa.persistence.repos import users as users_repo
from siteqa.services.auth.passwords import hash_password, verify_password


logger = logging.getLogger(__name__)


async def register_user(
    session: AsyncSession, *, email: str | None, password: str | None, name: str | None
) -> User:
    if not email or not password:
        raise ValidationError("Email and password are required")
    normalized = users_repo.normalize_email(email)
    if await users_repo.get_user_by_email(session, normalized) is not None:
        raise ConflictError("Email already in use")
    # bcrypt is CPU bound; keep it off the event loop.
    password_hash = await asyncio.to_thread(hash_password, password)
    user = User(email=normalized, name=(name or "").strip() or None, password_hash=password_hash, status="active")
    session.add(user)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Email already in use") from exc
    logger.info("user_registered user_id=%s", user.id)
    return user


async def authenticate(session: AsyncSession, *, email: str | None, password: str | None) -> User:
    # Same error for unknown email and wrong password.
    if not email or not password:
        raise AuthError("Invalid email or password")
    user = await users_repo.get_user_by_email(session, email)
    if user is None:
        raise AuthError("Invalid email or password")
    if not await asyncio.to_thread(verify_password, password, user.password_hash):
        raise AuthError("Invalid email or password")
    return user
