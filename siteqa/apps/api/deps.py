from __future__ import annotations

from typing import AsyncGenerator, Awaitable, Callable

from fastapi import Depends, Form, Request
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import AuthError, AuthorizationError, NotFoundError
from siteqa.domain.models import TeamMember, User
from siteqa.persistence.db import get_session
from siteqa.persistence.repos import teams as teams_repo
from siteqa.persistence.repos import users as users_repo
from siteqa.providers.mail.base import Mailer
from siteqa.providers.mail.factory import get_mailer
from siteqa.providers.sitemeta.base import SiteMetadataProvider
from siteqa.providers.sitemeta.factory import get_site_metadata_provider
from siteqa.providers.storage.base import ObjectStorage
from siteqa.providers.storage.factory import get_object_storage
from siteqa.services.auth.roles import Capability, role_allows
from siteqa.services.auth.tokens import decode_token
from siteqa.services.plans import PlanContext, enforce_plan


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_storage() -> ObjectStorage:
    return get_object_storage()


def get_site_metadata() -> SiteMetadataProvider:
    return get_site_metadata_provider()


def get_mail() -> Mailer:
    return get_mailer()


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    # Missing credentials are 401; anything presented but unverifiable is 403.
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise AuthError("Missing bearer token")
    claims = decode_token(token)
    user = await users_repo.get_user(db, claims.user_id)
    if user is None:
        raise NotFoundError("User not found")
    # Read by the last-active middleware once the response is known.
    request.state.user_id = user.id
    return user


async def ensure_team_capability(
    db: AsyncSession, *, team_id: str, user_id: str, capability: Capability
) -> TeamMember:
    team = await teams_repo.get_team(db, team_id)
    if team is None:
        raise NotFoundError("Team not found", team_id=team_id)
    membership = await teams_repo.get_membership(db, team_id, user_id)
    if membership is None:
        raise AuthorizationError("Not a member of this team", team_id=team_id)
    if not role_allows(membership.role, capability):
        raise AuthorizationError(
            "Insufficient team role", team_id=team_id, required=str(capability)
        )
    return membership


def require_team_capability(
    capability: Capability,
) -> Callable[..., Awaitable[TeamMember]]:
    # Team comes from the {team_id} path parameter.
    async def dependency(
        team_id: str,
        user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> TeamMember:
        return await ensure_team_capability(
            db, team_id=team_id, user_id=user.id, capability=capability
        )

    return dependency


async def require_plan_for_team(
    request: Request,
    team_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PlanContext:
    context = await enforce_plan(db, user.id, team_id)
    request.state.plan = context
    return context


async def require_plan_for_report(
    request: Request,
    team_id: str | None = Form(default=None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PlanContext:
    # An explicit team must be one the caller may create reports in.
    if team_id:
        await ensure_team_capability(
            db, team_id=team_id, user_id=user.id, capability=Capability.CREATE_REPORTS
        )
    context = await enforce_plan(db, user.id, team_id or None)
    request.state.plan = context
    return context
