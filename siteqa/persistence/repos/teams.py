from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.models import Subscription, Team, TeamInvite, TeamMember


async def get_team(session: AsyncSession, team_id: str) -> Team | None:
    result = await session.execute(select(Team).where(Team.id == team_id))
    return result.scalar_one_or_none()


async def get_membership(session: AsyncSession, team_id: str, user_id: str) -> TeamMember | None:
    result = await session.execute(
        select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def list_memberships_for_user(session: AsyncSession, user_id: str) -> list[TeamMember]:
    # Oldest first so "first membership" is stable across requests.
    result = await session.execute(
        select(TeamMember)
        .where(TeamMember.user_id == user_id)
        .order_by(TeamMember.created_at, TeamMember.id)
    )
    return list(result.scalars().all())


async def list_team_ids_for_user(session: AsyncSession, user_id: str) -> list[str]:
    memberships = await list_memberships_for_user(session, user_id)
    return [membership.team_id for membership in memberships]


async def list_members(session: AsyncSession, team_id: str) -> list[TeamMember]:
    result = await session.execute(
        select(TeamMember)
        .where(TeamMember.team_id == team_id)
        .order_by(TeamMember.created_at, TeamMember.id)
    )
    return list(result.scalars().all())


async def count_members(session: AsyncSession, team_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(TeamMember).where(TeamMember.team_id == team_id)
    )
    return int(result.scalar_one())


async def count_owners(session: AsyncSession, team_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(TeamMember)
        .where(TeamMember.team_id == team_id, TeamMember.role == "owner")
    )
    return int(result.scalar_one())


async def get_subscription(session: AsyncSession, team_id: str) -> Subscription | None:
    result = await session.execute(select(Subscription).where(Subscription.team_id == team_id))
    return result.scalar_one_or_none()


async def get_invite_by_code(session: AsyncSession, code: str) -> TeamInvite | None:
    result = await session.execute(select(TeamInvite).where(TeamInvite.code == code))
    return result.scalar_one_or_none()


async def find_open_link_invite(
    session: AsyncSession, team_id: str, role: str, now: datetime
) -> TeamInvite | None:
    # Newest unused, unexpired link invite (no bound email) for the team and role.
    result = await session.execute(
        select(TeamInvite)
        .where(
            TeamInvite.team_id == team_id,
            TeamInvite.role == role,
            TeamInvite.email.is_(None),
            TeamInvite.used.is_(False),
            TeamInvite.expires_at > now,
        )
        .order_by(TeamInvite.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
