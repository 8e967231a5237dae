from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import ConflictError, NotFoundError, ValidationError
from siteqa.domain.enums import BillingInterval, PlanTier, Role
from siteqa.domain.models import Subscription, Team, TeamMember, User
from siteqa.persistence.repos import teams as teams_repo
from siteqa.persistence.repos import users as users_repo


logger = logging.getLogger(__name__)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


async def create_team(
    session: AsyncSession, *, owner: User, name: str, logo: str | None = None
) -> Team:
    # Team, owner membership and a free subscription row are created together.
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Team name is required")
    team = Team(name=cleaned, logo=logo, plan=str(PlanTier.FREE))
    session.add(team)
    await session.flush()
    session.add(TeamMember(team_id=team.id, user_id=owner.id, role=str(Role.OWNER)))
    session.add(
        Subscription(
            team_id=team.id,
            plan=str(PlanTier.FREE),
            interval=str(BillingInterval.MONTHLY),
            status="active",
        )
    )
    await session.commit()
    logger.info("team_created team_id=%s owner_id=%s", team.id, owner.id)
    return team


async def get_user_teams(session: AsyncSession, user_id: str) -> list[dict[str, Any]]:
    """Teams the user belongs to, shaped by their role in each.

    Owners see the plan and subscription details of the team; members only
    see its id and name.
    """
    views: list[dict[str, Any]] = []
    for membership in await teams_repo.list_memberships_for_user(session, user_id):
        team = await teams_repo.get_team(session, membership.team_id)
        if team is None:
            continue
        view: dict[str, Any] = {"id": team.id, "name": team.name, "role": membership.role}
        if membership.role == Role.OWNER:
            subscription = await teams_repo.get_subscription(session, team.id)
            view["logo"] = team.logo
            view["plan"] = team.plan
            view["subscription"] = (
                {
                    "plan": subscription.plan,
                    "interval": subscription.interval,
                    "status": subscription.status,
                    "trial_ends_at": _iso(subscription.trial_ends_at),
                    "current_period_end": _iso(subscription.current_period_end),
                    "stripe_price_id": subscription.stripe_price_id,
                    "stripe_subscription_id": subscription.stripe_subscription_id,
                }
                if subscription is not None
                else None
            )
        views.append(view)
    return views


async def token_team_claims(session: AsyncSession, user_id: str) -> list[dict[str, str]]:
    memberships = await teams_repo.list_memberships_for_user(session, user_id)
    return [{"team_id": m.team_id, "role": m.role} for m in memberships]


async def list_team_members(session: AsyncSession, team_id: str) -> list[dict[str, Any]]:
    members = await teams_repo.list_members(session, team_id)
    users = await users_repo.get_users_by_ids(session, [m.user_id for m in members])
    rendered = []
    for member in members:
        user = users.get(member.user_id)
        rendered.append(
            {
                "user_id": member.user_id,
                "role": member.role,
                "name": user.name if user else None,
                "email": user.email if user else None,
                "joined_at": member.created_at.isoformat(),
            }
        )
    return rendered


async def remove_team_member(session: AsyncSession, team_id: str, user_id: str) -> None:
    membership = await teams_repo.get_membership(session, team_id, user_id)
    if membership is None:
        raise NotFoundError("Member not found", team_id=team_id, user_id=user_id)
    if membership.role == Role.OWNER and await teams_repo.count_owners(session, team_id) <= 1:
        raise ConflictError("A team must keep at least one owner")
    await session.delete(membership)
    await session.commit()
    logger.info("team_member_removed team_id=%s user_id=%s", team_id, user_id)
