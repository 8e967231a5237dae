from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import (
    get_current_user,
    get_db,
    get_mail,
    require_plan_for_team,
    require_team_capability,
)
from siteqa.core.errors import ValidationError
from siteqa.domain.enums import Role
from siteqa.domain.models import TeamInvite, TeamMember, User
from siteqa.providers.mail.base import Mailer
from siteqa.services import teams as teams_service
from siteqa.services.auth.roles import Capability, normalize_role
from siteqa.services.invites import InviteService, build_join_link
from siteqa.services.plans import PlanContext, get_plan_context


router = APIRouter(prefix="/teams", tags=["teams"])


def get_invite_service() -> InviteService:
    return InviteService()


class CreateTeamRequest(BaseModel):
    name: str | None = None
    logo: str | None = None


class InviteLinkRequest(BaseModel):
    role: str = Role.MEMBER


class InviteEmailRequest(BaseModel):
    email: str | None = None
    role: str = Role.MEMBER


class JoinRequest(BaseModel):
    code: str | None = None


def _resolve_role(value: str) -> Role:
    try:
        return normalize_role(value)
    except ValueError as exc:
        raise ValidationError(str(exc), role=value) from exc


def _invite_out(invite: TeamInvite) -> dict:
    return {
        "id": invite.id,
        "team_id": invite.team_id,
        "code": invite.code,
        "role": invite.role,
        "email": invite.email,
        "expires_at": invite.expires_at.isoformat(),
        "join_url": build_join_link(invite.code),
    }


@router.post("/create", status_code=201)
async def create_team(
    payload: CreateTeamRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    team = await teams_service.create_team(db, owner=user, name=payload.name or "", logo=payload.logo)
    return {"id": team.id, "name": team.name, "logo": team.logo, "plan": team.plan, "role": str(Role.OWNER)}


@router.get("")
async def list_teams(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    return await teams_service.get_user_teams(db, user.id)


@router.post("/join")
async def join_team(
    payload: JoinRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    invites: InviteService = Depends(get_invite_service),
) -> dict:
    if not payload.code:
        raise ValidationError("code is required")
    result = await invites.redeem_invite(db, payload.code, user.id)
    return {"team_id": result.team_id, "role": result.role, "already_member": result.already_member}


@router.get("/{team_id}/plan")
async def team_plan(
    team_id: str,
    membership: TeamMember = Depends(require_team_capability(Capability.VIEW_TEAM)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    context = await get_plan_context(db, team_id, membership.user_id)
    data = context.as_dict()
    data.pop("team_id", None)
    return data


@router.get("/{team_id}/members")
async def team_members(
    team_id: str,
    _membership: TeamMember = Depends(require_team_capability(Capability.VIEW_TEAM)),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    return await teams_service.list_team_members(db, team_id)


@router.delete("/{team_id}/members/{user_id}")
async def remove_member(
    team_id: str,
    user_id: str,
    _membership: TeamMember = Depends(require_team_capability(Capability.MANAGE_TEAM)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await teams_service.remove_team_member(db, team_id, user_id)
    return {"team_id": team_id, "user_id": user_id, "removed": True}


@router.post("/{team_id}/invite-link", status_code=201)
async def invite_link(
    team_id: str,
    payload: InviteLinkRequest | None = None,
    _membership: TeamMember = Depends(require_team_capability(Capability.INVITE_MEMBERS)),
    db: AsyncSession = Depends(get_db),
    invites: InviteService = Depends(get_invite_service),
) -> dict:
    role = _resolve_role(payload.role if payload else Role.MEMBER)
    invite = await invites.get_or_create_invite_link(db, team_id, role)
    return _invite_out(invite)


@router.post("/{team_id}/invite-email", status_code=201)
async def invite_email(
    team_id: str,
    payload: InviteEmailRequest,
    _membership: TeamMember = Depends(require_team_capability(Capability.INVITE_MEMBERS)),
    _plan: PlanContext = Depends(require_plan_for_team),
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mail),
    invites: InviteService = Depends(get_invite_service),
) -> dict:
    role = _resolve_role(payload.role)
    invite = await invites.send_invite_email(db, mailer, team_id, payload.email or "", role)
    return {**_invite_out(invite), "sent": True}
