from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import html
import logging
import secrets
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.config import get_settings
from siteqa.core.errors import (
    InviteAlreadyUsedError,
    InviteExpiredError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from siteqa.domain.enums import Role
from siteqa.domain.models import TeamInvite, TeamMember
from siteqa.persistence.repos import teams as teams_repo
from siteqa.persistence.repos.users import normalize_email
from siteqa.providers.mail.base import Mailer


logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud or retyped.
INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVITE_CODE_GROUPS = 3
INVITE_CODE_GROUP_SIZE = 4


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_invite_code() -> str:
    groups = [
        "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_GROUP_SIZE))
        for _ in range(INVITE_CODE_GROUPS)
    ]
    return "-".join(groups)


def normalize_invite_code(code: str) -> str:
    return code.strip().upper()


def build_join_link(code: str) -> str:
    base_url = get_settings().app_base_url.rstrip("/")
    return f"{base_url}/join?code={code}"


def render_invite_email(team_name: str, join_link: str, role: str) -> tuple[str, str]:
    subject = f"You're invited to join {team_name} on SiteQA"
    safe_team = html.escape(team_name)
    safe_link = html.escape(join_link, quote=True)
    body = (
        f"<p>You have been invited to join <strong>{safe_team}</strong> as a {html.escape(role)}.</p>"
        f'<p><a href="{safe_link}">Accept the invitation</a></p>'
        "<p>This link expires in 7 days.</p>"
    )
    return subject, body


@dataclass(frozen=True)
class RedeemResult:
    team_id: str
    role: str
    already_member: bool


class InviteService:
    def __init__(self, *, time_provider: Callable[[], datetime] | None = None) -> None:
        # Injectable clock keeps expiry tests deterministic.
        self._time_provider = time_provider or _utc_now

    def _expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=get_settings().invite_ttl_days)

    async def _require_team(self, session: AsyncSession, team_id: str) -> None:
        if await teams_repo.get_team(session, team_id) is None:
            raise NotFoundError("Team not found", team_id=team_id)

    async def find_valid_invite(
        self, session: AsyncSession, team_id: str, role: str = Role.MEMBER
    ) -> TeamInvite | None:
        return await teams_repo.find_open_link_invite(
            session, team_id, str(role), self._time_provider()
        )

    async def create_invite_link(
        self, session: AsyncSession, team_id: str, role: str = Role.MEMBER
    ) -> TeamInvite:
        # Every call mints a fresh code; reuse is the caller's decision.
        await self._require_team(session, team_id)
        now = self._time_provider()
        invite = TeamInvite(
            team_id=team_id,
            code=generate_invite_code(),
            role=str(role),
            expires_at=self._expiry(now),
            created_at=now,
        )
        session.add(invite)
        await session.commit()
        logger.info("invite_link_created team_id=%s invite_id=%s", team_id, invite.id)
        return invite

    async def get_or_create_invite_link(
        self, session: AsyncSession, team_id: str, role: str = Role.MEMBER
    ) -> TeamInvite:
        existing = await self.find_valid_invite(session, team_id, role)
        if existing is not None:
            return existing
        return await self.create_invite_link(session, team_id, role)

    async def send_invite_email(
        self,
        session: AsyncSession,
        mailer: Mailer,
        team_id: str,
        email: str,
        role: str = Role.MEMBER,
    ) -> TeamInvite:
        """Mint an email-bound invite and mail its join link.

        The invite row is only committed once the mail provider accepted the
        message, so a failed send leaves nothing redeemable behind.
        """
        target = normalize_email(email or "")
        if not target or "@" not in target:
            raise ValidationError("A valid email is required")
        team = await teams_repo.get_team(session, team_id)
        if team is None:
            raise NotFoundError("Team not found", team_id=team_id)
        now = self._time_provider()
        expires_at = self._expiry(now)
        if expires_at <= now:
            raise ValidationError("Invite expiry must be in the future")
        invite = TeamInvite(
            team_id=team_id,
            code=generate_invite_code(),
            role=str(role),
            email=target,
            expires_at=expires_at,
            created_at=now,
        )
        session.add(invite)
        await session.flush()
        # Checked again against the persisted row before anything is sent.
        if invite.expires_at <= self._time_provider():
            await session.rollback()
            raise ValidationError("Invite already expired")
        subject, body = render_invite_email(team.name, build_join_link(invite.code), str(role))
        try:
            await mailer.send(target, subject, body)
        except UpstreamError:
            await session.rollback()
            logger.warning("invite_email_failed team_id=%s", team_id, exc_info=True)
            raise
        await session.commit()
        logger.info("invite_email_sent team_id=%s invite_id=%s", team_id, invite.id)
        return invite

    async def redeem_invite(self, session: AsyncSession, code: str, user_id: str) -> RedeemResult:
        invite = await teams_repo.get_invite_by_code(session, normalize_invite_code(code))
        if invite is None:
            raise NotFoundError("Invite not found")
        if invite.expires_at <= self._time_provider():
            raise InviteExpiredError("Invite has expired")

        existing = await teams_repo.get_membership(session, invite.team_id, user_id)
        if existing is not None:
            # Redeeming into a team you already belong to is a no-op.
            return RedeemResult(team_id=invite.team_id, role=existing.role, already_member=True)
        if invite.used:
            raise InviteAlreadyUsedError("Invite has already been used")

        # Compare-and-set so only one concurrent redeemer flips the flag.
        result = await session.execute(
            update(TeamInvite)
            .where(TeamInvite.id == invite.id, TeamInvite.used.is_(False))
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            existing = await teams_repo.get_membership(session, invite.team_id, user_id)
            if existing is not None:
                return RedeemResult(team_id=invite.team_id, role=existing.role, already_member=True)
            raise InviteAlreadyUsedError("Invite has already been used")

        session.add(TeamMember(team_id=invite.team_id, user_id=user_id, role=invite.role))
        # Flag flip and membership insert commit together or not at all.
        try:
            await session.commit()
        except IntegrityError:
            # Membership created concurrently through another invite.
            await session.rollback()
            existing = await teams_repo.get_membership(session, invite.team_id, user_id)
            if existing is None:
                raise
            return RedeemResult(team_id=invite.team_id, role=existing.role, already_member=True)
        logger.info("invite_redeemed team_id=%s invite_id=%s user_id=%s", invite.team_id, invite.id, user_id)
        return RedeemResult(team_id=invite.team_id, role=invite.role, already_member=False)
