from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.domain.models import QAReport, Site, SiteUser, TeamMember


async def get_site(session: AsyncSession, site_id: str) -> Site | None:
    result = await session.execute(select(Site).where(Site.id == site_id))
    return result.scalar_one_or_none()


async def get_site_by_domain(session: AsyncSession, domain: str) -> Site | None:
    result = await session.execute(select(Site).where(Site.domain == domain))
    return result.scalar_one_or_none()


async def get_site_by_slug(session: AsyncSession, slug: str) -> Site | None:
    result = await session.execute(select(Site).where(Site.slug == slug))
    return result.scalar_one_or_none()


async def slug_exists(session: AsyncSession, slug: str) -> bool:
    result = await session.execute(select(Site.id).where(Site.slug == slug).limit(1))
    return result.scalar_one_or_none() is not None


async def get_site_user(session: AsyncSession, site_id: str, user_id: str) -> SiteUser | None:
    result = await session.execute(
        select(SiteUser).where(SiteUser.site_id == site_id, SiteUser.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def list_site_user_ids(session: AsyncSession, site_id: str) -> list[str]:
    result = await session.execute(select(SiteUser.user_id).where(SiteUser.site_id == site_id))
    return list(result.scalars().all())


def accessible_site_ids_query(user_id: str):
    # Sites reachable through direct membership or through the owning team.
    team_ids = select(TeamMember.team_id).where(TeamMember.user_id == user_id)
    direct = select(SiteUser.site_id).where(SiteUser.user_id == user_id)
    return select(Site.id).where(or_(Site.id.in_(direct), Site.team_id.in_(team_ids)))


async def list_accessible_sites(session: AsyncSession, user_id: str) -> list[Site]:
    result = await session.execute(
        select(Site).where(Site.id.in_(accessible_site_ids_query(user_id))).order_by(Site.created_at)
    )
    return list(result.scalars().all())


async def count_team_sites(session: AsyncSession, team_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Site).where(Site.team_id == team_id)
    )
    return int(result.scalar_one())


async def count_team_reports(session: AsyncSession, team_id: str) -> int:
    # Reports across every site the team owns, archived included.
    result = await session.execute(
        select(func.count())
        .select_from(QAReport)
        .join(Site, QAReport.site_id == Site.id)
        .where(Site.team_id == team_id)
    )
    return int(result.scalar_one())


async def count_personal_sites(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Site)
        .join(SiteUser, SiteUser.site_id == Site.id)
        .where(SiteUser.user_id == user_id, Site.team_id.is_(None))
    )
    return int(result.scalar_one())


async def count_personal_reports(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(QAReport)
        .join(Site, QAReport.site_id == Site.id)
        .join(SiteUser, SiteUser.site_id == Site.id)
        .where(SiteUser.user_id == user_id, Site.team_id.is_(None))
    )
    return int(result.scalar_one())
