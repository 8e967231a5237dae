from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from siteqa.domain.models import QAReport, Site, SiteUser, User, utc_now
from siteqa.persistence.repos import sites as sites_repo
from siteqa.persistence.repos import teams as teams_repo
from siteqa.persistence.repos import users as users_repo
from siteqa.providers.sitemeta.base import SiteMetadataProvider, bare_domain
from siteqa.services.notifications.persisted import add_site_invite_notification


logger = logging.getLogger(__name__)

_MAX_SLUG_ATTEMPTS = 100


def slugify(text: str) -> str:
    if not text:
        return ""
    slug = text.lower()
    # Dots separate words too, so "example.com" becomes "example-com".
    slug = re.sub(r"[\s.]+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def extract_domain(url: str) -> str:
    domain = bare_domain(url or "")
    if not domain:
        raise ValidationError("A valid url is required", url=url)
    return domain


async def unique_site_slug(session: AsyncSession, name: str, domain: str) -> str:
    # Site slugs are global; collisions get a numeric suffix.
    base = slugify(name) or slugify(domain) or "site"
    candidate = base
    for attempt in range(2, _MAX_SLUG_ATTEMPTS + 2):
        if not await sites_repo.slug_exists(session, candidate):
            return candidate
        candidate = f"{base}-{attempt}"
    raise ValidationError("Could not allocate a unique site slug", slug=base)


async def user_can_access_site(session: AsyncSession, site: Site, user_id: str) -> bool:
    # Direct site membership or membership of the owning team.
    if await sites_repo.get_site_user(session, site.id, user_id) is not None:
        return True
    if site.team_id is None:
        return False
    return await teams_repo.get_membership(session, site.team_id, user_id) is not None


async def require_site_access(session: AsyncSession, site: Site, user_id: str) -> None:
    if not await user_can_access_site(session, site, user_id):
        raise AuthorizationError("Access denied to this site", site_id=site.id)


async def get_accessible_site_by_slug(session: AsyncSession, slug: str, user_id: str) -> Site:
    site = await sites_repo.get_site_by_slug(session, slug)
    # Unknown and inaccessible sites look the same to the caller.
    if site is None or not await user_can_access_site(session, site, user_id):
        raise AuthorizationError("Access denied to this site", slug=slug)
    return site


async def resolve_site_for_report(
    session: AsyncSession,
    *,
    url: str,
    user: User,
    team_id: str | None,
    site_metadata: SiteMetadataProvider,
) -> Site:
    """Find the site for a report URL or stage a new one in the session.

    A new site is not committed here; it is persisted together with the
    report that caused it. Nothing may be pending in the session when this
    is called: losing the insert race rolls the session back.
    """
    user_id = user.id
    domain = extract_domain(url)
    site = await sites_repo.get_site_by_domain(session, domain)
    if site is not None:
        await require_site_access(session, site, user_id)
        return site
    name = await site_metadata.resolve_site_name(url)
    site = Site(
        name=name or domain,
        url=url,
        domain=domain,
        slug=await unique_site_slug(session, name or domain, domain),
        team_id=team_id,
    )
    session.add(site)
    try:
        await session.flush()
    except IntegrityError as exc:
        # Another request created a site for this domain (or slug) first.
        await session.rollback()
        existing = await sites_repo.get_site_by_domain(session, domain)
        if existing is not None and await user_can_access_site(session, existing, user_id):
            logger.info("site_create_race_reused site_id=%s domain=%s", existing.id, domain)
            return existing
        raise ConflictError("A site for this domain already exists", domain=domain) from exc
    session.add(SiteUser(site_id=site.id, user_id=user_id))
    logger.info("site_created site_id=%s domain=%s team_id=%s", site.id, domain, team_id)
    return site


async def list_sites_for_user(session: AsyncSession, user_id: str) -> list[dict[str, Any]]:
    """Accessible sites with report counts; pinned sites first, then most recent."""
    sites = await sites_repo.list_accessible_sites(session, user_id)
    if not sites:
        return []
    site_ids = [site.id for site in sites]
    counts_result = await session.execute(
        select(QAReport.site_id, func.count(), func.max(QAReport.timestamp))
        .where(QAReport.site_id.in_(site_ids), QAReport.archived.is_(False))
        .group_by(QAReport.site_id)
    )
    stats = {row[0]: (int(row[1]), row[2]) for row in counts_result.all()}
    pins_result = await session.execute(
        select(SiteUser.site_id).where(
            SiteUser.user_id == user_id,
            SiteUser.site_id.in_(site_ids),
            SiteUser.is_pinned.is_(True),
        )
    )
    pinned = set(pins_result.scalars().all())

    rendered = []
    for site in sites:
        count, last_updated = stats.get(site.id, (0, None))
        latest_id = None
        if last_updated is not None:
            latest_result = await session.execute(
                select(QAReport.id)
                .where(QAReport.site_id == site.id, QAReport.archived.is_(False))
                .order_by(QAReport.timestamp.desc())
                .limit(1)
            )
            latest_id = latest_result.scalar_one_or_none()
        rendered.append(
            {
                "id": latest_id,
                "site_id": site.id,
                "site": site.domain,
                "site_name": site.name,
                "slug": site.slug,
                "team_id": site.team_id,
                "archived": site.archived,
                "count": count,
                "last_updated": last_updated.isoformat() if last_updated else None,
                "is_pinned": site.id in pinned,
            }
        )
    rendered.sort(key=lambda item: item["last_updated"] or "", reverse=True)
    rendered.sort(key=lambda item: not item["is_pinned"])
    return rendered


async def invite_user_to_site(
    session: AsyncSession, *, slug: str, email: str, inviter: User
) -> bool:
    # Returns False when the user already had direct access.
    if not email:
        raise ValidationError("email is required")
    site = await get_accessible_site_by_slug(session, slug, inviter.id)
    invitee = await users_repo.get_user_by_email(session, email)
    if invitee is None:
        raise NotFoundError("User not found")
    if await sites_repo.get_site_user(session, site.id, invitee.id) is not None:
        return False
    session.add(SiteUser(site_id=site.id, user_id=invitee.id))
    add_site_invite_notification(session, recipient_id=invitee.id, inviter=inviter, site=site)
    await session.commit()
    logger.info("site_user_invited site_id=%s user_id=%s", site.id, invitee.id)
    return True


async def list_site_users(session: AsyncSession, slug: str, user_id: str) -> list[dict[str, Any]]:
    site = await get_accessible_site_by_slug(session, slug, user_id)
    user_ids = await sites_repo.list_site_user_ids(session, site.id)
    users = await users_repo.get_users_by_ids(session, user_ids)
    return [
        {"id": user.id, "name": user.name, "email": user.email}
        for user in sorted(users.values(), key=lambda item: item.email)
    ]


async def set_site_archived(
    session: AsyncSession, *, slug: str, user_id: str, archived: bool
) -> int:
    # Only the caller's own reports on the site are touched.
    site = await get_accessible_site_by_slug(session, slug, user_id)
    result = await session.execute(
        update(QAReport)
        .where(QAReport.site_id == site.id, QAReport.user_id == user_id)
        .values(archived=archived, archived_at=utc_now() if archived else None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return int(result.rowcount or 0)


async def set_site_pinned(session: AsyncSession, *, slug: str, user_id: str, pinned: bool) -> None:
    site = await get_accessible_site_by_slug(session, slug, user_id)
    site_user = await sites_repo.get_site_user(session, site.id, user_id)
    if site_user is None:
        # Team-level access gets a direct row to carry the pin.
        site_user = SiteUser(site_id=site.id, user_id=user_id)
        session.add(site_user)
    site_user.is_pinned = pinned
    await session.commit()
