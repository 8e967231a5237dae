from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO
from uuid import uuid4

from PIL import Image

from siteqa.domain.models import QAReport, Site, SiteUser, User
from siteqa.persistence.db import SessionLocal


def png_bytes(width: int = 640, height: int = 400) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color=(200, 40, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


def report_form(url: str = "https://www.example.com/pricing", **overrides: str) -> dict[str, str]:
    form = {"url": url, "comment": "Button overlaps footer", "x": "120", "y": "48"}
    form.update(overrides)
    return form


def screenshot_file() -> dict[str, tuple[str, bytes, str]]:
    return {"screenshot": ("shot.png", png_bytes(), "image/png")}


async def create_test_site(
    owner: User, *, domain: str = "example.com", team_id: str | None = None
) -> Site:
    site = Site(
        id=uuid4().hex,
        name=domain,
        url=f"https://{domain}/",
        domain=domain,
        slug=domain.replace(".", "-"),
        team_id=team_id,
    )
    async with SessionLocal() as session:
        session.add(site)
        await session.flush()
        session.add(SiteUser(site_id=site.id, user_id=owner.id))
        await session.commit()
    return site


async def seed_reports(
    site: Site,
    author: User,
    count: int,
    *,
    status: str = "new",
    due_date: datetime | None = None,
    timestamp: datetime | None = None,
) -> list[QAReport]:
    # Bulk insert reports directly, bypassing storage uploads.
    reports = []
    async with SessionLocal() as session:
        for index in range(count):
            report_id = uuid4().hex
            report = QAReport(
                id=report_id,
                slug=f"seeded-{report_id[:8]}-{index}",
                url=site.url,
                domain=site.domain,
                site_name=site.name,
                page_path="/",
                title=f"Seeded report {index}",
                comment="seeded",
                x=1,
                y=1,
                image_key=f"reports/{report_id}.png",
                timestamp=timestamp or datetime.now(timezone.utc),
                status=status,
                user_name=author.name or author.email,
                due_date=due_date,
                user_id=author.id,
                site_id=site.id,
            )
            session.add(report)
            reports.append(report)
        await session.commit()
    return reports
