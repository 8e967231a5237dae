from __future__ import annotations

from datetime import datetime, timedelta, timezone

from PIL import Image
import pytest
from sqlalchemy import func, select

from siteqa.core.errors import AuthorizationError, ConflictError, UpstreamError, ValidationError
from siteqa.domain.models import Activity, Attachment, Comment, Notification, QAReport, Site, SiteUser, new_id
from siteqa.persistence.db import SessionLocal
from siteqa.persistence.repos import reports as reports_repo
from siteqa.providers.sitemeta.fake import FakeSiteMetadataProvider
from siteqa.providers.storage.memory import InMemoryObjectStorage
from siteqa.services.comments import UploadedFile, create_comment
from siteqa.services.reports import (
    NewReport,
    ReportService,
    duration_minutes,
    image_key_for,
    metadata_key_for,
    parse_due_date,
)
from siteqa.tests.utils.auth import create_test_team, create_test_user
from siteqa.tests.utils.reports import create_test_site, png_bytes, seed_reports

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _new_report(url: str = "https://www.example.com/pricing", **overrides) -> NewReport:
    values = {"url": url, "comment": "Hero image is cropped\nmore details", "x": 10, "y": 20, "screenshot": png_bytes()}
    values.update(overrides)
    return NewReport(**values)


async def _count(model) -> int:
    async with SessionLocal() as session:
        return int((await session.execute(select(func.count()).select_from(model))).scalar_one())


def test_duration_rounds_half_minutes_up() -> None:
    assert duration_minutes(T0, T0 + timedelta(seconds=89)) == 1
    assert duration_minutes(T0, T0 + timedelta(seconds=90)) == 2
    assert duration_minutes(T0, T0 + timedelta(hours=2)) == 120


def test_parse_due_date() -> None:
    assert parse_due_date(None) is None
    assert parse_due_date("  ") is None
    assert parse_due_date("2026-03-05") == datetime(2026, 3, 5, tzinfo=timezone.utc)
    assert parse_due_date("2026-03-05T10:00:00Z") == datetime(2026, 3, 5, 10, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        parse_due_date("next tuesday")


async def test_create_report_creates_site_and_uploads() -> None:
    user, _ = await create_test_user(name="Dana")
    storage = InMemoryObjectStorage()

    async with SessionLocal() as session:
        report = await ReportService().create_report(
            session,
            user=user,
            payload=_new_report(),
            team_id=None,
            storage=storage,
            site_metadata=FakeSiteMetadataProvider(),
        )

    assert report.domain == "example.com"
    assert report.title == "Hero image is cropped"
    assert report.slug == "hero-image-is-cropped"
    assert report.page_path == "/pricing"
    assert report.status == "new"
    assert report.user_name == "Dana"
    assert set(storage.objects) == {image_key_for(report.id), metadata_key_for(report.id)}
    async with SessionLocal() as session:
        site = (await session.execute(select(Site))).scalar_one()
        site_user = (await session.execute(select(SiteUser))).scalar_one()
    assert site.slug == "example-com"
    assert site.team_id is None
    assert site_user.user_id == user.id


async def test_create_report_reuses_site_and_suffixes_slug() -> None:
    user, _ = await create_test_user()
    storage = InMemoryObjectStorage()
    service = ReportService()

    async with SessionLocal() as session:
        first = await service.create_report(
            session, user=user, payload=_new_report(title="Broken nav"), team_id=None,
            storage=storage, site_metadata=FakeSiteMetadataProvider(),
        )
    async with SessionLocal() as session:
        second = await service.create_report(
            session, user=user, payload=_new_report("https://example.com/", title="Broken nav"),
            team_id=None, storage=storage, site_metadata=FakeSiteMetadataProvider(),
        )

    assert first.site_id == second.site_id
    assert (first.slug, second.slug) == ("broken-nav", "broken-nav-2")
    assert await _count(Site) == 1


async def test_create_report_on_foreign_site_is_denied() -> None:
    owner, _ = await create_test_user()
    stranger, _ = await create_test_user()
    await create_test_site(owner, domain="example.com")

    async with SessionLocal() as session:
        with pytest.raises(AuthorizationError):
            await ReportService().create_report(
                session, user=stranger, payload=_new_report(), team_id=None,
                storage=InMemoryObjectStorage(), site_metadata=FakeSiteMetadataProvider(),
            )


async def test_failed_upload_persists_nothing() -> None:
    user, _ = await create_test_user()
    storage = InMemoryObjectStorage()
    storage.fail_uploads = True

    async with SessionLocal() as session:
        with pytest.raises(UpstreamError):
            await ReportService().create_report(
                session, user=user, payload=_new_report(), team_id=None,
                storage=storage, site_metadata=FakeSiteMetadataProvider(),
            )

    assert await _count(QAReport) == 0
    assert await _count(Site) == 0
    assert storage.objects == {}


async def test_create_report_rejects_unknown_priority() -> None:
    user, _ = await create_test_user()
    async with SessionLocal() as session:
        with pytest.raises(ValidationError):
            await ReportService().create_report(
                session, user=user, payload=_new_report(priority="urgent"), team_id=None,
                storage=InMemoryObjectStorage(), site_metadata=FakeSiteMetadataProvider(),
            )


async def test_duration_is_set_on_first_resolution_only() -> None:
    user, _ = await create_test_user()
    site = await create_test_site(user)
    (report,) = await seed_reports(site, user, 1, timestamp=T0)
    clock = _Clock(T0 + timedelta(minutes=30))
    service = ReportService(time_provider=clock)

    async with SessionLocal() as session:
        done = await service.update_status(session, report_id=report.id, actor=user, status="done")
    assert done.duration == 30
    assert done.resolved_at == T0 + timedelta(minutes=30)

    clock.now = T0 + timedelta(hours=5)
    async with SessionLocal() as session:
        await service.update_status(session, report_id=report.id, actor=user, status="inProgress")
    async with SessionLocal() as session:
        again = await service.update_status(session, report_id=report.id, actor=user, status="done")

    assert again.status == "done"
    assert again.duration == 30
    assert again.resolved_at == T0 + timedelta(minutes=30)


async def test_any_non_empty_status_is_accepted() -> None:
    user, _ = await create_test_user()
    site = await create_test_site(user)
    (report,) = await seed_reports(site, user, 1)

    async with SessionLocal() as session:
        updated = await ReportService().update_status(
            session, report_id=report.id, actor=user, status="blocked"
        )
        assert updated.status == "blocked"
        with pytest.raises(ValidationError):
            await ReportService().update_status(session, report_id=report.id, actor=user, status=" ")


async def test_self_actions_record_no_activity() -> None:
    user, _ = await create_test_user()
    site = await create_test_site(user)
    (report,) = await seed_reports(site, user, 1)
    service = ReportService()

    async with SessionLocal() as session:
        await service.update_status(session, report_id=report.id, actor=user, status="inProgress")
        await service.update_priority(session, report_id=report.id, actor=user, priority="high")
        await service.update_due_date(
            session, report_id=report.id, actor=user, due_date=T0 + timedelta(days=1)
        )

    assert await _count(Activity) == 0


async def test_teammate_actions_notify_report_author() -> None:
    author, _ = await create_test_user(name="Author")
    teammate, _ = await create_test_user(name="Pat")
    team = await create_test_team(author, members=[teammate])
    site = await create_test_site(author, team_id=team.id)
    (report,) = await seed_reports(site, author, 1)
    service = ReportService()

    async with SessionLocal() as session:
        await service.update_priority(session, report_id=report.id, actor=teammate, priority="critical")
        await service.update_status(session, report_id=report.id, actor=teammate, status="done")

    async with SessionLocal() as session:
        activities = (
            await session.execute(select(Activity).order_by(Activity.created_at))
        ).scalars().all()

    assert [a.type for a in activities] == ["priority", "completed"]
    assert all(a.user_id == author.id and a.actor_id == teammate.id for a in activities)
    assert activities[0].message == 'Pat set the priority of "Seeded report 0" to critical'
    assert activities[1].message == 'Pat marked "Seeded report 0" as done'


async def test_outsider_cannot_touch_report() -> None:
    author, _ = await create_test_user()
    outsider, _ = await create_test_user()
    site = await create_test_site(author)
    (report,) = await seed_reports(site, author, 1)

    async with SessionLocal() as session:
        with pytest.raises(AuthorizationError):
            await ReportService().update_status(
                session, report_id=report.id, actor=outsider, status="done"
            )


async def test_delete_last_report_cascades_to_site() -> None:
    author, _ = await create_test_user()
    mentioned, _ = await create_test_user()
    storage = InMemoryObjectStorage()
    service = ReportService()

    async with SessionLocal() as session:
        report = await service.create_report(
            session, user=author, payload=_new_report(), team_id=None,
            storage=storage, site_metadata=FakeSiteMetadataProvider(),
        )
    async with SessionLocal() as session:
        parent = await create_comment(
            session, report_id=report.id, author=author, content="Top", storage=storage,
            mentions=mentioned.id,
            files=[UploadedFile(name="proof.png", content_type="image/png", data=png_bytes())],
        )
    async with SessionLocal() as session:
        await create_comment(
            session, report_id=report.id, author=author, content="Reply", storage=storage,
            parent_id=parent.id,
        )
    assert len(storage.objects) == 4

    async with SessionLocal() as session:
        site_removed = await service.delete_report(
            session, report_id=report.id, actor=author, storage=storage
        )

    assert site_removed is True
    assert storage.objects == {}
    for model in (QAReport, Comment, Site, SiteUser):
        assert await _count(model) == 0
    async with SessionLocal() as session:
        notification = (await session.execute(select(Notification))).scalar_one()
    assert notification.report_id is None
    assert notification.comment_id is None


async def test_delete_keeps_site_with_remaining_reports() -> None:
    author, _ = await create_test_user()
    site = await create_test_site(author)
    first, _second = await seed_reports(site, author, 2)

    async with SessionLocal() as session:
        site_removed = await ReportService().delete_report(
            session, report_id=first.id, actor=author, storage=InMemoryObjectStorage()
        )

    assert site_removed is False
    assert await _count(QAReport) == 1
    assert await _count(Site) == 1


async def test_only_author_or_team_owner_may_delete() -> None:
    owner, _ = await create_test_user()
    author, _ = await create_test_user()
    other_member, _ = await create_test_user()
    team = await create_test_team(owner, members=[author, other_member])
    site = await create_test_site(author, team_id=team.id)
    first, second = await seed_reports(site, author, 2)
    service = ReportService()

    async with SessionLocal() as session:
        with pytest.raises(AuthorizationError):
            await service.delete_report(
                session, report_id=first.id, actor=other_member, storage=InMemoryObjectStorage()
            )
    async with SessionLocal() as session:
        await service.delete_report(
            session, report_id=first.id, actor=owner, storage=InMemoryObjectStorage()
        )

    assert await _count(QAReport) == 1


async def test_search_treats_like_wildcards_literally() -> None:
    user, _ = await create_test_user()
    site = await create_test_site(user)
    reports = await seed_reports(site, user, 4)
    titles = ["Banner says 50% off", "Banner says 500 off", "Field a_b misaligned", "Field axb misaligned"]
    async with SessionLocal() as session:
        for report, title in zip(reports, titles):
            stored = await session.get(QAReport, report.id)
            stored.title = title
        await session.commit()

    async with SessionLocal() as session:
        percent = await reports_repo.list_user_reports(session, user.id, query="50%")
        underscore = await reports_repo.list_user_reports(session, user.id, query="a_b")

    assert [report.title for report in percent] == ["Banner says 50% off"]
    assert [report.title for report in underscore] == ["Field a_b misaligned"]


class _RacingSiteMetadata:
    """Commits a site for the same domain from another session mid-request."""

    def __init__(self, site_user_id: str) -> None:
        self.site_user_id = site_user_id
        self.site_id: str | None = None

    async def resolve_site_name(self, url: str) -> str:
        site = Site(
            id=new_id(),
            name="example.com",
            url="https://example.com/",
            domain="example.com",
            slug="example-com",
        )
        async with SessionLocal() as other:
            other.add(site)
            await other.flush()
            other.add(SiteUser(site_id=site.id, user_id=self.site_user_id))
            await other.commit()
        self.site_id = site.id
        return "Example"


async def test_create_report_reuses_site_won_by_concurrent_request() -> None:
    user, _ = await create_test_user()
    storage = InMemoryObjectStorage()
    racing = _RacingSiteMetadata(user.id)

    async with SessionLocal() as session:
        report = await ReportService().create_report(
            session, user=user, payload=_new_report(), team_id=None, storage=storage, site_metadata=racing,
        )

    assert report.site_id == racing.site_id
    assert await _count(Site) == 1
    assert await _count(QAReport) == 1


async def test_create_report_conflicts_when_concurrent_site_is_foreign() -> None:
    user, _ = await create_test_user()
    stranger, _ = await create_test_user()
    storage = InMemoryObjectStorage()

    async with SessionLocal() as session:
        with pytest.raises(ConflictError) as exc_info:
            await ReportService().create_report(
                session, user=user, payload=_new_report(), team_id=None, storage=storage,
                site_metadata=_RacingSiteMetadata(stranger.id),
            )

    assert exc_info.value.status_code == 409
    assert storage.objects == {}
    assert await _count(Site) == 1
    assert await _count(QAReport) == 0


async def test_report_slug_race_is_a_conflict_and_cleans_up(monkeypatch) -> None:
    user, _ = await create_test_user()
    storage = InMemoryObjectStorage()
    service = ReportService()
    async with SessionLocal() as session:
        first = await service.create_report(
            session, user=user, payload=_new_report(title="Broken nav"), team_id=None,
            storage=storage, site_metadata=FakeSiteMetadataProvider(),
        )

    # The slug check runs before the competing insert lands.
    async def slug_never_taken(session, site_id, slug) -> bool:
        return False

    monkeypatch.setattr(reports_repo, "report_slug_exists", slug_never_taken)
    async with SessionLocal() as session:
        with pytest.raises(ConflictError):
            await service.create_report(
                session, user=user, payload=_new_report(title="Broken nav"), team_id=None,
                storage=storage, site_metadata=FakeSiteMetadataProvider(),
            )

    assert set(storage.objects) == {image_key_for(first.id), metadata_key_for(first.id)}
    assert await _count(QAReport) == 1


async def test_oversized_image_attachment_is_kept_without_thumbnail(monkeypatch) -> None:
    user, _ = await create_test_user()
    site = await create_test_site(user)
    (report,) = await seed_reports(site, user, 1)
    storage = InMemoryObjectStorage()
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    async with SessionLocal() as session:
        await create_comment(
            session, report_id=report.id, author=user, content="Huge screenshot", storage=storage,
            files=[UploadedFile(name="huge.png", content_type="image/png", data=png_bytes(640, 400))],
        )

    async with SessionLocal() as session:
        attachment = (await session.execute(select(Attachment))).scalar_one()
    assert attachment.thumbnail_key is None
    assert list(storage.objects) == [attachment.key]
