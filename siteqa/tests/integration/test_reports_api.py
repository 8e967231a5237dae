from __future__ import annotations

from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from siteqa.apps.api.main import create_app
from siteqa.domain.models import QAReport, Site
from siteqa.persistence.db import SessionLocal
from siteqa.providers.storage.factory import get_object_storage
from siteqa.tests.utils.auth import create_test_team, create_test_user
from siteqa.tests.utils.reports import create_test_site, report_form, screenshot_file, seed_reports


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


async def _post_report(client: AsyncClient, headers: dict[str, str], **form: str):
    return await client.post(
        "/api/report", headers=headers, data=report_form(**form), files=screenshot_file()
    )


async def test_create_and_read_report() -> None:
    user, headers = await create_test_user(name="Quinn")
    async with _client() as client:
        created = await _post_report(
            client, headers, title="Footer overlap", priority="high", type="design", due_date="2026-11-01"
        )
        assert created.status_code == 201
        body = created.json()
        listed = await client.get("/api/report", headers=headers, params={"q": "footer"})
        fetched = await client.get(f"/api/report/{body['id']}", headers=headers)
        status = await client.get(f"/api/report/{body['id']}/status", headers=headers)

    assert body["domain"] == "example.com"
    assert body["slug"] == "footer-overlap"
    assert body["priority"] == "high"
    assert body["type"] == "design"
    assert body["due_date"].startswith("2026-11-01")
    assert body["user_name"] == "Quinn"
    assert body["image_url"].startswith(f"memory://reports/{body['id']}.png")
    assert [item["id"] for item in listed.json()] == [body["id"]]
    assert fetched.json()["title"] == "Footer overlap"
    assert status.json() == {"status": "new"}
    assert f"reports/{body['id']}.json" in get_object_storage().objects


async def test_create_report_requires_screenshot() -> None:
    _, headers = await create_test_user()
    async with _client() as client:
        response = await client.post("/api/report", headers=headers, data=report_form())
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_free_plan_allows_fiftieth_report_and_rejects_fifty_first() -> None:
    user, headers = await create_test_user()
    site = await create_test_site(user, domain="example.com")
    await seed_reports(site, user, 49)

    async with _client() as client:
        fiftieth = await _post_report(client, headers)
        fifty_first = await _post_report(client, headers)

    assert fiftieth.status_code == 201
    assert fifty_first.status_code == 403
    error = fifty_first.json()["error"]
    assert error["code"] == "PLAN_LIMIT_REACHED"
    assert error["details"] == {"plan": "free", "resource": "reports", "limit": 50, "used": 50}


async def test_team_report_requires_membership() -> None:
    owner, _ = await create_test_user()
    _, stranger_headers = await create_test_user()
    team = await create_test_team(owner)
    async with _client() as client:
        response = await _post_report(client, stranger_headers, team_id=team.id)
    assert response.status_code == 403


async def test_team_report_lands_on_team_site() -> None:
    owner, _ = await create_test_user()
    member, member_headers = await create_test_user()
    team = await create_test_team(owner, members=[member])
    async with _client() as client:
        response = await _post_report(client, member_headers, team_id=team.id)
    assert response.status_code == 201
    async with SessionLocal() as session:
        site = (await session.execute(select(Site))).scalar_one()
    assert site.team_id == team.id


async def test_inactive_paid_plan_is_402() -> None:
    owner, headers = await create_test_user()
    team = await create_test_team(owner, plan="starter", status="past_due")
    async with _client() as client:
        response = await _post_report(client, headers, team_id=team.id)
    assert response.status_code == 402
    assert response.json()["error"]["code"] == "PAYMENT_REQUIRED"


async def test_status_priority_due_date_and_archive() -> None:
    user, headers = await create_test_user()
    site = await create_test_site(user)
    (report,) = await seed_reports(site, user, 1)
    path = f"/api/report/{report.id}"

    async with _client() as client:
        done = await client.patch(f"{path}/status", headers=headers, json={"status": "done"})
        priority = await client.patch(f"{path}/priority", headers=headers, json={"priority": "critical"})
        bad_priority = await client.patch(f"{path}/priority", headers=headers, json={"priority": "urgent"})
        due = await client.patch(f"{path}/due-date", headers=headers, json={"due_date": "2026-12-24"})
        cleared = await client.patch(f"{path}/due-date", headers=headers, json={"due_date": None})
        archived = await client.patch(f"{path}/archive", headers=headers, json={"archived": True})
        archive_list = await client.get("/api/archive", headers=headers)
        active_list = await client.get("/api/report", headers=headers, params={"archived": "false"})

    assert done.json()["status"] == "done"
    assert done.json()["resolved_at"] is not None
    assert done.json()["duration"] is not None
    assert priority.json()["priority"] == "critical"
    assert bad_priority.status_code == 400
    assert due.json()["due_date"].startswith("2026-12-24")
    assert cleared.json()["due_date"] is None
    assert archived.json()["archived"] is True
    assert [item["id"] for item in archive_list.json()] == [report.id]
    assert active_list.json() == []


async def test_unknown_report_is_404_and_foreign_report_is_403() -> None:
    owner, _ = await create_test_user()
    _, other_headers = await create_test_user()
    site = await create_test_site(owner)
    (report,) = await seed_reports(site, owner, 1)
    async with _client() as client:
        missing = await client.get("/api/report/does-not-exist", headers=other_headers)
        foreign = await client.get(f"/api/report/{report.id}", headers=other_headers)
    assert missing.status_code == 404
    assert foreign.status_code == 403


async def test_delete_report_removes_empty_site() -> None:
    _, headers = await create_test_user()
    async with _client() as client:
        created = await _post_report(client, headers)
        report_id = created.json()["id"]
        deleted = await client.delete(f"/api/report/{report_id}", headers=headers)
        sites = await client.get("/api/sites", headers=headers)

    assert deleted.status_code == 200
    assert deleted.json()["site_removed"] is True
    assert sites.json() == []
    assert get_object_storage().objects == {}
    async with SessionLocal() as session:
        remaining = (await session.execute(select(func.count()).select_from(QAReport))).scalar_one()
    assert remaining == 0
