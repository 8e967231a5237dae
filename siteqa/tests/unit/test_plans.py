from __future__ import annotations

import pytest

from siteqa.core.errors import PaymentRequiredError, PlanLimitError
from siteqa.domain.enums import PlanTier
from siteqa.persistence.db import SessionLocal
from siteqa.services.plans import (
    FAILURE_LIMIT_REACHED,
    FAILURE_PAYMENT_REQUIRED,
    PLAN_LIMITS,
    PlanContext,
    PlanUsage,
    enforce_plan,
    evaluate_plan_gate,
    get_plan_context,
    resolve_plan_tier,
)
from siteqa.tests.utils.auth import create_test_team, create_test_user
from siteqa.tests.utils.reports import create_test_site, seed_reports


def _context(plan: PlanTier, *, status: str = "active", reports=0, members=1, sites=0) -> PlanContext:
    return PlanContext(
        team_id="team-1",
        plan=plan,
        status=status,
        limits=PLAN_LIMITS[plan],
        usage=PlanUsage(reports=reports, members=members, sites=sites),
    )


def test_plan_limits_table() -> None:
    assert PLAN_LIMITS[PlanTier.FREE].reports == 50
    assert PLAN_LIMITS[PlanTier.STARTER].sites == 5
    assert PLAN_LIMITS[PlanTier.TEAM].sites is None
    assert PLAN_LIMITS[PlanTier.AGENCY].reports is None


def test_reports_fail_at_ceiling() -> None:
    assert evaluate_plan_gate(_context(PlanTier.FREE, reports=49)) is None
    failure = evaluate_plan_gate(_context(PlanTier.FREE, reports=50))
    assert failure is not None
    assert failure.kind == FAILURE_LIMIT_REACHED
    assert (failure.resource, failure.limit, failure.used) == ("reports", 50, 50)


def test_members_fail_only_above_ceiling() -> None:
    assert evaluate_plan_gate(_context(PlanTier.FREE, members=3)) is None
    failure = evaluate_plan_gate(_context(PlanTier.FREE, members=4))
    assert failure is not None and failure.resource == "members"


def test_sites_fail_at_ceiling() -> None:
    assert evaluate_plan_gate(_context(PlanTier.FREE, sites=2)) is None
    failure = evaluate_plan_gate(_context(PlanTier.FREE, sites=3))
    assert failure is not None and failure.resource == "sites"


def test_checks_run_in_fixed_order() -> None:
    failure = evaluate_plan_gate(_context(PlanTier.FREE, reports=50, members=9, sites=9))
    assert failure is not None and failure.resource == "reports"
    failure = evaluate_plan_gate(_context(PlanTier.STARTER, status="past_due", reports=5000))
    assert failure is not None and failure.kind == FAILURE_PAYMENT_REQUIRED


def test_free_plan_ignores_payment_status() -> None:
    assert evaluate_plan_gate(_context(PlanTier.FREE, status="canceled")) is None


def test_unlimited_plans_never_fail_on_counts() -> None:
    assert evaluate_plan_gate(_context(PlanTier.AGENCY, reports=10**6, members=500, sites=900)) is None
    assert evaluate_plan_gate(_context(PlanTier.TEAM, sites=10_000)) is None


def test_resolve_plan_tier_falls_back_to_free() -> None:
    assert resolve_plan_tier("Team") == PlanTier.TEAM
    assert resolve_plan_tier(None) == PlanTier.FREE
    assert resolve_plan_tier("enterprise") == PlanTier.FREE


async def test_personal_context_counts_own_sites() -> None:
    user, _ = await create_test_user()
    site = await create_test_site(user)
    await seed_reports(site, user, 4)

    async with SessionLocal() as session:
        context = await get_plan_context(session, None, user.id)

    assert context.team_id is None
    assert context.plan == PlanTier.FREE
    assert context.usage == PlanUsage(reports=4, members=1, sites=1)


async def test_enforce_plan_uses_first_membership() -> None:
    owner, _ = await create_test_user()
    team = await create_test_team(owner, plan="starter")

    async with SessionLocal() as session:
        context = await enforce_plan(session, owner.id)

    assert context.team_id == team.id
    assert context.plan == PlanTier.STARTER
    assert context.usage.members == 1


async def test_enforce_plan_rejects_inactive_paid_plan() -> None:
    owner, _ = await create_test_user()
    team = await create_test_team(owner, plan="team", status="past_due")

    async with SessionLocal() as session:
        with pytest.raises(PaymentRequiredError) as exc_info:
            await enforce_plan(session, owner.id, team.id)

    assert exc_info.value.status_code == 402


async def test_enforce_plan_reports_limit_details() -> None:
    owner, _ = await create_test_user()
    team = await create_test_team(owner)
    site = await create_test_site(owner, team_id=team.id)
    await seed_reports(site, owner, 50)

    async with SessionLocal() as session:
        with pytest.raises(PlanLimitError) as exc_info:
            await enforce_plan(session, owner.id, team.id)

    assert exc_info.value.status_code == 403
    assert exc_info.value.details == {"plan": "free", "resource": "reports", "limit": 50, "used": 50}
