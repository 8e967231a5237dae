from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.errors import PaymentRequiredError, PlanLimitError
from siteqa.domain.enums import PlanTier
from siteqa.persistence.repos import sites as sites_repo
from siteqa.persistence.repos import teams as teams_repo


logger = logging.getLogger(__name__)

RESOURCE_REPORTS = "reports"
RESOURCE_MEMBERS = "members"
RESOURCE_SITES = "sites"

FAILURE_PAYMENT_REQUIRED = "payment_required"
FAILURE_LIMIT_REACHED = "limit_reached"

ACTIVE_STATUS = "active"


@dataclass(frozen=True)
class PlanLimits:
    # None means the resource is unlimited on the plan.
    reports: int | None
    members: int | None
    sites: int | None


@dataclass(frozen=True)
class PlanUsage:
    reports: int
    members: int
    sites: int


# Fixed ceilings per tier; the only table consulted for enforcement.
PLAN_LIMITS: dict[PlanTier, PlanLimits] = {
    PlanTier.FREE: PlanLimits(reports=50, members=3, sites=3),
    PlanTier.STARTER: PlanLimits(reports=1000, members=10, sites=5),
    PlanTier.TEAM: PlanLimits(reports=5000, members=50, sites=None),
    PlanTier.AGENCY: PlanLimits(reports=None, members=None, sites=None),
}


@dataclass(frozen=True)
class PlanContext:
    team_id: str | None
    plan: PlanTier
    status: str
    limits: PlanLimits
    usage: PlanUsage

    def as_dict(self) -> dict[str, Any]:
        return {
            "team_id": self.team_id,
            "plan": str(self.plan),
            "status": self.status,
            "limits": asdict(self.limits),
            "usage": asdict(self.usage),
        }


@dataclass(frozen=True)
class PlanGateFailure:
    kind: str
    message: str
    resource: str | None = None
    limit: int | None = None
    used: int | None = None


def resolve_plan_tier(value: str | None) -> PlanTier:
    # Unknown labels fall back to the most restrictive tier.
    try:
        return PlanTier((value or PlanTier.FREE).strip().lower())
    except ValueError:
        logger.warning("plan_label_unknown plan=%s", value)
        return PlanTier.FREE


async def resolve_team_id(
    session: AsyncSession, user_id: str, team_id: str | None = None
) -> str | None:
    # Explicit team wins; otherwise the user's oldest membership, if any.
    if team_id:
        return team_id
    memberships = await teams_repo.list_memberships_for_user(session, user_id)
    if not memberships:
        return None
    return memberships[0].team_id


async def get_plan_context(
    session: AsyncSession, team_id: str | None, user_id: str
) -> PlanContext:
    # Usage is recomputed on every call; nothing is cached across requests.
    if team_id is None:
        usage = PlanUsage(
            reports=await sites_repo.count_personal_reports(session, user_id),
            members=1,
            sites=await sites_repo.count_personal_sites(session, user_id),
        )
        return PlanContext(
            team_id=None,
            plan=PlanTier.FREE,
            status=ACTIVE_STATUS,
            limits=PLAN_LIMITS[PlanTier.FREE],
            usage=usage,
        )

    subscription = await teams_repo.get_subscription(session, team_id)
    if subscription is None:
        plan = PlanTier.FREE
        status = ACTIVE_STATUS
    else:
        plan = resolve_plan_tier(subscription.plan)
        status = (subscription.status or "").strip().lower()
    usage = PlanUsage(
        reports=await sites_repo.count_team_reports(session, team_id),
        members=await teams_repo.count_members(session, team_id),
        sites=await sites_repo.count_team_sites(session, team_id),
    )
    return PlanContext(
        team_id=team_id,
        plan=plan,
        status=status,
        limits=PLAN_LIMITS[plan],
        usage=usage,
    )


def _limit_failure(resource: str, limit: int, used: int) -> PlanGateFailure:
    return PlanGateFailure(
        kind=FAILURE_LIMIT_REACHED,
        message=f"Plan limit reached for {resource}",
        resource=resource,
        limit=limit,
        used=used,
    )


def evaluate_plan_gate(context: PlanContext) -> PlanGateFailure | None:
    """Return the first failing check for the context, or None when it passes.

    Order is fixed: payment status, reports, members, sites. Members fail only
    when the count is strictly above the ceiling while reports and sites fail
    once the count reaches it.
    """
    if context.plan != PlanTier.FREE and context.status != ACTIVE_STATUS:
        return PlanGateFailure(
            kind=FAILURE_PAYMENT_REQUIRED,
            message="An active subscription is required for this plan",
        )
    limits = context.limits
    usage = context.usage
    if limits.reports is not None and usage.reports >= limits.reports:
        return _limit_failure(RESOURCE_REPORTS, limits.reports, usage.reports)
    if limits.members is not None and usage.members > limits.members:
        return _limit_failure(RESOURCE_MEMBERS, limits.members, usage.members)
    if limits.sites is not None and usage.sites >= limits.sites:
        return _limit_failure(RESOURCE_SITES, limits.sites, usage.sites)
    return None


async def enforce_plan(
    session: AsyncSession, user_id: str, team_id: str | None = None
) -> PlanContext:
    # Check-then-act: concurrent callers near a ceiling may both pass.
    resolved_team_id = await resolve_team_id(session, user_id, team_id)
    context = await get_plan_context(session, resolved_team_id, user_id)
    failure = evaluate_plan_gate(context)
    if failure is None:
        return context
    logger.info(
        "plan_gate_rejected team_id=%s plan=%s kind=%s resource=%s",
        resolved_team_id,
        context.plan,
        failure.kind,
        failure.resource,
    )
    if failure.kind == FAILURE_PAYMENT_REQUIRED:
        raise PaymentRequiredError(failure.message, plan=str(context.plan), status=context.status)
    raise PlanLimitError(
        failure.message,
        plan=str(context.plan),
        resource=failure.resource,
        limit=failure.limit,
        used=failure.used,
    )
