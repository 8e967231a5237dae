from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.apps.api.deps import ensure_team_capability, get_current_user, get_db
from siteqa.core.errors import ValidationError
from siteqa.domain.models import User
from siteqa.persistence.repos import teams as teams_repo
from siteqa.services.auth.roles import Capability
from siteqa.services.billing import apply_webhook_event, create_checkout_session, verify_webhook


router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    team_id: str | None = None
    plan: str | None = None
    interval: str = "monthly"


@router.post("/checkout")
async def checkout(
    payload: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if not payload.team_id or not payload.plan:
        raise ValidationError("team_id and plan are required")
    await ensure_team_capability(
        db, team_id=payload.team_id, user_id=user.id, capability=Capability.MANAGE_BILLING
    )
    team = await teams_repo.get_team(db, payload.team_id)
    return await create_checkout_session(
        team_id=payload.team_id,
        plan=payload.plan,
        interval=payload.interval,
        customer_id=team.stripe_customer_id if team else None,
    )


@router.post("/webhook")
async def webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # Signature is computed over the raw body, so read it before any parsing.
    payload = await request.body()
    event = verify_webhook(payload, request.headers.get("Stripe-Signature"))
    applied = await apply_webhook_event(db, event)
    return {"received": True, "applied": applied}
