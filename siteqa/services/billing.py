from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json
import logging
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.config import Settings, get_settings
from siteqa.core.errors import UpstreamError, ValidationError
from siteqa.domain.enums import BillingInterval, PlanTier
from siteqa.domain.models import Subscription
from siteqa.persistence.repos import teams as teams_repo


logger = logging.getLogger(__name__)

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPSERT_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "subscription.created",
    "subscription.updated",
}
SUBSCRIPTION_DELETED_EVENTS = {"customer.subscription.deleted", "subscription.deleted"}

PAID_PLANS = (PlanTier.STARTER, PlanTier.TEAM, PlanTier.AGENCY)

# Stripe recurring interval names mapped onto ours.
_STRIPE_INTERVALS = {"month": BillingInterval.MONTHLY, "year": BillingInterval.YEARLY}


def price_id_for(settings: Settings, plan: PlanTier, interval: BillingInterval) -> str | None:
    return getattr(settings, f"stripe_price_{plan}_{interval}", None)


def plan_for_price_id(settings: Settings, price_id: str | None) -> tuple[PlanTier, BillingInterval] | None:
    if not price_id:
        return None
    for plan in PAID_PLANS:
        for interval in BillingInterval:
            if price_id_for(settings, plan, interval) == price_id:
                return plan, interval
    return None


def _parse_plan(value: Any) -> PlanTier | None:
    try:
        return PlanTier(str(value).strip().lower()) if value else None
    except ValueError:
        return None


def _parse_interval(value: Any) -> BillingInterval | None:
    if not value:
        return None
    raw = str(value).strip().lower()
    if raw in _STRIPE_INTERVALS:
        return _STRIPE_INTERVALS[raw]
    try:
        return BillingInterval(raw)
    except ValueError:
        return None


def _from_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


async def create_checkout_session(
    *, team_id: str, plan: str, interval: str, customer_id: str | None = None
) -> dict[str, str]:
    settings = get_settings()
    resolved_plan = _parse_plan(plan)
    if resolved_plan not in PAID_PLANS:
        raise ValidationError("plan must be one of starter, team or agency", plan=plan)
    resolved_interval = _parse_interval(interval)
    if resolved_interval is None:
        raise ValidationError("interval must be monthly or yearly", interval=interval)
    if not settings.stripe_secret_key:
        raise UpstreamError("STRIPE_SECRET_KEY is required for checkout")
    price_id = price_id_for(settings, resolved_plan, resolved_interval)
    if not price_id:
        raise UpstreamError("No Stripe price configured", plan=str(resolved_plan), interval=str(resolved_interval))

    metadata = {"team_id": team_id, "plan": str(resolved_plan), "interval": str(resolved_interval)}
    params: dict[str, Any] = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": settings.billing_success_url,
        "cancel_url": settings.billing_cancel_url,
        "client_reference_id": team_id,
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
    }
    if customer_id:
        params["customer"] = customer_id
    try:
        # The Stripe SDK is blocking; keep it off the event loop.
        checkout = await asyncio.to_thread(
            stripe.checkout.Session.create, api_key=settings.stripe_secret_key, **params
        )
    except stripe.StripeError as exc:
        logger.warning("stripe_checkout_failed team_id=%s", team_id, exc_info=True)
        raise UpstreamError("Billing provider rejected the checkout request") from exc
    logger.info("stripe_checkout_created team_id=%s plan=%s", team_id, resolved_plan)
    return {"url": checkout["url"], "session_id": checkout["id"]}


def verify_webhook(payload: bytes, signature: str | None) -> dict[str, Any]:
    """Verify the Stripe-Signature header and return the event as a plain dict."""
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise ValidationError("Webhook secret is not configured")
    if not signature:
        raise ValidationError("Missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except ValueError as exc:
        raise ValidationError("Invalid webhook payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise ValidationError("Invalid webhook signature") from exc
    return json.loads(payload)


async def _get_or_create_subscription(session: AsyncSession, team_id: str) -> Subscription:
    subscription = await teams_repo.get_subscription(session, team_id)
    if subscription is None:
        subscription = Subscription(team_id=team_id, plan=str(PlanTier.FREE), status="active")
        session.add(subscription)
    return subscription


def _first_price(obj: dict[str, Any]) -> dict[str, Any]:
    items = (obj.get("items") or {}).get("data") or []
    if not items:
        return {}
    return items[0] or {}


async def apply_webhook_event(session: AsyncSession, event: dict[str, Any]) -> bool:
    """Sync a verified event into the team's subscription cache.

    Returns False for events that are acknowledged but not applied.
    """
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    team_id = metadata.get("team_id") or obj.get("client_reference_id")
    if event_type not in SUBSCRIPTION_UPSERT_EVENTS | SUBSCRIPTION_DELETED_EVENTS | {EVENT_CHECKOUT_COMPLETED}:
        logger.info("stripe_event_ignored type=%s", event_type)
        return False
    if not team_id:
        logger.warning("stripe_event_missing_team type=%s event_id=%s", event_type, event.get("id"))
        return False
    team = await teams_repo.get_team(session, team_id)
    if team is None:
        logger.warning("stripe_event_unknown_team type=%s team_id=%s", event_type, team_id)
        return False

    settings = get_settings()
    subscription = await _get_or_create_subscription(session, team_id)
    customer_id = obj.get("customer")

    if event_type == EVENT_CHECKOUT_COMPLETED:
        subscription.plan = str(_parse_plan(metadata.get("plan")) or subscription.plan)
        interval = _parse_interval(metadata.get("interval"))
        if interval is not None:
            subscription.interval = str(interval)
        subscription.status = "active"
        subscription.stripe_subscription_id = obj.get("subscription") or subscription.stripe_subscription_id
    elif event_type in SUBSCRIPTION_DELETED_EVENTS:
        subscription.status = "canceled"
        subscription.plan = str(PlanTier.FREE)
    else:
        item = _first_price(obj)
        price = item.get("price") or {}
        price_id = price.get("id")
        from_price = plan_for_price_id(settings, price_id)
        plan = _parse_plan(metadata.get("plan")) or (from_price[0] if from_price else None)
        interval = _parse_interval((price.get("recurring") or {}).get("interval")) or (
            from_price[1] if from_price else None
        )
        if plan is not None:
            subscription.plan = str(plan)
        if interval is not None:
            subscription.interval = str(interval)
        subscription.status = str(obj.get("status") or subscription.status)
        subscription.stripe_subscription_id = obj.get("id") or subscription.stripe_subscription_id
        subscription.stripe_price_id = price_id or subscription.stripe_price_id
        subscription.trial_ends_at = _from_timestamp(obj.get("trial_end"))
        period_end = obj.get("current_period_end") or item.get("current_period_end")
        subscription.current_period_end = _from_timestamp(period_end) or subscription.current_period_end

    if customer_id:
        subscription.stripe_customer_id = customer_id
        team.stripe_customer_id = customer_id
    team.plan = subscription.plan
    await session.commit()
    logger.info(
        "stripe_event_applied type=%s team_id=%s plan=%s status=%s",
        event_type,
        team_id,
        subscription.plan,
        subscription.status,
    )
    return True
