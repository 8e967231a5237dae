from __future__ import annotations

import asyncio
import json
import time

import pytest
import stripe

from siteqa.core.config import get_settings
from siteqa.core.errors import UpstreamError, ValidationError
from siteqa.domain.enums import BillingInterval, PlanTier
from siteqa.persistence.db import SessionLocal
from siteqa.persistence.repos import teams as teams_repo
from siteqa.services.billing import (
    apply_webhook_event,
    create_checkout_session,
    plan_for_price_id,
    price_id_for,
    verify_webhook,
)
from siteqa.tests.utils.auth import create_test_team, create_test_user
from siteqa.tests.utils.billing import stripe_signature


def test_price_mapping_round_trip() -> None:
    settings = get_settings()
    assert price_id_for(settings, PlanTier.TEAM, BillingInterval.YEARLY) == "price_team_yearly"
    assert plan_for_price_id(settings, "price_starter_monthly") == (PlanTier.STARTER, BillingInterval.MONTHLY)
    assert plan_for_price_id(settings, "price_unknown") is None


def test_verify_webhook_accepts_valid_signature() -> None:
    payload = json.dumps({"id": "evt_1", "type": "customer.subscription.updated"}).encode("utf-8")
    event = verify_webhook(payload, stripe_signature(payload))
    assert event["id"] == "evt_1"


@pytest.mark.parametrize(
    "signature",
    [None, "", "t=1,v1=deadbeef"],
)
def test_verify_webhook_rejects_bad_signature(signature) -> None:
    payload = b'{"id": "evt_1"}'
    with pytest.raises(ValidationError) as exc_info:
        verify_webhook(payload, signature)
    assert exc_info.value.status_code == 400


def test_verify_webhook_rejects_other_secret() -> None:
    payload = b'{"id": "evt_1"}'
    with pytest.raises(ValidationError):
        verify_webhook(payload, stripe_signature(payload, secret="whsec_other"))


async def test_subscription_update_syncs_team() -> None:
    owner, _ = await create_test_user()
    team = await create_test_team(owner)
    event = {
        "id": "evt_2",
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_123",
                "customer": "cus_123",
                "status": "active",
                "metadata": {"team_id": team.id},
                "current_period_end": 1893456000,
                "items": {
                    "data": [
                        {"price": {"id": "price_team_yearly", "recurring": {"interval": "year"}}}
                    ]
                },
            }
        },
    }

    async with SessionLocal() as session:
        assert await apply_webhook_event(session, event) is True

    async with SessionLocal() as session:
        subscription = await teams_repo.get_subscription(session, team.id)
        stored_team = await teams_repo.get_team(session, team.id)
    assert subscription.plan == "team"
    assert subscription.interval == "yearly"
    assert subscription.status == "active"
    assert subscription.stripe_subscription_id == "sub_123"
    assert subscription.stripe_price_id == "price_team_yearly"
    assert subscription.current_period_end is not None
    assert stored_team.plan == "team"
    assert stored_team.stripe_customer_id == "cus_123"


async def test_subscription_deleted_reverts_to_free() -> None:
    owner, _ = await create_test_user()
    team = await create_test_team(owner, plan="agency")
    event = {
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_9", "metadata": {"team_id": team.id}}},
    }

    async with SessionLocal() as session:
        assert await apply_webhook_event(session, event) is True
    async with SessionLocal() as session:
        subscription = await teams_repo.get_subscription(session, team.id)
        stored_team = await teams_repo.get_team(session, team.id)
    assert (subscription.plan, subscription.status) == ("free", "canceled")
    assert stored_team.plan == "free"


async def test_unrelated_or_unroutable_events_are_ignored() -> None:
    async with SessionLocal() as session:
        assert await apply_webhook_event(session, {"type": "invoice.paid", "data": {"object": {}}}) is False
        assert (
            await apply_webhook_event(
                session,
                {"type": "customer.subscription.updated", "data": {"object": {"metadata": {"team_id": "nope"}}}},
            )
            is False
        )


async def test_checkout_session_uses_configured_price(monkeypatch) -> None:
    calls: list[dict] = []

    def fake_create(**params):
        calls.append(params)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    result = await create_checkout_session(team_id="team-1", plan="Starter", interval="yearly", customer_id="cus_1")

    assert result == {"url": "https://checkout.stripe.test/cs_test_1", "session_id": "cs_test_1"}
    assert calls[0]["line_items"] == [{"price": "price_starter_yearly", "quantity": 1}]
    assert calls[0]["customer"] == "cus_1"
    assert calls[0]["metadata"]["team_id"] == "team-1"
    assert calls[0]["api_key"] == "sk_test_siteqa"


async def test_checkout_rejects_free_plan_and_provider_errors(monkeypatch) -> None:
    with pytest.raises(ValidationError):
        await create_checkout_session(team_id="team-1", plan="free", interval="monthly")

    def failing_create(**params):
        raise stripe.InvalidRequestError("No such price", param="price")

    monkeypatch.setattr(stripe.checkout.Session, "create", failing_create)
    with pytest.raises(UpstreamError):
        await create_checkout_session(team_id="team-1", plan="team", interval="monthly")


async def test_checkout_does_not_block_event_loop(monkeypatch) -> None:
    def slow_create(**params):
        time.sleep(0.3)
        return {"id": "cs_slow", "url": "https://checkout.stripe.test/cs_slow"}

    monkeypatch.setattr(stripe.checkout.Session, "create", slow_create)
    ticks = 0
    done = asyncio.Event()

    async def ticker() -> None:
        nonlocal ticks
        while not done.is_set():
            await asyncio.sleep(0.02)
            ticks += 1

    ticking = asyncio.create_task(ticker())
    try:
        result = await create_checkout_session(team_id="team-1", plan="team", interval="monthly")
    finally:
        done.set()
        await ticking

    assert result["session_id"] == "cs_slow"
    # The loop kept running while the SDK call was in flight.
    assert ticks >= 3
