"""
Subscription store tests (in-memory SQLite).
"""
from datetime import datetime, timedelta, timezone

import pytest

from tutorhub.core.errors import NotFoundError, PersistenceError, ValidationError
from tutorhub.models.plan import Tier
from tutorhub.models.subscription import NewSubscription, SubscriptionStatus


def _new(user_id, plan_id="basic", tier=Tier.BASIC, status=SubscriptionStatus.ACTIVE, days=30):
    start = datetime.now(timezone.utc)
    return NewSubscription(
        user_id=user_id,
        plan_id=plan_id,
        tier=tier,
        status=status,
        current_period_start=start,
        current_period_end=start + timedelta(days=days),
    )


def test_create_and_get_by_user(store, make_user):
    make_user("u1")
    created = store.create(_new("u1"))
    fetched = store.get_by_user("u1")
    assert fetched.id == created.id
    assert fetched.tier == Tier.BASIC
    assert fetched.current_period_end.tzinfo is not None


def test_get_by_user_none_when_missing(store):
    assert store.get_by_user("nobody") is None
    assert store.get_latest_by_user("nobody") is None


def test_second_active_subscription_rejected(store, make_user):
    make_user("u1")
    store.create(_new("u1"))
    with pytest.raises(PersistenceError):
        store.create(_new("u1", plan_id="pro", tier=Tier.PRO))


def test_cancelled_row_does_not_block_new_active(store, make_user):
    make_user("u1")
    store.create(_new("u1"))
    store.cancel("u1")
    replacement = store.create(_new("u1", plan_id="pro", tier=Tier.PRO))
    assert store.get_by_user("u1").id == replacement.id


def test_update_partial_fields(store, make_user):
    make_user("u1")
    created = store.create(_new("u1"))
    updated = store.update(created.id, plan_id="pro", tier=Tier.PRO)
    assert updated.plan_id == "pro"
    assert updated.tier == Tier.PRO
    assert updated.status == SubscriptionStatus.ACTIVE
    assert updated.current_period_end == created.current_period_end


def test_update_unknown_id_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.update("missing", plan_id="pro")


def test_update_rejects_unknown_fields(store, make_user):
    make_user("u1")
    created = store.create(_new("u1"))
    with pytest.raises(ValidationError):
        store.update(created.id, colour="blue")


def test_cancel_without_active_subscription_raises(store, make_user):
    make_user("u1")
    with pytest.raises(NotFoundError):
        store.cancel("u1")


def test_cancel_keeps_tier_and_plan(store, make_user):
    make_user("u1")
    created = store.create(_new("u1", plan_id="pro", tier=Tier.PRO))
    cancelled = store.cancel("u1")
    assert cancelled.id == created.id
    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.cancel_at_period_end is True
    assert cancelled.tier == Tier.PRO
    assert cancelled.plan_id == "pro"
    assert store.get_by_user("u1") is None
    assert store.get_latest_by_user("u1").id == created.id


def test_upsert_creates_then_updates_single_row(store, make_user, session_factory):
    from sqlalchemy import func, select
    from tutorhub.core.database import user_subscriptions

    make_user("u1")
    start = datetime.now(timezone.utc)
    fields = {
        "plan_id": "basic",
        "tier": Tier.BASIC,
        "status": SubscriptionStatus.ACTIVE,
        "current_period_start": start,
        "current_period_end": start + timedelta(days=30),
    }
    first = store.upsert_for_user("u1", fields)
    second = store.upsert_for_user("u1", {**fields, "plan_id": "pro", "tier": Tier.PRO})

    assert first.id == second.id
    assert second.plan_id == "pro"
    with session_factory() as session:
        count = session.execute(select(func.count()).select_from(user_subscriptions)).scalar()
    assert count == 1


def test_store_failure_surfaces_as_persistence_error(store, engine):
    from tutorhub.core.database import drop_all_tables
    drop_all_tables(engine)
    with pytest.raises(PersistenceError):
        store.get_by_user("u1")


def test_upsert_falls_back_to_update_when_insert_races(store, make_user, monkeypatch):
    make_user("u1")
    existing = store.create(_new("u1"))
    real_latest = store.get_latest_by_user
    calls = []

    def latest_after_race(user_id):
        # First lookup runs before the other delivery's insert is visible
        calls.append(user_id)
        return None if len(calls) == 1 else real_latest(user_id)

    monkeypatch.setattr(store, "get_latest_by_user", latest_after_race)
    start = datetime.now(timezone.utc)
    result = store.upsert_for_user("u1", {
        "plan_id": "pro",
        "tier": Tier.PRO,
        "status": SubscriptionStatus.ACTIVE,
        "current_period_start": start,
        "current_period_end": start + timedelta(days=30),
    })

    assert result.id == existing.id
    assert result.plan_id == "pro"
    assert len(calls) == 2
