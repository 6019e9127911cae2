"""
Webhook ingestion tests: dispatch, idempotency and failure policy.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy import func, select

from tutorhub.core.database import user_subscriptions
from tutorhub.core.errors import AuthenticationError, PersistenceError, WebhookProcessingError
from tutorhub.features.webhooks.ingestor import IngestState, WebhookIngestor, normalize_status
from tutorhub.features.webhooks.verifier import WebhookVerifier
from tutorhub.models.plan import Tier
from tutorhub.models.subscription import SubscriptionStatus
from tutorhub.tests.mocks import WEBHOOK_SECRET

PERIOD_START_MS = 1717243200000  # 2024-06-01T12:00:00Z
PERIOD_END_MS = 1719835200000    # 2024-07-01T12:00:00Z
FUTURE_PERIOD_END_MS = 4102444799000  # 2099-12-31T23:59:59Z


@pytest.fixture
def ingestor(resolver, store, user_service):
    return WebhookIngestor(WebhookVerifier(WEBHOOK_SECRET), resolver, store, user_service)


def _body(event_type, **data):
    return json.dumps({"type": event_type, "data": data}).encode()


def _subscription_data(clerk_id="clerk_u1", plan="core_learner", status="active", **extra):
    data = {
        "id": "sub_1",
        "status": status,
        "payer": {"user_id": clerk_id},
        "items": [{"status": "active", "plan": {"id": plan}}],
        "current_period_start": PERIOD_START_MS,
        "current_period_end": PERIOD_END_MS,
    }
    data.update(extra)
    return data


def _count(session_factory):
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(user_subscriptions)).scalar()


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("active", SubscriptionStatus.ACTIVE),
        ("upcoming", SubscriptionStatus.ACTIVE),
        ("canceled", SubscriptionStatus.CANCELLED),
        ("Ended", SubscriptionStatus.CANCELLED),
        ("past_due", SubscriptionStatus.PAST_DUE),
        (None, SubscriptionStatus.ACTIVE),
        ("mystery", SubscriptionStatus.ACTIVE),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_subscription_created_applies_resolved_plan(ingestor, store, make_user, signed_webhook):
    make_user("u1")
    receipt = ingestor.ingest(*signed_webhook(_body("subscription.created", **_subscription_data())))

    assert receipt.handled is True
    assert receipt.state == IngestState.ACKNOWLEDGED
    sub = store.get_by_user("u1")
    assert sub.plan_id == "core-learner"
    assert sub.tier == Tier.BASIC
    assert sub.billing_subscription_id == "sub_1"
    assert sub.current_period_start == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    assert sub.current_period_end == datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


def test_duplicate_created_delivery_leaves_one_row(ingestor, store, session_factory, make_user, signed_webhook):
    make_user("u1")
    ingestor.ingest(*signed_webhook(_body("subscription.created", **_subscription_data())))
    ingestor.ingest(*signed_webhook(
        _body("subscription.created", **_subscription_data(plan="pro")),
        msg_id="msg_test_2",
    ))

    assert _count(session_factory) == 1
    sub = store.get_by_user("u1")
    assert sub.plan_id == "pro"
    assert sub.tier == Tier.PRO


def test_malformed_period_end_stored_as_now(ingestor, store, make_user, signed_webhook):
    make_user("u1")
    before = datetime.now(timezone.utc)
    data = _subscription_data(current_period_end="not-a-timestamp")
    ingestor.ingest(*signed_webhook(_body("subscription.created", **data)))
    after = datetime.now(timezone.utc)

    sub = store.get_by_user("u1")
    assert before - timedelta(seconds=1) <= sub.current_period_end <= after + timedelta(seconds=1)


def test_updated_event_changes_existing_row(ingestor, store, make_user, signed_webhook):
    make_user("u1")
    ingestor.ingest(*signed_webhook(_body("subscription.created", **_subscription_data())))
    ingestor.ingest(*signed_webhook(
        _body("subscription.updated", **_subscription_data(plan="pro_annual_v2", cancel_at_period_end=True)),
        msg_id="msg_test_2",
    ))
    sub = store.get_by_user("u1")
    assert sub.plan_id == "pro"
    assert sub.cancel_at_period_end is True


def test_cancel_event_soft_cancels(ingestor, store, make_user, signed_webhook):
    make_user("u1")
    ingestor.ingest(*signed_webhook(_body("subscription.created", **_subscription_data())))
    receipt = ingestor.ingest(*signed_webhook(
        _body("subscription.canceled", user_id="clerk_u1"), msg_id="msg_test_2"
    ))
    assert receipt.handled is True
    assert store.get_by_user("u1") is None
    latest = store.get_latest_by_user("u1")
    assert latest.status == SubscriptionStatus.CANCELLED
    assert latest.plan_id == "core-learner"


def test_cancel_without_active_subscription_is_acknowledged(ingestor, make_user, signed_webhook, caplog):
    make_user("u1")
    with caplog.at_level(logging.ERROR, logger="tutorhub"):
        receipt = ingestor.ingest(*signed_webhook(_body("subscription.cancelled", user_id="clerk_u1")))
    assert receipt.handled is False
    assert receipt.state == IngestState.ACKNOWLEDGED
    assert any(r.getMessage() == "webhook.handler_failed" for r in caplog.records)


def test_created_for_unknown_user_is_acknowledged(ingestor, session_factory, signed_webhook):
    receipt = ingestor.ingest(*signed_webhook(_body("subscription.created", **_subscription_data("ghost"))))
    assert receipt.handled is False
    assert _count(session_factory) == 0


def test_updated_failure_requests_retry(resolver, user_service, make_user, signed_webhook):
    make_user("u1")
    failing_store = Mock()
    failing_store.upsert_for_user.side_effect = PersistenceError("db down")
    ingestor = WebhookIngestor(WebhookVerifier(WEBHOOK_SECRET), resolver, failing_store, user_service)

    with pytest.raises(WebhookProcessingError) as exc_info:
        ingestor.ingest(*signed_webhook(_body("subscription.updated", **_subscription_data())))
    assert exc_info.value.status_code == 500


def test_updated_for_unknown_user_requests_retry(ingestor, signed_webhook):
    with pytest.raises(WebhookProcessingError):
        ingestor.ingest(*signed_webhook(_body("subscription.updated", **_subscription_data("ghost"))))


def test_unknown_event_is_acknowledged(ingestor, signed_webhook):
    receipt = ingestor.ingest(*signed_webhook(_body("email.created", id="e1")))
    assert receipt.event_type == "email.created"
    assert receipt.handled is False


def test_user_updated_merges_profile(ingestor, user_service, make_user, signed_webhook):
    make_user("u1", email="old@example.com", name="Old Name", image_url="http://img/old.png")
    ingestor.ingest(*signed_webhook(_body(
        "user.updated",
        id="clerk_u1",
        first_name="New",
        last_name="Name",
        email_addresses=[],
    )))
    user = user_service.get_by_id("u1")
    assert user.name == "New Name"
    assert user.email == "old@example.com"
    assert user.image_url == "http://img/old.png"


def test_bad_signature_rejected_before_any_write(ingestor, session_factory, make_user, signed_webhook, caplog):
    make_user("u1")
    headers, body = signed_webhook(_body("subscription.created", **_subscription_data()))
    headers["svix-signature"] = "v1,AAAA"
    with caplog.at_level(logging.INFO, logger="tutorhub"):
        with pytest.raises(AuthenticationError):
            ingestor.ingest(headers, body)
    assert _count(session_factory) == 0
    states = [r.state for r in caplog.records if r.getMessage() == "webhook.state"]
    assert states == ["received", "rejected"]


def test_state_transitions_logged(ingestor, signed_webhook, caplog):
    with caplog.at_level(logging.INFO, logger="tutorhub"):
        ingestor.ingest(*signed_webhook(_body("user.created", id="clerk_new")))
    states = [r.state for r in caplog.records if r.getMessage() == "webhook.state"]
    assert states == ["received", "verified", "dispatched", "acknowledged"]


def test_unknown_event_with_list_data_is_acknowledged(ingestor, signed_webhook):
    body = json.dumps({"type": "paymentAttempt.created", "data": ["x"]}).encode()
    receipt = ingestor.ingest(*signed_webhook(body))
    assert receipt.handled is False
    assert receipt.state == IngestState.ACKNOWLEDGED


def test_pro_annual_plan_unlocks_unlimited_usage(ingestor, limits, make_user, signed_webhook):
    make_user("u1")
    data = _subscription_data(plan="pro_annual_v2", current_period_end=FUTURE_PERIOD_END_MS)
    ingestor.ingest(*signed_webhook(_body("subscription.created", **data)))

    assert limits.tier_for_user("u1") == Tier.PRO
    usage = limits.usage("u1")
    assert usage.companion_limit == -1
    assert usage.session_limit == -1
    assert usage.can_create_companion is True
    assert usage.can_start_session is True
