# tutorhub/conftest.py
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import insert
from svix.webhooks import Webhook

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tutorhub.core.config import Settings
from tutorhub.core.database import build_engine, build_session_factory, create_all_tables, users, utcnow
from tutorhub.features.limits.service import LimitEvaluator
from tutorhub.features.plans.catalog import get_catalog
from tutorhub.features.plans.resolver import PlanResolver
from tutorhub.features.subscriptions.store import SubscriptionStore
from tutorhub.features.usage.service import UsageCounter
from tutorhub.features.users.service import UserService

from tutorhub.tests.mocks import WEBHOOK_SECRET


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite:///:memory:")
    create_all_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def catalog():
    return get_catalog()


@pytest.fixture
def resolver(catalog):
    return PlanResolver(catalog)


@pytest.fixture
def store(session_factory):
    return SubscriptionStore(session_factory)


@pytest.fixture
def user_service(session_factory):
    return UserService(session_factory)


@pytest.fixture
def usage_counter(session_factory):
    return UsageCounter(session_factory, tz_name="UTC")


@pytest.fixture
def limits(usage_counter, store):
    return LimitEvaluator(usage_counter, store)


@pytest.fixture
def make_user(session_factory):
    """Insert a user row directly and return its internal id."""
    def _make(user_id: str, clerk_id: str = None, **fields) -> str:
        now = utcnow()
        with session_factory() as session:
            session.execute(insert(users).values(
                id=user_id,
                clerk_id=clerk_id or f"clerk_{user_id}",
                created_at=now,
                updated_at=now,
                **fields,
            ))
            session.commit()
        return user_id
    return _make


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL="sqlite:///:memory:",
        CLERK_SECRET_KEY="sk_test_secret",
        CLERK_WEBHOOK_SECRET=WEBHOOK_SECRET,
        APP_URL="http://app.test",
    )


@pytest.fixture
def signed_webhook():
    """Build (headers, body) for a payload signed with the test secret."""
    def _sign(body: bytes, msg_id: str = "msg_test_1", timestamp: int = None, secret: str = WEBHOOK_SECRET):
        ts = int(time.time()) if timestamp is None else timestamp
        headers = {
            "svix-id": msg_id,
            "svix-timestamp": str(ts),
            "svix-signature": Webhook(secret).sign(
                msg_id, datetime.fromtimestamp(ts, tz=timezone.utc), body.decode()
            ),
            "content-type": "application/json",
        }
        return headers, body
    return _sign
