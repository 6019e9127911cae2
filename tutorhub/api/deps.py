"""
Service wiring for the API layer.

`get_services()` builds every component once from settings and the global
session factory. Tests replace it through `app.dependency_overrides`.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from tutorhub.core.auth import get_current_clerk_id
from tutorhub.core.config import Settings, settings
from tutorhub.core.database import get_session_factory
from tutorhub.features.billing.clerk_provider import ClerkBillingProvider
from tutorhub.features.billing.provider import BillingProvider, BillingProviderError
from tutorhub.features.companions.service import CompanionService
from tutorhub.features.limits.service import LimitEvaluator
from tutorhub.features.plans.catalog import PlanCatalog, get_catalog
from tutorhub.features.plans.resolver import PlanResolver
from tutorhub.features.sessions.service import LearningSessionService
from tutorhub.features.subscriptions.service import SubscriptionService
from tutorhub.features.subscriptions.store import SubscriptionStore
from tutorhub.features.usage.service import UsageCounter
from tutorhub.features.users.service import UserService
from tutorhub.features.voice.provider import VoiceProvider, VoiceProviderError
from tutorhub.features.voice.vapi_provider import VapiProvider
from tutorhub.features.webhooks.ingestor import WebhookIngestor
from tutorhub.features.webhooks.verifier import WebhookVerifier
from tutorhub.models.user import User


@dataclass
class Services:
    catalog: PlanCatalog
    resolver: PlanResolver
    users: UserService
    subscriptions_store: SubscriptionStore
    usage: UsageCounter
    limits: LimitEvaluator
    subscriptions: SubscriptionService
    companions: CompanionService
    sessions: LearningSessionService
    webhooks: WebhookIngestor
    verifier: WebhookVerifier


def build_services(
    session_factory,
    cfg: Settings = settings,
    catalog: Optional[PlanCatalog] = None,
    billing: Optional[BillingProvider] = None,
    voice: Optional[VoiceProvider] = None,
    logger: Optional[logging.Logger] = None,
) -> Services:
    logger = logger or logging.getLogger("tutorhub")
    catalog = catalog or get_catalog()
    resolver = PlanResolver(catalog, logger=logger)
    users = UserService(session_factory, logger=logger)
    store = SubscriptionStore(session_factory, logger=logger)
    usage = UsageCounter(session_factory, tz_name=cfg.APP_TIMEZONE)
    limits = LimitEvaluator(usage, store, logger=logger)
    companions = CompanionService(session_factory, limits, voice=voice, logger=logger)
    verifier = WebhookVerifier(cfg.CLERK_WEBHOOK_SECRET)
    return Services(
        catalog=catalog,
        resolver=resolver,
        users=users,
        subscriptions_store=store,
        usage=usage,
        limits=limits,
        subscriptions=SubscriptionService(
            catalog, resolver, store, limits, billing=billing, app_url=cfg.APP_URL, logger=logger
        ),
        companions=companions,
        sessions=LearningSessionService(session_factory, companions, limits, usage, voice=voice, logger=logger),
        webhooks=WebhookIngestor(verifier, resolver, store, users, logger=logger),
        verifier=verifier,
    )


def _billing_from_settings(cfg: Settings) -> Optional[BillingProvider]:
    if not cfg.CLERK_SECRET_KEY:
        return None
    try:
        return ClerkBillingProvider(secret_key=cfg.CLERK_SECRET_KEY, api_url=cfg.CLERK_API_URL, app_url=cfg.APP_URL)
    except BillingProviderError:
        return None


def _voice_from_settings(cfg: Settings) -> Optional[VoiceProvider]:
    if not cfg.VAPI_API_KEY:
        return None
    try:
        return VapiProvider(api_key=cfg.VAPI_API_KEY, base_url=cfg.VAPI_BASE_URL)
    except VoiceProviderError:
        return None


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(
        get_session_factory(),
        settings,
        billing=_billing_from_settings(settings),
        voice=_voice_from_settings(settings),
    )


def get_current_user(
    clerk_id: str = Depends(get_current_clerk_id),
    services: Services = Depends(get_services),
) -> User:
    """Authenticated local user, provisioned on first request."""
    return services.users.get_or_create(clerk_id)
