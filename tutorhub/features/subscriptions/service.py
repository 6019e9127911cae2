"""
Subscription service.

User-facing subscription operations built on the store, the limit evaluator
and the billing provider:
- read subscription / tier / usage / limit checks
- explicit subscribe and cancel
- refresh from the billing provider
- feature access and checkout/portal URLs
"""
import calendar
import logging
from datetime import datetime, timezone
from typing import List, Optional

from tutorhub.core.errors import ConflictError, NotFoundError, ProviderError, ValidationError
from tutorhub.features.billing.provider import BillingProvider, BillingProviderError
from tutorhub.features.limits.service import LimitEvaluator
from tutorhub.features.plans.catalog import PLAN_FEATURE_FLAGS, PlanCatalog
from tutorhub.features.plans.resolver import PlanResolver
from tutorhub.features.subscriptions.store import SubscriptionStore
from tutorhub.features.webhooks.events import parse_timestamp
from tutorhub.features.webhooks.ingestor import normalize_status
from tutorhub.models.plan import BillingInterval, Plan, Tier
from tutorhub.models.subscription import NewSubscription, Subscription, SubscriptionStatus
from tutorhub.models.usage import CompanionLimitCheck, SessionLimitCheck, UsageSnapshot
from tutorhub.models.user import User


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 month = Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end_for(plan: Plan, start: datetime) -> datetime:
    if plan.interval == BillingInterval.YEAR:
        return add_months(start, 12)
    return add_months(start, 1)


class SubscriptionService:
    def __init__(
        self,
        catalog: PlanCatalog,
        resolver: PlanResolver,
        store: SubscriptionStore,
        limits: LimitEvaluator,
        billing: Optional[BillingProvider] = None,
        app_url: str = "http://localhost:3000",
        logger: Optional[logging.Logger] = None,
    ):
        self.catalog = catalog
        self.resolver = resolver
        self.store = store
        self.limits = limits
        self.billing = billing
        self.app_url = app_url.rstrip("/")
        self.logger = logger or logging.getLogger("tutorhub")

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        return self.store.get_by_user(user_id)

    def get_tier(self, user_id: str) -> Tier:
        return self.limits.tier_for_user(user_id)

    def get_usage(self, user_id: str) -> UsageSnapshot:
        return self.limits.usage(user_id)

    def check_companion_limit(self, user_id: str) -> CompanionLimitCheck:
        return self.limits.check_companion_limit(user_id)

    def check_session_limit(self, user_id: str) -> SessionLimitCheck:
        return self.limits.check_session_limit(user_id)

    def list_plans(self) -> List[Plan]:
        return self.catalog.all()

    def subscribe(self, user_id: str, plan_id: str, now: Optional[datetime] = None) -> Subscription:
        """
        Start a subscription on a catalog plan.

        Raises:
            ValidationError: unknown plan id
            ConflictError: user already has an active subscription
        """
        plan = self.catalog.find_by_id(plan_id)
        if plan is None:
            raise ValidationError(f"Invalid subscription plan: {plan_id}")
        if self.store.get_by_user(user_id) is not None:
            raise ConflictError("User already has an active subscription")

        start = now or datetime.now(timezone.utc)
        subscription = self.store.create(NewSubscription(
            user_id=user_id,
            plan_id=plan.id,
            tier=plan.tier,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=start,
            current_period_end=period_end_for(plan, start),
        ))
        self.logger.info(
            "subscriptions.subscribed",
            extra={"user_id": user_id, "plan_id": plan.id, "subscription_id": subscription.id},
        )
        return subscription

    def cancel(self, user: User) -> Subscription:
        """Cancel with the provider (best effort), then locally."""
        if self.billing is not None:
            try:
                self.billing.cancel_subscription(user.clerk_id)
            except BillingProviderError:
                self.logger.exception("subscriptions.provider_cancel_failed", extra={"user_id": user.id})
        return self.store.cancel(user.id)

    def sync_from_provider(self, user: User) -> Optional[Subscription]:
        """
        Refresh the local subscription from the provider's record.

        Returns the updated subscription, or the current local one when the
        provider has nothing for this user.
        """
        if self.billing is None:
            raise ProviderError("Billing provider not configured", code="billing_disabled", status_code=501)
        try:
            remote = self.billing.get_subscription(user.clerk_id)
        except BillingProviderError as e:
            raise ProviderError(f"Failed to refresh subscription: {e}") from e

        if not remote:
            self.logger.info("subscriptions.sync_no_remote", extra={"user_id": user.id})
            return self.store.get_by_user(user.id)

        external_plan_id = remote.get("planId") or remote.get("plan_id")
        plan = self.resolver.resolve(external_plan_id)
        if plan is None:
            raise NotFoundError(f"No plan available for {external_plan_id}")

        start = parse_timestamp(remote.get("currentPeriodStart"), field="currentPeriodStart")
        end_raw = remote.get("currentPeriodEnd")
        end = parse_timestamp(end_raw, field="currentPeriodEnd") if end_raw else period_end_for(plan, start)
        subscription = self.store.upsert_for_user(user.id, {
            "plan_id": plan.id,
            "tier": plan.tier,
            "status": normalize_status(remote.get("status"), self.logger),
            "current_period_start": start,
            "current_period_end": end,
            "cancel_at_period_end": bool(remote.get("cancelAtPeriodEnd")),
        })
        self.logger.info(
            "subscriptions.synced",
            extra={"user_id": user.id, "plan_id": plan.id, "external_plan_id": external_plan_id},
        )
        return subscription

    def has_feature_access(self, user_id: str, feature: str) -> bool:
        subscription = self.store.get_by_user(user_id)
        if subscription is None or not subscription.is_current():
            return False
        return feature in PLAN_FEATURE_FLAGS.get(subscription.plan_id, ())

    def checkout_url(self, user: User, plan_id: str) -> str:
        plan = self.catalog.find_by_id(plan_id)
        if plan is None or not plan.external_plan_id:
            raise ValidationError("Invalid subscription plan or billing plan id not configured")
        if self.billing is None:
            raise ProviderError("Billing provider not configured", code="billing_disabled", status_code=501)
        return self.billing.create_checkout_url(
            user.clerk_id,
            plan.external_plan_id,
            success_url=f"{self.app_url}/dashboard?subscribed=true",
            cancel_url=f"{self.app_url}/pricing",
        )

    def portal_url(self, user: User) -> str:
        if self.billing is None:
            raise ProviderError("Billing provider not configured", code="billing_disabled", status_code=501)
        return self.billing.create_portal_url(user.clerk_id, return_url=f"{self.app_url}/dashboard")
