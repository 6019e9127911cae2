"""
Tier-based limit evaluation.

Combines the user's current tier, the canonical tier limits and live usage
counts into allow/deny decisions with upgrade prompts. Store failures degrade
to a permissive answer so a database hiccup never locks users out.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from tutorhub.core.errors import PersistenceError
from tutorhub.core.logging import log_event
from tutorhub.features.plans.catalog import tier_limits
from tutorhub.features.subscriptions.store import SubscriptionStore
from tutorhub.features.usage.service import UsageCounter
from tutorhub.models.plan import Tier, UNLIMITED
from tutorhub.models.usage import (
    CompanionLimitCheck,
    SessionLimitCheck,
    UpgradePrompt,
    UsageSnapshot,
)

COMPANION_FEATURE = "Create More Companions"
SESSION_FEATURE = "Start More Sessions"


def within_limit(used: int, limit: int) -> bool:
    return limit == UNLIMITED or used < limit


def can_create_companion(used: int, limit: int) -> bool:
    return within_limit(used, limit)


def can_start_session(used: int, limit: int) -> bool:
    return within_limit(used, limit)


def upgrade_tier_for(tier: Tier) -> Tier:
    """Next tier to suggest. PRO and ENTERPRISE point at PRO."""
    if tier == Tier.FREE:
        return Tier.BASIC
    return Tier.PRO


class LimitEvaluator:
    def __init__(
        self,
        usage_counter: UsageCounter,
        subscription_store: SubscriptionStore,
        logger: Optional[logging.Logger] = None,
    ):
        self.usage_counter = usage_counter
        self.subscription_store = subscription_store
        self.logger = logger or logging.getLogger("tutorhub")

    def tier_for_user(self, user_id: str, now: Optional[datetime] = None) -> Tier:
        """FREE unless the user holds an active subscription whose period has not ended."""
        now = now or datetime.now(timezone.utc)
        try:
            subscription = self.subscription_store.get_by_user(user_id)
        except PersistenceError:
            self.logger.exception("limits.tier_lookup_failed", extra={"user_id": user_id})
            return Tier.FREE
        if subscription is None:
            return Tier.FREE
        if now > subscription.current_period_end:
            self.logger.info(
                "limits.subscription_expired",
                extra={"user_id": user_id, "subscription_id": subscription.id},
            )
            return Tier.FREE
        return subscription.tier

    def usage(self, user_id: str, tier: Optional[Tier] = None, now: Optional[datetime] = None) -> UsageSnapshot:
        tier = tier or self.tier_for_user(user_id, now)
        companion_limit, session_limit = tier_limits(tier)
        try:
            companions_used = self.usage_counter.count_companions(user_id)
            sessions_used = self.usage_counter.count_sessions_this_month(user_id, now)
        except PersistenceError:
            self.logger.exception("limits.usage_degraded", extra={"user_id": user_id, "tier": tier.value})
            return UsageSnapshot(
                companions_used=0,
                companion_limit=companion_limit,
                sessions_used=0,
                session_limit=session_limit,
                can_create_companion=True,
                can_start_session=True,
            )
        return UsageSnapshot(
            companions_used=companions_used,
            companion_limit=companion_limit,
            sessions_used=sessions_used,
            session_limit=session_limit,
            can_create_companion=can_create_companion(companions_used, companion_limit),
            can_start_session=can_start_session(sessions_used, session_limit),
        )

    def check_companion_limit(self, user_id: str, now: Optional[datetime] = None) -> CompanionLimitCheck:
        tier = self.tier_for_user(user_id, now)
        snapshot = self.usage(user_id, tier, now)
        if snapshot.can_create_companion:
            return CompanionLimitCheck(can_create=True)
        required = upgrade_tier_for(tier)
        prompt = UpgradePrompt(
            current_tier=tier,
            required_tier=required,
            feature=COMPANION_FEATURE,
            message=(
                f"You've reached your companion limit of {snapshot.companion_limit}. "
                f"Upgrade to {required.value} to create more AI tutors."
            ),
        )
        log_event(
            "info",
            "limits.companion_denied",
            user_id=user_id,
            event_type="limit_denied",
            extra={"tier": tier.value, "used": snapshot.companions_used},
            logger=self.logger,
        )
        return CompanionLimitCheck(can_create=False, upgrade_prompt=prompt)

    def check_session_limit(self, user_id: str, now: Optional[datetime] = None) -> SessionLimitCheck:
        tier = self.tier_for_user(user_id, now)
        snapshot = self.usage(user_id, tier, now)
        if snapshot.can_start_session:
            return SessionLimitCheck(can_start=True)
        required = upgrade_tier_for(tier)
        prompt = UpgradePrompt(
            current_tier=tier,
            required_tier=required,
            feature=SESSION_FEATURE,
            message=(
                f"You've reached your monthly session limit of {snapshot.session_limit}. "
                f"Upgrade to {required.value} for more learning sessions."
            ),
        )
        log_event(
            "info",
            "limits.session_denied",
            user_id=user_id,
            event_type="limit_denied",
            extra={"tier": tier.value, "used": snapshot.sessions_used},
            logger=self.logger,
        )
        return SessionLimitCheck(can_start=False, upgrade_prompt=prompt)
