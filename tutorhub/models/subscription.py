from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from tutorhub.models.plan import Tier


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"


class Subscription(BaseModel):
    """A user's binding to a plan over a billing period.

    `tier` is copied from the plan at write time and not corrected later.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    plan_id: str
    tier: Tier
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    billing_customer_id: Optional[str] = None
    billing_subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_current(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.status == SubscriptionStatus.ACTIVE and now <= self.current_period_end


class NewSubscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    plan_id: str
    tier: Tier
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    billing_customer_id: Optional[str] = None
    billing_subscription_id: Optional[str] = None
