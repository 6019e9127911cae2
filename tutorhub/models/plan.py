"""
tutorhub/models/plan.py

Plan model: a purchasable offering that maps to a capability tier.
"""

from enum import Enum
from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict

UNLIMITED = -1


class Tier(str, Enum):
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class BillingInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"


class Plan(BaseModel):
    """
    Plan represents one priced offering.

    Several plans may share a tier (e.g. "basic" and "core-learner" are both
    BASIC). Limits of -1 mean unlimited; session limits are per calendar month.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    tier: Tier
    description: str = ""
    price: float
    interval: BillingInterval = BillingInterval.MONTH
    companion_limit: int
    session_limit: int
    external_plan_id: Optional[str] = None
    features: Tuple[str, ...] = ()
    is_popular: bool = False
