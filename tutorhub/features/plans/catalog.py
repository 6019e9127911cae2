"""
tutorhub/features/plans/catalog.py

Plan catalog.

Handles:
- The fixed, versioned list of purchasable plans
- Lookup by internal id, billing-provider id and tier
- Default plan per tier
- Canonical per-tier limits used for enforcement

The catalog is read-only after construction and shared process-wide.
"""

from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from tutorhub.core.errors import ConfigurationError
from tutorhub.models.plan import BillingInterval, Plan, Tier, UNLIMITED


PLAN_CATALOG_VERSION = "2024-06"

DEFAULT_PLANS: List[Plan] = [
    Plan(
        id="free",
        name="Free",
        tier=Tier.FREE,
        description="Get started with AI tutoring",
        price=0,
        interval=BillingInterval.MONTH,
        companion_limit=3,
        session_limit=10,
        external_plan_id=None,
        features=(
            "3 AI Companions",
            "10 Learning Sessions per month",
            "Basic voice interactions",
            "Session history",
            "Community companions access",
        ),
    ),
    Plan(
        id="basic",
        name="Basic",
        tier=Tier.BASIC,
        description="More companions and sessions for regular learners",
        price=9.99,
        interval=BillingInterval.MONTH,
        companion_limit=15,
        session_limit=100,
        external_plan_id="basic",
        features=(
            "15 AI Companions",
            "100 Learning Sessions per month",
            "Advanced voice interactions",
            "Priority support",
            "Session analytics",
            "Custom companion sharing",
            "Export session transcripts",
        ),
    ),
    Plan(
        id="core-learner",
        name="Core Learner",
        tier=Tier.BASIC,
        description="Everything in Basic plus progress tracking",
        price=19.99,
        interval=BillingInterval.MONTH,
        companion_limit=25,
        session_limit=250,
        external_plan_id="core_learner",
        is_popular=True,
        features=(
            "25 AI Companions",
            "250 Learning Sessions per month",
            "Advanced voice interactions",
            "Priority support",
            "Advanced session analytics",
            "Custom companion sharing",
            "Export session transcripts",
            "Learning progress tracking",
            "Personalized recommendations",
        ),
    ),
    Plan(
        id="pro",
        name="Pro",
        tier=Tier.PRO,
        description="Unlimited learning",
        price=39.99,
        interval=BillingInterval.MONTH,
        companion_limit=UNLIMITED,
        session_limit=UNLIMITED,
        external_plan_id="pro",
        features=(
            "Unlimited AI Companions",
            "Unlimited Learning Sessions",
            "Premium voice models",
            "Advanced analytics & insights",
            "Custom branding",
            "API access",
            "Priority support",
            "Early access to new features",
            "Team collaboration tools",
            "White-label options",
        ),
    ),
]

# Limits enforced per tier. BASIC uses the Core Learner allowance; the Basic
# plan's own 15/100 figures are display-only.
TIER_LIMITS: Dict[Tier, Tuple[int, int]] = {
    Tier.FREE: (3, 10),
    Tier.BASIC: (25, 250),
    Tier.PRO: (UNLIMITED, UNLIMITED),
    Tier.ENTERPRISE: (UNLIMITED, UNLIMITED),
}

# Feature flags granted by each billing plan (cumulative)
_BASIC_FEATURES = ("advanced_voice", "priority_support", "analytics")
_CORE_LEARNER_FEATURES = _BASIC_FEATURES + ("progress_tracking", "recommendations")
_PRO_FEATURES = _CORE_LEARNER_FEATURES + ("api_access", "custom_branding", "unlimited")

PLAN_FEATURE_FLAGS: Dict[str, Tuple[str, ...]] = {
    "free": (),
    "basic": _BASIC_FEATURES,
    "core-learner": _CORE_LEARNER_FEATURES,
    "pro": _PRO_FEATURES,
}


def tier_limits(tier: Tier) -> Tuple[int, int]:
    """Return (companion_limit, session_limit) enforced for a tier."""
    return TIER_LIMITS.get(tier, TIER_LIMITS[Tier.FREE])


class PlanCatalog:
    """Read-only lookup over a fixed list of plans."""

    def __init__(self, plans: Iterable[Plan], version: str = PLAN_CATALOG_VERSION):
        self.version = version
        self._plans: List[Plan] = list(plans)
        self._by_id: Dict[str, Plan] = {}
        self._by_external_id: Dict[str, Plan] = {}

        for plan in self._plans:
            if plan.id in self._by_id:
                raise ConfigurationError(f"Duplicate plan id in catalog: {plan.id}")
            self._by_id[plan.id] = plan
            if plan.external_plan_id is None:
                continue
            if plan.external_plan_id in self._by_external_id:
                raise ConfigurationError(
                    f"Duplicate external plan id in catalog: {plan.external_plan_id}"
                )
            self._by_external_id[plan.external_plan_id] = plan

    def __iter__(self) -> Iterator[Plan]:
        return iter(self._plans)

    def __len__(self) -> int:
        return len(self._plans)

    def all(self) -> List[Plan]:
        return list(self._plans)

    def find_by_id(self, plan_id: str) -> Optional[Plan]:
        return self._by_id.get(plan_id)

    def find_by_external_id(self, external_plan_id: str) -> Optional[Plan]:
        return self._by_external_id.get(external_plan_id)

    def find_by_tier(self, tier: Tier) -> List[Plan]:
        return [plan for plan in self._plans if plan.tier == tier]

    def default_for_tier(self, tier: Tier) -> Optional[Plan]:
        """First monthly plan of the tier, else the first plan of the tier."""
        plans = self.find_by_tier(tier)
        for plan in plans:
            if plan.interval == BillingInterval.MONTH:
                return plan
        return plans[0] if plans else None

    def external_id_map(self) -> Dict[str, Optional[str]]:
        return {plan.id: plan.external_plan_id for plan in self._plans}


_default_catalog: Optional[PlanCatalog] = None


def get_catalog() -> PlanCatalog:
    """Process-wide catalog built from DEFAULT_PLANS."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = PlanCatalog(DEFAULT_PLANS)
    return _default_catalog
