"""
Map an opaque billing-provider plan identifier onto a catalog plan.

The provider's identifiers drift (renames, suffixes such as "_annual_v2",
trial variants), so resolution falls back through progressively looser
matches and finally a default rather than rejecting the event.
"""

import logging
from typing import Optional

from tutorhub.features.plans.catalog import PlanCatalog
from tutorhub.models.plan import Plan, Tier

DEFAULT_PLAN_ID = "basic"

# Ordered: the first matching rule wins, so "core_learner_pro_trial" maps to
# core-learner even though it also contains "pro".
SUBSTRING_RULES = (
    (("basic", "core", "cplan", "learner"), "core-learner"),
    (("pro",), "pro"),
)


class PlanResolver:
    def __init__(self, catalog: PlanCatalog, logger: Optional[logging.Logger] = None):
        self.catalog = catalog
        self.logger = logger or logging.getLogger("tutorhub")

    def resolve(self, external_plan_id: Optional[str]) -> Optional[Plan]:
        """
        Resolve a provider plan id to a plan.

        Order:
        1. exact external id
        2. exact internal id
        3. case-insensitive substring rules
        4. default plan

        Returns:
            Plan, or None only when the catalog is empty or the input is blank
        """
        if not external_plan_id or not str(external_plan_id).strip():
            self._log("input_rejected", external_plan_id, None, level=logging.WARNING)
            return None
        if len(self.catalog) == 0:
            self._log("empty_catalog", external_plan_id, None, level=logging.ERROR)
            return None

        plan = self.catalog.find_by_external_id(external_plan_id)
        if plan:
            self._log("external_id", external_plan_id, plan)
            return plan

        plan = self.catalog.find_by_id(external_plan_id)
        if plan:
            self._log("internal_id", external_plan_id, plan)
            return plan

        lowered = external_plan_id.lower()
        for needles, plan_id in SUBSTRING_RULES:
            if any(needle in lowered for needle in needles):
                plan = self.catalog.find_by_id(plan_id)
                if plan:
                    self._log("substring", external_plan_id, plan)
                    return plan

        plan = self._default_plan()
        self._log("default", external_plan_id, plan, level=logging.WARNING)
        return plan

    def _default_plan(self) -> Optional[Plan]:
        plan = self.catalog.find_by_id(DEFAULT_PLAN_ID)
        if plan:
            return plan
        for tier in (Tier.BASIC, Tier.PRO, Tier.ENTERPRISE):
            plan = self.catalog.default_for_tier(tier)
            if plan:
                return plan
        plans = self.catalog.all()
        return plans[0] if plans else None

    def _log(self, step: str, external_plan_id, plan: Optional[Plan], level: int = logging.INFO) -> None:
        self.logger.log(
            level,
            f"plan_resolver.{step}",
            extra={
                "step": step,
                "external_plan_id": external_plan_id,
                "plan_id": plan.id if plan else None,
            },
        )
