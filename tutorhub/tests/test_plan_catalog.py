"""
Plan catalog tests.

Covers catalog contents, lookups, default plan per tier and load-time
validation of identifiers.
"""
import pytest

from tutorhub.core.errors import ConfigurationError
from tutorhub.features.plans.catalog import (
    DEFAULT_PLANS,
    PLAN_CATALOG_VERSION,
    PlanCatalog,
    tier_limits,
)
from tutorhub.models.plan import BillingInterval, Plan, Tier, UNLIMITED


def _plan(plan_id, tier=Tier.BASIC, external=None, interval=BillingInterval.MONTH):
    return Plan(
        id=plan_id,
        name=plan_id.title(),
        tier=tier,
        price=1.0,
        interval=interval,
        companion_limit=1,
        session_limit=1,
        external_plan_id=external,
    )


def test_shipped_catalog_contents(catalog):
    """Four plans ship with the expected tiers and limits."""
    assert [p.id for p in catalog] == ["free", "basic", "core-learner", "pro"]
    assert catalog.version == PLAN_CATALOG_VERSION

    free = catalog.find_by_id("free")
    assert free.tier == Tier.FREE
    assert (free.companion_limit, free.session_limit) == (3, 10)
    assert free.external_plan_id is None

    core = catalog.find_by_id("core-learner")
    assert core.tier == Tier.BASIC
    assert (core.companion_limit, core.session_limit) == (25, 250)
    assert core.is_popular is True

    pro = catalog.find_by_id("pro")
    assert (pro.companion_limit, pro.session_limit) == (UNLIMITED, UNLIMITED)


def test_find_by_external_id_is_exact(catalog):
    assert catalog.find_by_external_id("core_learner").id == "core-learner"
    assert catalog.find_by_external_id("Core_Learner") is None
    assert catalog.find_by_external_id("core-learner") is None


def test_find_by_tier_and_default(catalog):
    basic_plans = catalog.find_by_tier(Tier.BASIC)
    assert [p.id for p in basic_plans] == ["basic", "core-learner"]
    assert catalog.default_for_tier(Tier.BASIC).id == "basic"
    assert catalog.default_for_tier(Tier.ENTERPRISE) is None


def test_default_prefers_monthly_plan():
    catalog = PlanCatalog([
        _plan("pro-annual", tier=Tier.PRO, interval=BillingInterval.YEAR),
        _plan("pro-monthly", tier=Tier.PRO),
    ])
    assert catalog.default_for_tier(Tier.PRO).id == "pro-monthly"


def test_default_falls_back_to_first_plan_of_tier():
    catalog = PlanCatalog([
        _plan("pro-annual", tier=Tier.PRO, interval=BillingInterval.YEAR),
        _plan("pro-biennial", tier=Tier.PRO, interval=BillingInterval.YEAR),
    ])
    assert catalog.default_for_tier(Tier.PRO).id == "pro-annual"


def test_duplicate_external_ids_rejected():
    with pytest.raises(ConfigurationError):
        PlanCatalog([_plan("a", external="same"), _plan("b", external="same")])


def test_duplicate_plan_ids_rejected():
    with pytest.raises(ConfigurationError):
        PlanCatalog([_plan("a"), _plan("a")])


def test_multiple_plans_without_external_id_allowed():
    catalog = PlanCatalog([_plan("a"), _plan("b")])
    assert len(catalog) == 2


def test_external_ids_unique_in_shipped_catalog():
    external = [p.external_plan_id for p in DEFAULT_PLANS if p.external_plan_id]
    assert len(external) == len(set(external))


def test_plans_are_immutable(catalog):
    plan = catalog.find_by_id("basic")
    with pytest.raises(Exception):
        plan.companion_limit = 99


def test_tier_limits_use_core_learner_values_for_basic():
    assert tier_limits(Tier.FREE) == (3, 10)
    assert tier_limits(Tier.BASIC) == (25, 250)
    assert tier_limits(Tier.PRO) == (UNLIMITED, UNLIMITED)
    assert tier_limits(Tier.ENTERPRISE) == (UNLIMITED, UNLIMITED)
