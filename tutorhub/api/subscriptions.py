"""
Subscription API routes.

- GET  /api/subscription: current active subscription (or null)
- GET  /api/subscription/tier: effective tier
- GET  /api/subscription/usage: usage against tier limits
- GET  /api/subscription/plans: plan catalog
- GET  /api/subscription/limits/companions | /limits/sessions: limit checks
- POST /api/subscription: subscribe to a plan
- POST /api/subscription/cancel: cancel
- POST /api/subscription/refresh: re-sync from the billing provider
- GET  /api/subscription/features/{feature}: feature access
- POST /api/subscription/checkout, GET /api/subscription/portal: billing URLs
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tutorhub.api.deps import Services, get_current_user, get_services
from tutorhub.models.plan import Plan, Tier
from tutorhub.models.subscription import Subscription
from tutorhub.models.usage import CompanionLimitCheck, SessionLimitCheck, UsageSnapshot
from tutorhub.models.user import User


router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class SubscribeRequest(BaseModel):
    plan_id: str


class CheckoutRequest(BaseModel):
    plan_id: str


class UrlResponse(BaseModel):
    url: str


class TierResponse(BaseModel):
    tier: Tier


class FeatureAccessResponse(BaseModel):
    feature: str
    has_access: bool


class PlansResponse(BaseModel):
    version: str
    plans: List[Plan]


@router.get("", response_model=Optional[Subscription])
def get_subscription(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.subscriptions.get_subscription(user.id)


@router.get("/tier", response_model=TierResponse)
def get_tier(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return TierResponse(tier=services.subscriptions.get_tier(user.id))


@router.get("/usage", response_model=UsageSnapshot)
def get_usage(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.subscriptions.get_usage(user.id)


@router.get("/plans", response_model=PlansResponse)
def list_plans(services: Services = Depends(get_services)):
    return PlansResponse(version=services.catalog.version, plans=services.subscriptions.list_plans())


@router.get("/limits/companions", response_model=CompanionLimitCheck)
def companion_limit(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.subscriptions.check_companion_limit(user.id)


@router.get("/limits/sessions", response_model=SessionLimitCheck)
def session_limit(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.subscriptions.check_session_limit(user.id)


@router.post("", response_model=Subscription, status_code=201)
def subscribe(
    body: SubscribeRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.subscriptions.subscribe(user.id, body.plan_id)


@router.post("/cancel", response_model=Subscription)
def cancel(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.subscriptions.cancel(user)


@router.post("/refresh", response_model=Optional[Subscription])
def refresh(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.subscriptions.sync_from_provider(user)


@router.get("/features/{feature}", response_model=FeatureAccessResponse)
def feature_access(
    feature: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return FeatureAccessResponse(
        feature=feature,
        has_access=services.subscriptions.has_feature_access(user.id, feature),
    )


@router.post("/checkout", response_model=UrlResponse)
def checkout(
    body: CheckoutRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return UrlResponse(url=services.subscriptions.checkout_url(user, body.plan_id))


@router.get("/portal", response_model=UrlResponse)
def portal(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return UrlResponse(url=services.subscriptions.portal_url(user))
