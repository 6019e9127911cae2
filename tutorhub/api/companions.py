"""
Companion API routes.

- POST   /api/companions: create (limit-gated)
- GET    /api/companions: browse public companions
- GET    /api/companions/mine: the caller's companions
- GET    /api/companions/stats: totals
- GET    /api/companions/{id}
- PATCH  /api/companions/{id}: author only
- DELETE /api/companions/{id}: author only
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from tutorhub.api.deps import Services, get_current_user, get_services
from tutorhub.models.companion import Companion, CompanionCreate, CompanionStats, CompanionUpdate
from tutorhub.models.user import User


router = APIRouter(prefix="/api/companions", tags=["companions"])


@router.post("", response_model=Companion, status_code=201)
def create_companion(
    body: CompanionCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.companions.create(user.id, body)


@router.get("", response_model=List[Companion])
def list_companions(
    subject: Optional[str] = None,
    topic: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return services.companions.list_public(subject=subject, topic=topic, page=page, limit=limit)


@router.get("/mine", response_model=List[Companion])
def my_companions(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.companions.list_for_user(user.id, limit=limit)


@router.get("/stats", response_model=CompanionStats)
def companion_stats(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.companions.stats(user.id)


@router.get("/{companion_id}", response_model=Companion)
def get_companion(
    companion_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.companions.get(companion_id, viewer_id=user.id)


@router.patch("/{companion_id}", response_model=Companion)
def update_companion(
    companion_id: str,
    body: CompanionUpdate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.companions.update(companion_id, user.id, body)


@router.delete("/{companion_id}", status_code=204)
def delete_companion(
    companion_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    services.companions.delete(companion_id, user.id)
    return Response(status_code=204)
