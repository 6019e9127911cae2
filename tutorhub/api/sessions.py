"""
Learning session API routes.

- POST /api/sessions: start a session (limit-gated)
- GET  /api/sessions: the caller's recent sessions
- GET  /api/sessions/stats: learning stats
- GET  /api/sessions/{id}
- POST /api/sessions/{id}/complete: finish with feedback/rating
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from tutorhub.api.deps import Services, get_current_user, get_services
from tutorhub.models.learning_session import LearningSession, LearningStats
from tutorhub.models.user import User


router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class StartSessionRequest(BaseModel):
    companion_id: str


class CompleteSessionRequest(BaseModel):
    feedback: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)


@router.post("", response_model=LearningSession, status_code=201)
def start_session(
    body: StartSessionRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.sessions.start(user, body.companion_id)


@router.get("", response_model=List[LearningSession])
def list_sessions(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.sessions.list_for_user(user.id, limit=limit)


@router.get("/stats", response_model=LearningStats)
def session_stats(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.sessions.stats(user.id)


@router.get("/{session_id}", response_model=LearningSession)
def get_session(
    session_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.sessions.get(session_id, user.id)


@router.post("/{session_id}/complete", response_model=LearningSession)
def complete_session(
    session_id: str,
    body: CompleteSessionRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.sessions.complete(session_id, user.id, feedback=body.feedback, rating=body.rating)
