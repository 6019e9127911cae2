from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class LearningSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    companion_id: str
    status: SessionStatus
    voice_call_id: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    transcript: Optional[str] = None
    feedback: Optional[str] = None
    rating: Optional[int] = None
    call_details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LearningStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_sessions: int
    completed_sessions: int
    total_minutes: int
    average_rating: Optional[float] = None
    sessions_this_month: int
