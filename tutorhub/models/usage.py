from typing import Optional
from pydantic import BaseModel, ConfigDict

from tutorhub.models.plan import Tier


class UsageSnapshot(BaseModel):
    """Point-in-time usage against tier limits (derived, never stored)."""
    model_config = ConfigDict(frozen=True)

    companions_used: int
    companion_limit: int
    sessions_used: int
    session_limit: int
    can_create_companion: bool
    can_start_session: bool


class UpgradePrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_tier: Tier
    required_tier: Tier
    feature: str
    message: str


class CompanionLimitCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_create: bool
    upgrade_prompt: Optional[UpgradePrompt] = None


class SessionLimitCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_start: bool
    upgrade_prompt: Optional[UpgradePrompt] = None
