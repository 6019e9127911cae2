from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class TeachingStyle(str, Enum):
    CASUAL = "casual"
    FORMAL = "formal"


class VoiceType(str, Enum):
    MALE = "male"
    FEMALE = "female"


class Companion(BaseModel):
    """An AI tutor profile owned by a user."""
    model_config = ConfigDict(frozen=True)

    id: str
    author_id: str
    name: str
    subject: str
    topic: str
    style: TeachingStyle
    voice: VoiceType
    duration: int
    instructions: Optional[str] = None
    is_public: bool = True
    voice_assistant_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CompanionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    subject: str = Field(min_length=1, max_length=100)
    topic: str = Field(min_length=1)
    style: TeachingStyle = TeachingStyle.CASUAL
    voice: VoiceType = VoiceType.FEMALE
    duration: int = Field(default=15, ge=1, le=180)
    instructions: Optional[str] = None
    is_public: bool = True


class CompanionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    subject: Optional[str] = Field(default=None, min_length=1, max_length=100)
    topic: Optional[str] = Field(default=None, min_length=1)
    style: Optional[TeachingStyle] = None
    voice: Optional[VoiceType] = None
    duration: Optional[int] = Field(default=None, ge=1, le=180)
    instructions: Optional[str] = None
    is_public: Optional[bool] = None


class CompanionStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_companions: int
    user_companions: int
