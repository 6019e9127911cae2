"""
Voice AI provider protocol.

Companions get a hosted voice assistant; learning sessions get a call on
that assistant. The concrete adapter (Vapi) lives in vapi_provider.py; tests
use an in-memory double.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from tutorhub.core.errors import ProviderError


class VoiceProviderError(ProviderError):
    code = "voice_provider_error"


@dataclass
class VoiceAssistant:
    id: str
    name: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VoiceCall:
    id: str
    assistant_id: str
    status: str  # queued, ringing, in-progress, ended
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    transcript: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_minutes(self) -> Optional[int]:
        if self.started_at and self.ended_at:
            return max(0, round((self.ended_at - self.started_at).total_seconds() / 60))
        return None


class VoiceProvider(Protocol):
    def create_assistant(
        self,
        name: str,
        instructions: str,
        voice: Dict[str, str],
        first_message: Optional[str] = None,
    ) -> VoiceAssistant:
        """
        Create a hosted assistant.

        Raises:
            VoiceProviderError: If the provider call fails
        """
        ...

    def create_call(self, assistant_id: str, variables: Optional[Dict[str, Any]] = None) -> VoiceCall:
        """
        Start a call on an assistant.

        Raises:
            VoiceProviderError: If the provider call fails
        """
        ...

    def get_call(self, call_id: str) -> VoiceCall:
        """
        Fetch a call's current state, transcript and timing.

        Raises:
            VoiceProviderError: If the provider call fails
        """
        ...
