"""
Vapi voice provider implementation.

Thin httpx adapter over the Vapi REST API (assistants and calls).
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from tutorhub.core.config import settings
from tutorhub.features.voice.provider import VoiceAssistant, VoiceCall, VoiceProviderError

logger = logging.getLogger("tutorhub")

TRANSCRIBER = {"provider": "deepgram", "model": "nova-2", "language": "en"}
MODEL = {"provider": "openai", "model": "gpt-4o-mini"}


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_call(payload: Dict[str, Any]) -> VoiceCall:
    transcript = payload.get("transcript") or (payload.get("artifact") or {}).get("transcript")
    return VoiceCall(
        id=payload["id"],
        assistant_id=payload.get("assistantId", ""),
        status=payload.get("status", "queued"),
        started_at=_parse_time(payload.get("startedAt")),
        ended_at=_parse_time(payload.get("endedAt")),
        transcript=transcript,
        raw=payload,
    )


class VapiProvider:
    """Vapi REST adapter."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or settings.VAPI_API_KEY
        if not self.api_key:
            raise VoiceProviderError("VAPI_API_KEY not configured", code="voice_disabled", status_code=501)
        self.base_url = (base_url or settings.VAPI_BASE_URL).rstrip("/")
        self._client = client or httpx.Client(timeout=timeout or settings.VAPI_TIMEOUT_SECONDS)

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "voice.vapi_http_error",
                extra={"path": path, "status": e.response.status_code},
            )
            raise VoiceProviderError(f"Vapi {method} {path} failed with {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise VoiceProviderError(f"Vapi {method} {path} failed: {e}") from e

    def create_assistant(
        self,
        name: str,
        instructions: str,
        voice: Dict[str, str],
        first_message: Optional[str] = None,
    ) -> VoiceAssistant:
        body = {
            "name": name,
            "firstMessage": first_message or f"Hello, I'm {name}. Ready to start the session?",
            "transcriber": TRANSCRIBER,
            "voice": voice,
            "model": {**MODEL, "messages": [{"role": "system", "content": instructions}]},
        }
        payload = self._request("POST", "/assistant", json=body)
        return VoiceAssistant(id=payload["id"], name=payload.get("name", name), raw=payload)

    def create_call(self, assistant_id: str, variables: Optional[Dict[str, Any]] = None) -> VoiceCall:
        body: Dict[str, Any] = {"assistantId": assistant_id}
        if variables:
            body["assistantOverrides"] = {"variableValues": variables}
        return _to_call(self._request("POST", "/call", json=body))

    def get_call(self, call_id: str) -> VoiceCall:
        return _to_call(self._request("GET", f"/call/{call_id}"))
