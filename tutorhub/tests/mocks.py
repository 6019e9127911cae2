from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from tutorhub.features.billing.provider import BillingProviderError
from tutorhub.features.voice.provider import VoiceAssistant, VoiceCall, VoiceProviderError

WEBHOOK_SECRET = "whsec_dGVzdC13ZWJob29rLXNpZ25pbmcta2V5LTEyMzQ1Ng=="


class FakeVoiceProvider:
    """In-memory voice provider; records every call."""

    def __init__(self, fail_assistant: bool = False, fail_call: bool = False):
        self.fail_assistant = fail_assistant
        self.fail_call = fail_call
        self.assistants: Dict[str, Dict[str, Any]] = {}
        self.calls: Dict[str, VoiceCall] = {}

    def create_assistant(self, name, instructions, voice, first_message=None):
        if self.fail_assistant:
            raise VoiceProviderError("assistant creation failed")
        assistant_id = f"asst_{len(self.assistants) + 1}"
        self.assistants[assistant_id] = {"name": name, "instructions": instructions, "voice": voice}
        return VoiceAssistant(id=assistant_id, name=name)

    def create_call(self, assistant_id, variables=None):
        if self.fail_call:
            raise VoiceProviderError("call creation failed")
        call_id = f"call_{len(self.calls) + 1}"
        call = VoiceCall(
            id=call_id,
            assistant_id=assistant_id,
            status="in-progress",
            started_at=datetime.now(timezone.utc),
            raw={"variables": variables or {}},
        )
        self.calls[call_id] = call
        return call

    def finish_call(self, call_id: str, minutes: int, transcript: str) -> None:
        call = self.calls[call_id]
        call.status = "ended"
        call.started_at = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        call.ended_at = datetime.now(timezone.utc)
        call.transcript = transcript

    def get_call(self, call_id):
        if call_id not in self.calls:
            raise VoiceProviderError(f"unknown call {call_id}")
        return self.calls[call_id]


class FakeBillingProvider:
    """In-memory stand-in for the Clerk billing adapter."""

    def __init__(self, subscriptions: Optional[Dict[str, Dict[str, Any]]] = None, fail: bool = False):
        self.subscriptions = dict(subscriptions or {})
        self.fail = fail
        self.cancelled: List[str] = []

    def get_subscription(self, external_user_id):
        if self.fail:
            raise BillingProviderError("provider unavailable")
        return self.subscriptions.get(external_user_id)

    def cancel_subscription(self, external_user_id):
        if self.fail:
            raise BillingProviderError("provider unavailable")
        self.cancelled.append(external_user_id)
        current = self.subscriptions.get(external_user_id, {})
        current = {**current, "status": "cancelled", "cancelAtPeriodEnd": True}
        self.subscriptions[external_user_id] = current
        return current

    def create_checkout_url(self, external_user_id, external_plan_id, success_url, cancel_url):
        return f"http://app.test/pricing/checkout?plan={external_plan_id}&userId={external_user_id}"

    def create_portal_url(self, external_user_id, return_url):
        return f"http://app.test/pricing?userId={external_user_id}"
