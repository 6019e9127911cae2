"""
Webhook signature verification (Svix scheme, as used by Clerk).

Signature checks and the 5-minute replay window are delegated to the svix
SDK. Deliveries may carry `svix-*`, `webhook-*` or `message-*` headers; they
are normalized to the `svix-*` family before verification.
"""
from __future__ import annotations

import binascii
import json
from dataclasses import dataclass
from typing import Mapping, Optional

from svix.webhooks import Webhook, WebhookVerificationError

from tutorhub.core.errors import AuthenticationError, ConfigurationError, ValidationError

# Accepted header families, most specific first
HEADER_PREFIXES = ("svix", "webhook", "message")


@dataclass(frozen=True)
class SignedMessage:
    msg_id: str
    timestamp: str
    signature: str

    def as_svix_headers(self) -> dict:
        return {
            "svix-id": self.msg_id,
            "svix-timestamp": self.timestamp,
            "svix-signature": self.signature,
        }


def extract_signed_message(headers: Mapping[str, str]) -> SignedMessage:
    """
    Pull id/timestamp/signature out of request headers.

    Raises:
        ValidationError: any of the three headers is missing
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    for prefix in HEADER_PREFIXES:
        msg_id = lowered.get(f"{prefix}-id")
        timestamp = lowered.get(f"{prefix}-timestamp")
        signature = lowered.get(f"{prefix}-signature")
        if msg_id and timestamp and signature:
            return SignedMessage(msg_id=msg_id, timestamp=timestamp, signature=signature)
    raise ValidationError("Missing webhook signature headers", code="missing_signature_headers")


class WebhookVerifier:
    def __init__(self, secret: Optional[str]):
        self.secret = secret

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def _webhook(self) -> Webhook:
        try:
            return Webhook(self.secret)
        except (binascii.Error, ValueError, RuntimeError) as exc:
            raise ConfigurationError("CLERK_WEBHOOK_SECRET is not a valid signing secret") from exc

    def verify(self, headers: Mapping[str, str], body: bytes) -> SignedMessage:
        """
        Verify a delivery and return its signed message metadata.

        Raises:
            ConfigurationError: no usable webhook secret configured
            ValidationError: headers missing, body empty or not JSON
            AuthenticationError: timestamp outside tolerance or no signature matched
        """
        if not self.secret:
            raise ConfigurationError(
                "Webhook not configured - set CLERK_WEBHOOK_SECRET"
            )
        message = extract_signed_message(headers)
        if not body:
            raise ValidationError("Empty webhook body")
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc

        webhook = self._webhook()
        try:
            webhook.verify(payload, message.as_svix_headers())
        except WebhookVerificationError as exc:
            raise AuthenticationError(f"Webhook verification failed: {exc}") from exc
        except json.JSONDecodeError as exc:
            # svix decodes the payload only after a signature matched
            raise ValidationError("Webhook body is not valid JSON") from exc
        except (binascii.Error, ValueError) as exc:
            raise AuthenticationError("Malformed webhook signature header") from exc
        return message
