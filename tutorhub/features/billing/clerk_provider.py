"""
Clerk Billing provider implementation.

Subscription state mirrored on the Clerk side lives in the user's
public_metadata.subscription object, read and written through the Clerk
Backend API. Checkout and portal flows are hosted by the web app, so those
methods only build URLs.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from tutorhub.core.config import settings
from tutorhub.features.billing.provider import BillingProviderError

logger = logging.getLogger("tutorhub")


class ClerkBillingProvider:
    """Clerk Backend API adapter."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        api_url: Optional[str] = None,
        app_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.secret_key = secret_key or settings.CLERK_SECRET_KEY
        if not self.secret_key:
            raise BillingProviderError("CLERK_SECRET_KEY not configured")
        self.api_url = (api_url or settings.CLERK_API_URL).rstrip("/")
        self.app_url = (app_url or settings.APP_URL).rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._client.request(
                method,
                f"{self.api_url}{path}",
                json=json,
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise BillingProviderError(
                f"Clerk API {method} {path} failed with {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise BillingProviderError(f"Clerk API {method} {path} failed: {e}") from e

    def get_user(self, external_user_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/users/{external_user_id}")

    def get_subscription(self, external_user_id: str) -> Optional[Dict[str, Any]]:
        user = self.get_user(external_user_id)
        subscription = (user.get("public_metadata") or {}).get("subscription")
        if isinstance(subscription, dict) and subscription:
            return subscription
        return None

    def update_subscription_metadata(self, external_user_id: str, subscription: Dict[str, Any]) -> Dict[str, Any]:
        self._request(
            "PATCH",
            f"/users/{external_user_id}/metadata",
            json={"public_metadata": {"subscription": subscription}},
        )
        return subscription

    def cancel_subscription(self, external_user_id: str) -> Dict[str, Any]:
        current = self.get_subscription(external_user_id) or {}
        cancelled = {
            **current,
            "status": "cancelled",
            "cancelAtPeriodEnd": True,
            "cancelledAt": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("billing.clerk_cancel", extra={"clerk_id": external_user_id})
        return self.update_subscription_metadata(external_user_id, cancelled)

    def create_checkout_url(
        self,
        external_user_id: str,
        external_plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        query = urlencode({
            "plan": external_plan_id,
            "userId": external_user_id,
            "success": success_url,
            "cancel": cancel_url,
        })
        return f"{self.app_url}/pricing/checkout?{query}"

    def create_portal_url(self, external_user_id: str, return_url: str) -> str:
        query = urlencode({"userId": external_user_id, "return": return_url})
        return f"{self.app_url}/pricing?{query}"
