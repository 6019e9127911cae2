"""
Billing provider protocol.

Defines the interface the subscription service uses to talk to the billing
provider (Clerk Billing), so the provider can be swapped or faked in tests.
Webhook verification lives in features/webhooks and is not part of this port.
"""
from typing import Protocol, Dict, Any, Optional


class BillingProviderError(Exception):
    """Raised when a billing provider call fails."""
    pass


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Reading the provider's view of a user's subscription
    - Cancelling a subscription on the provider side
    - Checkout and self-service portal URLs
    """

    def get_subscription(self, external_user_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch the provider's subscription record for a user.

        Returns:
            Dict with planId/status/currentPeriodStart/currentPeriodEnd/
            cancelAtPeriodEnd keys, or None when the user has none

        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def cancel_subscription(self, external_user_id: str) -> Dict[str, Any]:
        """
        Mark the user's subscription cancelled at period end.

        Raises:
            BillingProviderError: If the provider call fails
        """
        ...

    def create_checkout_url(
        self,
        external_user_id: str,
        external_plan_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """Return a URL that starts checkout for the plan."""
        ...

    def create_portal_url(self, external_user_id: str, return_url: str) -> str:
        """Return a URL for subscription self-service."""
        ...
