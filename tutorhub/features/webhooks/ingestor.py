"""
Webhook ingestion: verify, parse, dispatch, acknowledge.

Lifecycle per delivery:
    RECEIVED -> VERIFIED -> DISPATCHED -> ACKNOWLEDGED
                   \\-> REJECTED (bad signature/body, or a failure the
                                  provider should retry)

Failures in subscription.created / subscription.cancelled / user.updated are
logged and acknowledged. Failures in subscription.updated are surfaced as
WebhookProcessingError so the provider redelivers. Replays are safe because
subscription writes are upserts keyed by user.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from tutorhub.core.errors import NotFoundError, ValidationError, WebhookProcessingError
from tutorhub.features.plans.resolver import PlanResolver
from tutorhub.features.subscriptions.store import SubscriptionStore
from tutorhub.features.users.service import UserService
from tutorhub.features.webhooks.events import (
    Event,
    SubscriptionCancelledEvent,
    SubscriptionCreatedEvent,
    SubscriptionPayload,
    SubscriptionUpdatedEvent,
    UnknownEvent,
    UserCreatedEvent,
    UserUpdatedEvent,
    parse_event,
    parse_timestamp,
)
from tutorhub.features.webhooks.verifier import WebhookVerifier
from tutorhub.models.subscription import Subscription, SubscriptionStatus


class IngestState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    DISPATCHED = "dispatched"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


@dataclass
class WebhookReceipt:
    """Outcome of one delivery."""
    event_type: str
    msg_id: Optional[str]
    handled: bool
    state: IngestState


_STATUS_ALIASES = {
    "active": SubscriptionStatus.ACTIVE,
    "upcoming": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "cancelled": SubscriptionStatus.CANCELLED,
    "canceled": SubscriptionStatus.CANCELLED,
    "ended": SubscriptionStatus.CANCELLED,
    "expired": SubscriptionStatus.CANCELLED,
}


def normalize_status(raw: Optional[str], logger: Optional[logging.Logger] = None) -> SubscriptionStatus:
    """Map provider status strings onto ours; missing means active."""
    if not raw:
        return SubscriptionStatus.ACTIVE
    status = _STATUS_ALIASES.get(raw.lower())
    if status is None:
        (logger or logging.getLogger("tutorhub")).warning(
            "webhook.unknown_status", extra={"raw_status": raw}
        )
        return SubscriptionStatus.ACTIVE
    return status


class WebhookIngestor:
    def __init__(
        self,
        verifier: WebhookVerifier,
        resolver: PlanResolver,
        subscription_store: SubscriptionStore,
        user_service: UserService,
        logger: Optional[logging.Logger] = None,
    ):
        self.verifier = verifier
        self.resolver = resolver
        self.subscription_store = subscription_store
        self.user_service = user_service
        self.logger = logger or logging.getLogger("tutorhub")

    def ingest(self, headers: Mapping[str, str], body: bytes) -> WebhookReceipt:
        """
        Process one webhook delivery.

        Raises:
            ConfigurationError: webhook secret not configured (501)
            ValidationError: missing headers, empty or malformed body (400)
            AuthenticationError: signature/timestamp rejected (400)
            WebhookProcessingError: subscription.updated failed; retry (500)
        """
        self._state(IngestState.RECEIVED)
        try:
            message = self.verifier.verify(headers, body)
        except Exception as exc:
            self._state(IngestState.REJECTED, reason=type(exc).__name__)
            raise
        self._state(IngestState.VERIFIED, msg_id=message.msg_id)

        try:
            event = parse_event(self._decode(body))
        except ValidationError as exc:
            self._state(IngestState.REJECTED, msg_id=message.msg_id, reason=exc.message)
            raise

        self._state(IngestState.DISPATCHED, msg_id=message.msg_id, event_type=event.type)
        try:
            handled = self.dispatch(event)
        except WebhookProcessingError:
            self._state(IngestState.REJECTED, msg_id=message.msg_id, event_type=event.type)
            raise

        self._state(IngestState.ACKNOWLEDGED, msg_id=message.msg_id, event_type=event.type, handled=handled)
        return WebhookReceipt(
            event_type=event.type,
            msg_id=message.msg_id,
            handled=handled,
            state=IngestState.ACKNOWLEDGED,
        )

    def dispatch(self, event: Event) -> bool:
        """Route a parsed event to its handler. Returns whether it changed local state."""
        if isinstance(event, UserCreatedEvent):
            return self.handle_user_created(event)
        if isinstance(event, UserUpdatedEvent):
            return self._swallow(event, self.handle_user_updated)
        if isinstance(event, SubscriptionCreatedEvent):
            return self._swallow(event, self.handle_subscription_created)
        if isinstance(event, SubscriptionUpdatedEvent):
            try:
                return self.handle_subscription_updated(event)
            except WebhookProcessingError:
                raise
            except Exception as exc:
                self.logger.exception(
                    "webhook.handler_failed",
                    extra={"event_type": event.type, "will_retry": True},
                )
                raise WebhookProcessingError(
                    f"Error processing webhook: {exc}",
                    details={"event_type": event.type},
                ) from exc
        if isinstance(event, SubscriptionCancelledEvent):
            return self._swallow(event, self.handle_subscription_cancelled)
        if isinstance(event, UnknownEvent):
            self.logger.info("webhook.unhandled_event", extra={"event_type": event.type})
        return False

    def handle_user_created(self, event: UserCreatedEvent) -> bool:
        # Users are provisioned lazily on their first authenticated request
        self.logger.info("webhook.user_created", extra={"clerk_id": event.data.id})
        return False

    def handle_user_updated(self, event: UserUpdatedEvent) -> bool:
        user = self.user_service.get_by_clerk_id(event.data.id)
        if user is None:
            self.logger.info("webhook.user_updated_unknown_user", extra={"clerk_id": event.data.id})
            return False
        self.user_service.update(
            user.id,
            email=event.data.primary_email() or user.email,
            name=event.data.full_name() or user.name,
            image_url=event.data.image_url or user.image_url,
        )
        return True

    def handle_subscription_created(self, event: SubscriptionCreatedEvent) -> bool:
        self.apply_subscription(event.data, event.type)
        return True

    def handle_subscription_updated(self, event: SubscriptionUpdatedEvent) -> bool:
        self.apply_subscription(event.data, event.type)
        return True

    def handle_subscription_cancelled(self, event: SubscriptionCancelledEvent) -> bool:
        user_ref = event.data.user_ref()
        if not user_ref:
            raise ValidationError("User reference not found in subscription data")
        user = self.user_service.get_by_clerk_id(user_ref)
        if user is None:
            raise NotFoundError(f"User {user_ref} not found for subscription cancellation")
        self.subscription_store.cancel(user.id)
        return True

    def apply_subscription(self, data: SubscriptionPayload, event_type: str) -> Subscription:
        """Resolve plan and upsert the user's subscription from a payload."""
        user_ref = data.user_ref()
        if not user_ref:
            raise ValidationError("User reference not found in subscription data")
        external_plan_id = data.external_plan_id()
        if not external_plan_id:
            raise ValidationError("Plan reference not found in subscription data")

        user = self.user_service.get_by_clerk_id(user_ref)
        if user is None:
            raise NotFoundError(f"User {user_ref} not found")

        plan = self.resolver.resolve(external_plan_id)
        if plan is None:
            raise NotFoundError(f"No plan available for {external_plan_id}")

        fields: Dict[str, Any] = {
            "plan_id": plan.id,
            "tier": plan.tier,
            "status": normalize_status(data.status, self.logger),
            "current_period_start": parse_timestamp(data.current_period_start, field="current_period_start"),
            "current_period_end": parse_timestamp(data.current_period_end, field="current_period_end"),
            "cancel_at_period_end": bool(data.cancel_at_period_end),
            "billing_customer_id": data.customer,
            "billing_subscription_id": data.id,
        }
        subscription = self.subscription_store.upsert_for_user(user.id, fields)
        self.logger.info(
            "webhook.subscription_applied",
            extra={
                "event_type": event_type,
                "user_id": user.id,
                "plan_id": plan.id,
                "external_plan_id": external_plan_id,
                "tier": plan.tier.value,
                "subscription_id": subscription.id,
            },
        )
        return subscription

    def _swallow(self, event: Event, handler) -> bool:
        try:
            return handler(event)
        except Exception:
            self.logger.exception(
                "webhook.handler_failed",
                extra={"event_type": event.type, "will_retry": False},
            )
            return False

    @staticmethod
    def _decode(body: bytes) -> Any:
        try:
            return json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc

    def _state(self, state: IngestState, **fields) -> None:
        level = logging.WARNING if state == IngestState.REJECTED else logging.INFO
        self.logger.log(level, "webhook.state", extra={"state": state.value, **fields})
