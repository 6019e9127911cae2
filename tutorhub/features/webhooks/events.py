"""
Typed billing/identity webhook events.

Raw JSON is parsed once into one of the event classes below; handlers never
touch untyped dictionaries. Unknown event types become `UnknownEvent` and
are acknowledged without action.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from tutorhub.core.errors import ValidationError

logger = logging.getLogger("tutorhub")

# Plausible window for provider timestamps (milliseconds since epoch)
MIN_TIMESTAMP = datetime(2000, 1, 1, tzinfo=timezone.utc)
MAX_TIMESTAMP = datetime(2100, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any, *, field: str = "timestamp", now: Optional[datetime] = None) -> datetime:
    """
    Convert a provider timestamp into an aware UTC datetime.

    Integers and numeric strings are milliseconds since the epoch; ISO-8601
    strings are accepted too. Missing, negative, non-numeric or out-of-range
    values fall back to `now`.
    """
    now = now or datetime.now(timezone.utc)
    parsed: Optional[datetime] = None

    if isinstance(value, datetime):
        parsed = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    elif isinstance(value, bool) or value is None:
        parsed = None
    elif isinstance(value, (int, float)):
        parsed = _from_millis(value)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = _from_millis(float(text))
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
            except ValueError:
                parsed = None

    if parsed is None or not (MIN_TIMESTAMP <= parsed < MAX_TIMESTAMP):
        logger.warning(
            "webhook.timestamp_fallback",
            extra={"field": field, "raw_value": repr(value)[:100]},
        )
        return now
    return parsed.astimezone(timezone.utc)


def _from_millis(value: float) -> Optional[datetime]:
    if value != value or value <= 0:  # NaN or non-positive
        return None
    try:
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)


class EmailAddress(_Payload):
    email_address: Optional[str] = None


class UserPayload(_Payload):
    id: str
    email_addresses: List[EmailAddress] = []
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None

    def primary_email(self) -> Optional[str]:
        if self.email_addresses:
            return self.email_addresses[0].email_address
        return None

    def full_name(self) -> Optional[str]:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or None


class PlanRef(_Payload):
    id: Optional[str] = None


class SubscriptionItem(_Payload):
    status: Optional[str] = None
    plan_id: Optional[str] = None
    plan: Optional[PlanRef] = None

    def resolved_plan_id(self) -> Optional[str]:
        return self.plan_id or (self.plan.id if self.plan else None)


class Payer(_Payload):
    user_id: Optional[str] = None


class SubscriptionPayload(_Payload):
    id: Optional[str] = None
    status: Optional[str] = None
    payer: Optional[Payer] = None
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    items: List[SubscriptionItem] = []
    current_period_start: Any = None
    current_period_end: Any = None
    cancel_at_period_end: Optional[bool] = None
    customer: Optional[str] = None

    def user_ref(self) -> Optional[str]:
        if self.payer and self.payer.user_id:
            return self.payer.user_id
        return self.user_id

    def external_plan_id(self) -> Optional[str]:
        """First active/upcoming item, else first item, else the flat field."""
        for item in self.items:
            if item.status in ("active", "upcoming") and item.resolved_plan_id():
                return item.resolved_plan_id()
        if self.items and self.items[0].resolved_plan_id():
            return self.items[0].resolved_plan_id()
        return self.plan_id


class WebhookEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str


class UserCreatedEvent(WebhookEvent):
    data: UserPayload


class UserUpdatedEvent(WebhookEvent):
    data: UserPayload


class SubscriptionCreatedEvent(WebhookEvent):
    data: SubscriptionPayload


class SubscriptionUpdatedEvent(WebhookEvent):
    data: SubscriptionPayload


class SubscriptionCancelledEvent(WebhookEvent):
    data: SubscriptionPayload


class UnknownEvent(WebhookEvent):
    data: Any = None


Event = Union[
    UserCreatedEvent,
    UserUpdatedEvent,
    SubscriptionCreatedEvent,
    SubscriptionUpdatedEvent,
    SubscriptionCancelledEvent,
    UnknownEvent,
]

EVENT_TYPES = {
    "user.created": UserCreatedEvent,
    "user.updated": UserUpdatedEvent,
    "subscription.created": SubscriptionCreatedEvent,
    "subscription.updated": SubscriptionUpdatedEvent,
    "subscription.cancelled": SubscriptionCancelledEvent,
    # Clerk Billing spells it both ways
    "subscription.canceled": SubscriptionCancelledEvent,
}


def parse_event(payload: Any) -> Event:
    """
    Build a typed event from a decoded webhook body.

    Raises:
        ValidationError: body is not an object, has no type, or its data
            does not match the event's schema
    """
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ValidationError("Webhook body is missing the event type")

    event_cls = EVENT_TYPES.get(event_type, UnknownEvent)
    data = payload.get("data")
    if data is None:
        data = {}
    try:
        return event_cls(type=event_type, data=data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Malformed {event_type} payload",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
