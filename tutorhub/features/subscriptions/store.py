"""
Subscription persistence.

One row per user per billing relationship. At most one row per user may be
`active`; cancellation is a soft status change and keeps the row. Every call
issues a fresh query (no caching).
"""
import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tutorhub.core.database import session_scope, user_subscriptions, as_utc, utcnow
from tutorhub.core.errors import NotFoundError, PersistenceError, ValidationError
from tutorhub.models.subscription import NewSubscription, Subscription, SubscriptionStatus


UPDATABLE_FIELDS = frozenset({
    "plan_id",
    "tier",
    "status",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "billing_customer_id",
    "billing_subscription_id",
})


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        tier=row.tier,
        status=row.status,
        current_period_start=as_utc(row.current_period_start),
        current_period_end=as_utc(row.current_period_end),
        cancel_at_period_end=bool(row.cancel_at_period_end),
        billing_customer_id=row.billing_customer_id,
        billing_subscription_id=row.billing_subscription_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _db_value(value: Any) -> Any:
    # Enums are stored by value
    return getattr(value, "value", value)


class SubscriptionStore:
    def __init__(self, session_factory: sessionmaker, logger: Optional[logging.Logger] = None):
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger("tutorhub")

    def get_by_user(self, user_id: str) -> Optional[Subscription]:
        """Return the user's active subscription (most recently updated), or None."""
        query = (
            select(user_subscriptions)
            .where(and_(
                user_subscriptions.c.user_id == user_id,
                user_subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
            ))
            .order_by(user_subscriptions.c.updated_at.desc())
            .limit(1)
        )
        return self._fetch_one(query, "get_by_user")

    def get_latest_by_user(self, user_id: str) -> Optional[Subscription]:
        """Return the user's most recent subscription row of any status."""
        query = (
            select(user_subscriptions)
            .where(user_subscriptions.c.user_id == user_id)
            .order_by(user_subscriptions.c.updated_at.desc(), user_subscriptions.c.created_at.desc())
            .limit(1)
        )
        return self._fetch_one(query, "get_latest_by_user")

    def get(self, subscription_id: str) -> Optional[Subscription]:
        query = select(user_subscriptions).where(user_subscriptions.c.id == subscription_id)
        return self._fetch_one(query, "get")

    def create(self, new: NewSubscription) -> Subscription:
        """
        Insert a subscription.

        Raises:
            PersistenceError: user already has an active subscription, or the
                store failed
        """
        now = utcnow()
        values = {key: _db_value(value) for key, value in new.model_dump().items()}
        values.update(id=str(uuid.uuid4()), created_at=now, updated_at=now)
        try:
            with session_scope(self.session_factory) as session:
                if new.status == SubscriptionStatus.ACTIVE:
                    existing = session.execute(
                        select(user_subscriptions.c.id).where(and_(
                            user_subscriptions.c.user_id == new.user_id,
                            user_subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
                        ))
                    ).first()
                    if existing:
                        raise PersistenceError(
                            f"User {new.user_id} already has an active subscription",
                            code="duplicate_active_subscription",
                            status_code=409,
                        )
                session.execute(insert(user_subscriptions).values(**values))
                row = session.execute(
                    select(user_subscriptions).where(user_subscriptions.c.id == values["id"])
                ).first()
        except IntegrityError as exc:
            self.logger.warning(
                "subscription_store.constraint_violation",
                extra={"user_id": new.user_id, "error_message": str(exc.orig)},
            )
            raise PersistenceError(
                f"Could not create subscription for user {new.user_id}",
                code="duplicate_active_subscription",
                status_code=409,
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create subscription: {exc}") from exc

        self.logger.info(
            "subscription_store.created",
            extra={"user_id": new.user_id, "plan_id": new.plan_id, "subscription_id": values["id"]},
        )
        return _row_to_subscription(row)

    def update(self, subscription_id: str, **fields) -> Subscription:
        """
        Apply a partial update.

        Raises:
            ValidationError: unknown field names
            NotFoundError: no row with this id
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")

        values = {key: _db_value(value) for key, value in fields.items()}
        values["updated_at"] = utcnow()
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(
                    update(user_subscriptions)
                    .where(user_subscriptions.c.id == subscription_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Subscription {subscription_id} not found")
                row = session.execute(
                    select(user_subscriptions).where(user_subscriptions.c.id == subscription_id)
                ).first()
        except IntegrityError as exc:
            raise PersistenceError(
                f"Could not update subscription {subscription_id}",
                code="duplicate_active_subscription",
                status_code=409,
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update subscription: {exc}") from exc

        return _row_to_subscription(row)

    def cancel(self, user_id: str) -> Subscription:
        """
        Soft-cancel the user's active subscription.

        Tier and plan are left as they were.

        Raises:
            NotFoundError: no active subscription for the user
        """
        current = self.get_by_user(user_id)
        if current is None:
            raise NotFoundError(f"No active subscription for user {user_id}")
        cancelled = self.update(
            current.id,
            status=SubscriptionStatus.CANCELLED,
            cancel_at_period_end=True,
        )
        self.logger.info(
            "subscription_store.cancelled",
            extra={"user_id": user_id, "subscription_id": current.id, "plan_id": current.plan_id},
        )
        return cancelled

    def upsert_for_user(self, user_id: str, fields: Dict[str, Any]) -> Subscription:
        """Update the user's latest subscription row, or create one (idempotent)."""
        latest = self.get_latest_by_user(user_id)
        if latest is not None:
            return self.update(latest.id, **fields)
        try:
            return self.create(NewSubscription(user_id=user_id, **fields))
        except PersistenceError as exc:
            if exc.code != "duplicate_active_subscription":
                raise
            # A concurrent delivery inserted the row first
            latest = self.get_latest_by_user(user_id)
            if latest is None:
                raise
            self.logger.info("subscription_store.upsert_retried", extra={"user_id": user_id})
            return self.update(latest.id, **fields)

    def _fetch_one(self, query, operation: str) -> Optional[Subscription]:
        try:
            with session_scope(self.session_factory) as session:
                row = session.execute(query).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Subscription lookup failed ({operation}): {exc}") from exc
        return _row_to_subscription(row) if row else None
