"""
User domain service.
- get_by_id / get_by_clerk_id
- get_or_create (lazy provisioning on first authenticated request)
- update (profile merge from identity webhooks)
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tutorhub.core.database import session_scope, users, as_utc, utcnow
from tutorhub.core.errors import NotFoundError, PersistenceError, ValidationError
from tutorhub.models.user import User

PROFILE_FIELDS = frozenset({"email", "name", "image_url"})


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        clerk_id=row.clerk_id,
        email=row.email,
        name=row.name,
        image_url=row.image_url,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class UserService:
    def __init__(self, session_factory: sessionmaker, logger: Optional[logging.Logger] = None):
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger("tutorhub")

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self._fetch(select(users).where(users.c.id == user_id))

    def get_by_clerk_id(self, clerk_id: str) -> Optional[User]:
        return self._fetch(select(users).where(users.c.clerk_id == clerk_id))

    def get_or_create(
        self,
        clerk_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> User:
        existing = self.get_by_clerk_id(clerk_id)
        if existing:
            return existing

        now = utcnow()
        values = {
            "id": str(uuid.uuid4()),
            "clerk_id": clerk_id,
            "email": email,
            "name": name,
            "image_url": image_url,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with session_scope(self.session_factory) as session:
                session.execute(insert(users).values(**values))
        except IntegrityError:
            # Concurrent first request for the same identity
            existing = self.get_by_clerk_id(clerk_id)
            if existing:
                return existing
            raise PersistenceError(f"Failed to provision user {clerk_id}")
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to provision user: {exc}") from exc

        self.logger.info("users.provisioned", extra={"user_id": values["id"], "clerk_id": clerk_id})
        return User(**values)

    def update(self, user_id: str, **fields) -> User:
        unknown = set(fields) - PROFILE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown user fields: {', '.join(sorted(unknown))}")
        values = dict(fields, updated_at=utcnow())
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(update(users).where(users.c.id == user_id).values(**values))
                if result.rowcount == 0:
                    raise NotFoundError(f"User {user_id} not found")
                row = session.execute(select(users).where(users.c.id == user_id)).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update user: {exc}") from exc
        return _row_to_user(row)

    def _fetch(self, query) -> Optional[User]:
        try:
            with session_scope(self.session_factory) as session:
                row = session.execute(query).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"User lookup failed: {exc}") from exc
        return _row_to_user(row) if row else None
