"""
Usage counting.

Companions are counted all-time; learning sessions are counted from the
first instant of the current calendar month in the configured time zone.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tutorhub.core.database import session_scope, companions, learning_sessions
from tutorhub.core.errors import PersistenceError


def month_start(now: datetime, tz_name: str = "UTC") -> datetime:
    """
    First instant of `now`'s calendar month in `tz_name`, returned in UTC.

    Naive datetimes are treated as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    start_local = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start_local.astimezone(timezone.utc)


class UsageCounter:
    def __init__(self, session_factory: sessionmaker, tz_name: str = "UTC"):
        self.session_factory = session_factory
        self.tz_name = tz_name

    def month_start(self, now: Optional[datetime] = None) -> datetime:
        return month_start(now or datetime.now(timezone.utc), self.tz_name)

    def count_companions(self, user_id: str) -> int:
        query = select(func.count()).select_from(companions).where(companions.c.author_id == user_id)
        return self._count(query)

    def count_sessions_this_month(self, user_id: str, now: Optional[datetime] = None) -> int:
        since = self.month_start(now)
        query = select(func.count()).select_from(learning_sessions).where(and_(
            learning_sessions.c.user_id == user_id,
            learning_sessions.c.created_at >= since,
        ))
        return self._count(query)

    def _count(self, query) -> int:
        try:
            with session_scope(self.session_factory) as session:
                return int(session.execute(query).scalar() or 0)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Usage count failed: {exc}") from exc
