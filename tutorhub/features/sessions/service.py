"""
Learning session service.

Starting a session counts against the monthly session limit. When the
companion has a voice assistant a call is placed and the session becomes
active; otherwise it stays pending until the client connects.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, insert, update, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tutorhub.core.database import session_scope, learning_sessions, as_utc, utcnow
from tutorhub.core.errors import (
    ConflictError,
    LimitExceededError,
    NotFoundError,
    PermissionError,
    PersistenceError,
)
from tutorhub.features.companions.service import CompanionService
from tutorhub.features.limits.service import LimitEvaluator
from tutorhub.features.usage.service import UsageCounter
from tutorhub.features.voice.provider import VoiceProvider, VoiceProviderError
from tutorhub.models.learning_session import LearningSession, LearningStats, SessionStatus
from tutorhub.models.user import User


def _row_to_session(row) -> LearningSession:
    return LearningSession(
        id=row.id,
        user_id=row.user_id,
        companion_id=row.companion_id,
        status=row.status,
        voice_call_id=row.voice_call_id,
        started_at=as_utc(row.started_at),
        ended_at=as_utc(row.ended_at),
        duration_minutes=row.duration_minutes,
        transcript=row.transcript,
        feedback=row.feedback,
        rating=row.rating,
        call_details=row.call_details,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def elapsed_minutes(start: datetime, end: datetime) -> int:
    return max(0, round((end - start).total_seconds() / 60))


class LearningSessionService:
    def __init__(
        self,
        session_factory: sessionmaker,
        companions: CompanionService,
        limits: LimitEvaluator,
        usage_counter: UsageCounter,
        voice: Optional[VoiceProvider] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_factory = session_factory
        self.companions = companions
        self.limits = limits
        self.usage_counter = usage_counter
        self.voice = voice
        self.logger = logger or logging.getLogger("tutorhub")

    def start(self, user: User, companion_id: str) -> LearningSession:
        """
        Start a learning session with a companion.

        Raises:
            LimitExceededError: monthly session limit reached
            NotFoundError: companion missing or not visible to the user
        """
        check = self.limits.check_session_limit(user.id)
        if not check.can_start:
            prompt = check.upgrade_prompt
            raise LimitExceededError(
                prompt.message if prompt else "Session limit reached. Please upgrade your plan.",
                details={"upgrade_prompt": prompt.model_dump(mode="json")} if prompt else None,
            )

        companion = self.companions.get(companion_id, viewer_id=user.id)

        now = utcnow()
        values = {
            "id": str(uuid.uuid4()),
            "user_id": user.id,
            "companion_id": companion.id,
            "status": SessionStatus.PENDING.value,
            "started_at": now,
            "created_at": now,
            "updated_at": now,
        }
        if companion.voice_assistant_id and self.voice is not None:
            try:
                call = self.voice.create_call(
                    companion.voice_assistant_id,
                    variables={
                        "studentName": user.display_name,
                        "sessionId": values["id"],
                        "subject": companion.subject,
                        "topic": companion.topic,
                    },
                )
                values["voice_call_id"] = call.id
                values["status"] = SessionStatus.ACTIVE.value
            except VoiceProviderError:
                self.logger.exception(
                    "sessions.call_failed",
                    extra={"user_id": user.id, "companion_id": companion.id},
                )

        try:
            with session_scope(self.session_factory) as session:
                session.execute(insert(learning_sessions).values(**values))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to start learning session: {exc}") from exc

        self.logger.info(
            "sessions.started",
            extra={"user_id": user.id, "session_id": values["id"], "status": values["status"]},
        )
        return self._fetch(values["id"])

    def get(self, session_id: str, user_id: str) -> LearningSession:
        learning_session = self._fetch(session_id)
        if learning_session.user_id != user_id:
            raise PermissionError("Access denied")
        return learning_session

    def list_for_user(self, user_id: str, limit: int = 10) -> List[LearningSession]:
        query = (
            select(learning_sessions)
            .where(learning_sessions.c.user_id == user_id)
            .order_by(learning_sessions.c.created_at.desc())
            .limit(min(max(limit, 1), 100))
        )
        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(query).fetchall()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Learning session lookup failed: {exc}") from exc
        return [_row_to_session(row) for row in rows]

    def complete(
        self,
        session_id: str,
        user_id: str,
        feedback: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> LearningSession:
        """
        Mark a session completed with optional feedback and rating.

        Transcript and duration come from the voice call when there is one;
        otherwise duration is the elapsed time since the session started.
        """
        current = self.get(session_id, user_id)
        if current.status == SessionStatus.COMPLETED:
            raise ConflictError("Learning session already completed")

        now = utcnow()
        transcript: Optional[str] = None
        duration: Optional[int] = None
        call_details = None
        if current.voice_call_id and self.voice is not None:
            try:
                call = self.voice.get_call(current.voice_call_id)
                transcript = call.transcript
                duration = call.duration_minutes
                call_details = {"status": call.status}
            except VoiceProviderError:
                self.logger.exception(
                    "sessions.call_lookup_failed",
                    extra={"user_id": user_id, "session_id": session_id},
                )
        if duration is None and current.started_at:
            duration = elapsed_minutes(current.started_at, now)

        values = {
            "status": SessionStatus.COMPLETED.value,
            "ended_at": now,
            "duration_minutes": duration,
            "transcript": transcript,
            "feedback": feedback,
            "rating": rating,
            "updated_at": now,
        }
        if call_details:
            values["call_details"] = call_details
        try:
            with session_scope(self.session_factory) as session:
                session.execute(
                    update(learning_sessions).where(learning_sessions.c.id == session_id).values(**values)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to complete learning session: {exc}") from exc

        self.logger.info(
            "sessions.completed",
            extra={"user_id": user_id, "session_id": session_id, "duration_minutes": duration},
        )
        return self._fetch(session_id)

    def stats(self, user_id: str) -> LearningStats:
        completed = learning_sessions.c.status == SessionStatus.COMPLETED.value
        try:
            with session_scope(self.session_factory) as session:
                total = session.execute(
                    select(func.count()).select_from(learning_sessions).where(learning_sessions.c.user_id == user_id)
                ).scalar() or 0
                row = session.execute(
                    select(
                        func.count(),
                        func.coalesce(func.sum(learning_sessions.c.duration_minutes), 0),
                        func.avg(learning_sessions.c.rating),
                    ).where(and_(learning_sessions.c.user_id == user_id, completed))
                ).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Learning stats failed: {exc}") from exc

        completed_count, total_minutes, avg_rating = row
        return LearningStats(
            total_sessions=total,
            completed_sessions=completed_count or 0,
            total_minutes=int(total_minutes or 0),
            average_rating=round(float(avg_rating), 2) if avg_rating is not None else None,
            sessions_this_month=self.usage_counter.count_sessions_this_month(user_id),
        )

    def _fetch(self, session_id: str) -> LearningSession:
        try:
            with session_scope(self.session_factory) as session:
                row = session.execute(
                    select(learning_sessions).where(learning_sessions.c.id == session_id)
                ).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Learning session lookup failed: {exc}") from exc
        if row is None:
            raise NotFoundError(f"Learning session {session_id} not found")
        return _row_to_session(row)
