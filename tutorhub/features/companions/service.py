"""
Companion service.

Creating a companion is gated by the author's tier limit. A voice assistant
is provisioned when a voice provider is configured; provider failures leave
the companion without an assistant instead of failing the request.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select, insert, update, delete, func, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tutorhub.core.database import session_scope, companions, as_utc, utcnow
from tutorhub.core.errors import LimitExceededError, NotFoundError, PermissionError, PersistenceError
from tutorhub.features.limits.service import LimitEvaluator
from tutorhub.features.voice.prompts import build_instructions, voice_config
from tutorhub.features.voice.provider import VoiceProvider, VoiceProviderError
from tutorhub.models.companion import Companion, CompanionCreate, CompanionStats, CompanionUpdate

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _row_to_companion(row) -> Companion:
    return Companion(
        id=row.id,
        author_id=row.author_id,
        name=row.name,
        subject=row.subject,
        topic=row.topic,
        style=row.style,
        voice=row.voice,
        duration=row.duration,
        instructions=row.instructions,
        is_public=bool(row.is_public),
        voice_assistant_id=row.voice_assistant_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class CompanionService:
    def __init__(
        self,
        session_factory: sessionmaker,
        limits: LimitEvaluator,
        voice: Optional[VoiceProvider] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_factory = session_factory
        self.limits = limits
        self.voice = voice
        self.logger = logger or logging.getLogger("tutorhub")

    def create(self, author_id: str, data: CompanionCreate) -> Companion:
        """
        Create a companion for `author_id`.

        Raises:
            LimitExceededError: author is at their tier's companion limit;
                details carry the upgrade prompt
        """
        check = self.limits.check_companion_limit(author_id)
        if not check.can_create:
            prompt = check.upgrade_prompt
            raise LimitExceededError(
                prompt.message if prompt else "Companion limit reached. Please upgrade your plan.",
                details={"upgrade_prompt": prompt.model_dump(mode="json")} if prompt else None,
            )

        instructions = data.instructions or build_instructions(
            name=data.name,
            subject=data.subject,
            topic=data.topic,
            style=data.style,
            duration=data.duration,
        )
        assistant_id = self._provision_assistant(data.name, instructions, data.voice)

        now = utcnow()
        values = {
            "id": str(uuid.uuid4()),
            "author_id": author_id,
            "name": data.name,
            "subject": data.subject.lower(),
            "topic": data.topic,
            "style": data.style.value,
            "voice": data.voice.value,
            "duration": data.duration,
            "instructions": instructions,
            "is_public": data.is_public,
            "voice_assistant_id": assistant_id,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with session_scope(self.session_factory) as session:
                session.execute(insert(companions).values(**values))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create companion: {exc}") from exc

        self.logger.info(
            "companions.created",
            extra={"user_id": author_id, "companion_id": values["id"], "has_assistant": bool(assistant_id)},
        )
        return Companion(**values)

    def get(self, companion_id: str, viewer_id: Optional[str] = None) -> Companion:
        companion = self._fetch(companion_id)
        if not companion.is_public and companion.author_id != viewer_id:
            raise NotFoundError(f"Companion {companion_id} not found")
        return companion

    def list_for_user(self, author_id: str, limit: int = DEFAULT_PAGE_SIZE) -> List[Companion]:
        query = (
            select(companions)
            .where(companions.c.author_id == author_id)
            .order_by(companions.c.created_at.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
        )
        return self._fetch_many(query)

    def list_public(
        self,
        subject: Optional[str] = None,
        topic: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[Companion]:
        """Public companions, newest first; `topic` matches topic or name."""
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        page = max(page, 1)
        conditions = [companions.c.is_public.is_(True)]
        if subject:
            conditions.append(companions.c.subject == subject.lower())
        if topic:
            pattern = f"%{topic.lower()}%"
            conditions.append(or_(
                func.lower(companions.c.topic).like(pattern),
                func.lower(companions.c.name).like(pattern),
            ))
        query = (
            select(companions)
            .where(and_(*conditions))
            .order_by(companions.c.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return self._fetch_many(query)

    def update(self, companion_id: str, user_id: str, changes: CompanionUpdate) -> Companion:
        existing = self._fetch(companion_id)
        if existing.author_id != user_id:
            raise PermissionError("Only the author can update this companion")

        values = changes.model_dump(exclude_unset=True, exclude_none=True, mode="json")
        if "subject" in values:
            values["subject"] = values["subject"].lower()
        if not values:
            return existing
        values["updated_at"] = utcnow()
        try:
            with session_scope(self.session_factory) as session:
                session.execute(update(companions).where(companions.c.id == companion_id).values(**values))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update companion: {exc}") from exc
        return self._fetch(companion_id)

    def delete(self, companion_id: str, user_id: str) -> None:
        existing = self._fetch(companion_id)
        if existing.author_id != user_id:
            raise PermissionError("Only the author can delete this companion")
        try:
            with session_scope(self.session_factory) as session:
                session.execute(delete(companions).where(companions.c.id == companion_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete companion: {exc}") from exc
        self.logger.info("companions.deleted", extra={"user_id": user_id, "companion_id": companion_id})

    def stats(self, user_id: str) -> CompanionStats:
        try:
            with session_scope(self.session_factory) as session:
                total = session.execute(select(func.count()).select_from(companions)).scalar() or 0
                mine = session.execute(
                    select(func.count()).select_from(companions).where(companions.c.author_id == user_id)
                ).scalar() or 0
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Companion stats failed: {exc}") from exc
        return CompanionStats(total_companions=total, user_companions=mine)

    def _provision_assistant(self, name: str, instructions: str, voice) -> Optional[str]:
        if self.voice is None:
            return None
        try:
            assistant = self.voice.create_assistant(
                name=name,
                instructions=instructions,
                voice=voice_config(voice),
            )
        except VoiceProviderError:
            self.logger.exception("companions.assistant_failed", extra={"companion_name": name})
            return None
        return assistant.id

    def _fetch(self, companion_id: str) -> Companion:
        try:
            with session_scope(self.session_factory) as session:
                row = session.execute(select(companions).where(companions.c.id == companion_id)).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Companion lookup failed: {exc}") from exc
        if row is None:
            raise NotFoundError(f"Companion {companion_id} not found")
        return _row_to_companion(row)

    def _fetch_many(self, query) -> List[Companion]:
        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(query).fetchall()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Companion lookup failed: {exc}") from exc
        return [_row_to_companion(row) for row in rows]
