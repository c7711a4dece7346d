import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from core.errors import NotFoundError, PersistenceError
from core.logging_setup import log_step
from core.orm import Database
from models import Meeting, Translation, User
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

LOG_STEP = "REPOSITORY"

# Connection failures can surface from the driver without being wrapped.
DATABASE_ERRORS = (SQLAlchemyError, OSError)


class MeetingRepository:
    """
    Meetings and their cached translations.

    Reads degrade to empty/absent results when the database is unavailable
    so pages keep rendering; writes raise PersistenceError.
    """

    def __init__(self, database: Optional[Database]):
        self.database = database

    @asynccontextmanager
    async def _read_session(self) -> AsyncIterator[Optional[AsyncSession]]:
        if self.database is None:
            with log_step(LOG_STEP):
                logger.warning("Read skipped: database not available.")
            yield None
            return
        async with self.database.session_factory() as session:
            yield session

    @asynccontextmanager
    async def _write_session(self) -> AsyncIterator[AsyncSession]:
        if self.database is None:
            raise PersistenceError("Database not available")
        async with self.database.session_factory() as session:
            yield session

    # --- Users ---

    async def upsert_user(self, open_id: str, name: str | None = None, email: str | None = None) -> User:
        """Creates or refreshes the user behind an identity-provider subject."""
        with log_step(LOG_STEP):
            try:
                async with self._write_session() as session:
                    result = await session.execute(select(User).where(User.open_id == open_id))
                    user = result.scalar_one_or_none()
                    if user is None:
                        user = User(open_id=open_id, name=name, email=email)
                        session.add(user)
                    else:
                        if name is not None:
                            user.name = name
                        if email is not None:
                            user.email = email
                        user.last_signed_in = func.now()
                    await session.commit()
                    await session.refresh(user)
                    return user
            except DATABASE_ERRORS as e:
                logger.error(f"Failed to upsert user '{open_id}': {e}", exc_info=True)
                raise PersistenceError("Failed to save user") from e

    async def get_user(self, user_id: int) -> User | None:
        with log_step(LOG_STEP):
            try:
                async with self._read_session() as session:
                    if session is None:
                        return None
                    return await session.get(User, user_id)
            except DATABASE_ERRORS as e:
                logger.error(f"Failed to load user {user_id}: {e}")
                return None

    # --- Meetings ---

    async def create_meeting(
        self,
        user_id: int,
        title: str,
        original_content: str,
        detected_language: str | None,
        image_url: str | None = None,
        image_key: str | None = None,
    ) -> Meeting:
        with log_step(LOG_STEP):
            try:
                async with self._write_session() as session:
                    meeting = Meeting(
                        user_id=user_id,
                        title=title,
                        original_content=original_content,
                        detected_language=detected_language,
                        image_url=image_url,
                        image_key=image_key,
                    )
                    session.add(meeting)
                    await session.commit()
                    await session.refresh(meeting)
                    logger.info(f"Created meeting {meeting.id} for user {user_id}.")
                    return meeting
            except DATABASE_ERRORS as e:
                logger.error(f"Failed to create meeting: {e}", exc_info=True)
                raise PersistenceError("Failed to save meeting") from e

    async def get_meeting(self, meeting_id: int) -> Meeting | None:
        with log_step(LOG_STEP):
            try:
                async with self._read_session() as session:
                    if session is None:
                        return None
                    return await session.get(Meeting, meeting_id)
            except DATABASE_ERRORS as e:
                logger.error(f"Failed to load meeting {meeting_id}: {e}")
                return None

    async def list_user_meetings(self, user_id: int) -> List[Meeting]:
        with log_step(LOG_STEP):
            try:
                async with self._read_session() as session:
                    if session is None:
                        return []
                    result = await session.execute(
                        select(Meeting)
                        .where(Meeting.user_id == user_id)
                        .order_by(Meeting.created_at.desc(), Meeting.id.desc())
                    )
                    return list(result.scalars().all())
            except DATABASE_ERRORS as e:
                logger.error(f"Failed to list meetings for user {user_id}: {e}")
                return []

    async def delete_meeting(self, meeting_id: int) -> bool:
        """Deletes the meeting and every translation cached for it."""
        with log_step(LOG_STEP):
            try:
                async with self._write_session() as session:
                    await session.execute(
                        delete(Translation).where(Translation.meeting_id == meeting_id)
                    )
                    result = await session.execute(delete(Meeting).where(Meeting.id == meeting_id))
                    await session.commit()
                    deleted = result.rowcount > 0
                    logger.info(f"Deleted meeting {meeting_id} (existed: {deleted}).")
                    return deleted
            except DATABASE_ERRORS as e:
                logger.error(f"Failed to delete meeting {meeting_id}: {e}", exc_info=True)
                raise PersistenceError("Failed to delete meeting") from e

    # --- Translations ---

    async def get_translation(self, meeting_id: int, target_language: str) -> Translation | None:
        with log_step(LOG_STEP):
            try:
                async with self._read_session() as session:
                    if session is None:
                        return None
                    return await self._select_translation(session, meeting_id, target_language)
            except DATABASE_ERRORS as e:
                logger.error(
                    f"Failed to load translation ({meeting_id}, {target_language}): {e}"
                )
                return None

    async def list_translations(self, meeting_id: int) -> List[Translation]:
        with log_step(LOG_STEP):
            try:
                async with self._read_session() as session:
                    if session is None:
                        return []
                    result = await session.execute(
                        select(Translation)
                        .where(Translation.meeting_id == meeting_id)
                        .order_by(Translation.created_at.desc(), Translation.id.desc())
                    )
                    return list(result.scalars().all())
            except DATABASE_ERRORS as e:
                logger.error(f"Failed to list translations for meeting {meeting_id}: {e}")
                return []

    async def insert_translation_if_absent(
        self,
        meeting_id: int,
        target_language: str,
        translated_content: str,
        summary: str,
        action_items: str,
    ) -> Translation:
        """
        Inserts the translation unless one already exists for the
        (meeting_id, target_language) key, in which case the existing row is
        returned untouched.
        """
        with log_step(LOG_STEP):
            try:
                async with self._write_session() as session:
                    existing = await self._select_translation(session, meeting_id, target_language)
                    if existing is not None:
                        logger.info(
                            f"Translation ({meeting_id}, {target_language}) already cached; keeping it."
                        )
                        return existing

                    translation = Translation(
                        meeting_id=meeting_id,
                        target_language=target_language,
                        translated_content=translated_content,
                        summary=summary,
                        action_items=action_items,
                    )
                    session.add(translation)
                    try:
                        await session.commit()
                    except IntegrityError:
                        await session.rollback()
                        existing = await self._select_translation(
                            session, meeting_id, target_language
                        )
                        if existing is not None:
                            logger.info(
                                f"Lost insert race for ({meeting_id}, {target_language}); returning cached row."
                            )
                            return existing
                        # No conflicting row: the meeting itself is gone.
                        raise NotFoundError("Meeting not found")

                    await session.refresh(translation)
                    logger.info(
                        f"Cached translation {translation.id} for ({meeting_id}, {target_language})."
                    )
                    return translation
            except DATABASE_ERRORS as e:
                logger.error(
                    f"Failed to save translation ({meeting_id}, {target_language}): {e}",
                    exc_info=True,
                )
                raise PersistenceError("Failed to save translation") from e

    @staticmethod
    async def _select_translation(
        session: AsyncSession, meeting_id: int, target_language: str
    ) -> Translation | None:
        result = await session.execute(
            select(Translation).where(
                Translation.meeting_id == meeting_id,
                Translation.target_language == target_language,
            )
        )
        return result.scalar_one_or_none()
