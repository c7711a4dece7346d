import asyncio
import base64
import binascii
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, Hashable, List

from core.errors import InvalidInputError, NotFoundError, ProviderError
from core.logging_setup import log_meeting, log_step
from models import Meeting, Translation

from .ocr import OcrService, validate_image_for_ocr
from .repository import MeetingRepository
from .storage import BlobStore
from .summarization import MeetingSummary, SummaryService, format_summary_for_export
from .translation import TranslationProvider

logger = logging.getLogger(__name__)

LOG_STEP = "WORKFLOW"

BATCH_TRANSLATION_CONCURRENCY = 3


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand and dropped once no task
    holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class MeetingWorkflow:
    """
    Orchestrates meeting creation, cached translation/summary, and export.

    A Translation is computed at most once per (meeting_id, target_language):
    later requests are served from the database without any remote call, and
    concurrent requests for the same pair wait on one another instead of
    translating twice.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        translator: TranslationProvider,
        summarizer: SummaryService,
        ocr: OcrService,
        blob_store: BlobStore,
    ):
        self.repository = repository
        self.translator = translator
        self.summarizer = summarizer
        self.ocr = ocr
        self.blob_store = blob_store
        self._translation_locks = KeyedLock()

    # --- Create ---

    async def create_from_text(self, user_id: int, title: str, content: str) -> Meeting:
        if not title or not title.strip():
            raise InvalidInputError("Title is required")
        if not content or not content.strip():
            raise InvalidInputError("Content is required")

        with log_step(LOG_STEP):
            try:
                detected_language = await self.translator.detect_language(content)
            except ProviderError as e:
                logger.warning(f"Language detection failed, storing meeting without it: {e}")
                detected_language = None

            meeting = await self.repository.create_meeting(
                user_id=user_id,
                title=title,
                original_content=content,
                detected_language=detected_language,
            )
            logger.info(f"Meeting {meeting.id} created from text (language: {detected_language}).")
            return meeting

    async def create_from_image(
        self,
        user_id: int,
        title: str,
        image_data: str,
        mime_type: str,
        file_size: int,
    ) -> Meeting:
        """
        Stores the photo, OCRs it and saves the extracted text as a new
        meeting. Nothing is uploaded or sent to a model when validation fails,
        and no meeting is saved when the image yields no text.
        """
        if not title or not title.strip():
            raise InvalidInputError("Title is required")
        validate_image_for_ocr(file_size, mime_type)

        payload = image_data.split(",", 1)[1] if "," in image_data else image_data
        # Base64 from browsers and mail clients may be wrapped across lines.
        payload = "".join(payload.split())
        try:
            image_bytes = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidInputError("Image data is not valid base64") from e
        validate_image_for_ocr(len(image_bytes), mime_type)

        extension = mime_type.split("/")[-1] or "jpg"
        file_key = f"meetings/{user_id}/{uuid.uuid4().hex}.{extension}"

        with log_step(LOG_STEP):
            stored = await self.blob_store.put(file_key, image_bytes, mime_type)
            ocr_result = await self.ocr.extract_text_and_language(stored.url)

            if not ocr_result.extracted_text:
                logger.warning(f"No text extracted from uploaded image '{file_key}'.")
                raise InvalidInputError("No text could be extracted from the image")

            meeting = await self.repository.create_meeting(
                user_id=user_id,
                title=title,
                original_content=ocr_result.extracted_text,
                detected_language=ocr_result.detected_language,
                image_url=stored.url,
                image_key=stored.key,
            )
            logger.info(
                f"Meeting {meeting.id} created from image ({len(ocr_result.extracted_text)} chars)."
            )
            return meeting

    # --- Translate ---

    async def translate(self, meeting_id: int, target_language: str) -> Translation:
        if not target_language or not target_language.strip():
            raise InvalidInputError("Target language must be specified")

        with log_meeting(meeting_id), log_step(LOG_STEP):
            cached = await self.repository.get_translation(meeting_id, target_language)
            if cached is not None:
                logger.debug(f"Cache hit for {target_language}.")
                return cached

            async with self._translation_locks.hold((meeting_id, target_language)):
                # Another request may have filled the cache while we waited.
                cached = await self.repository.get_translation(meeting_id, target_language)
                if cached is not None:
                    logger.debug(f"Cache filled by a concurrent request for {target_language}.")
                    return cached

                meeting = await self.repository.get_meeting(meeting_id)
                if meeting is None:
                    raise NotFoundError("Meeting not found")

                logger.info(f"Cache miss for {target_language}; translating.")
                translated = await self.translator.translate(
                    meeting.original_content,
                    target_language,
                    meeting.detected_language or None,
                )
                summary = await self.summarizer.summarize(translated)

                return await self.repository.insert_translation_if_absent(
                    meeting_id=meeting_id,
                    target_language=target_language,
                    translated_content=translated,
                    summary=summary.summary,
                    action_items=summary.serialize(),
                )

    async def translate_many(
        self,
        meeting_id: int,
        target_languages: List[str],
        concurrency: int = BATCH_TRANSLATION_CONCURRENCY,
    ) -> List[Translation]:
        """
        Translates one meeting into several languages, at most `concurrency`
        at a time. Results keep the order of `target_languages`.
        """
        if not target_languages:
            raise InvalidInputError("At least one target language is required")

        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _one(language: str) -> Translation:
            async with semaphore:
                return await self.translate(meeting_id, language)

        with log_meeting(meeting_id), log_step(LOG_STEP):
            logger.info(f"Batch translation into: {', '.join(target_languages)}")
        return list(await asyncio.gather(*(_one(lang) for lang in target_languages)))

    async def get_translation(self, meeting_id: int, target_language: str) -> Translation | None:
        return await self.repository.get_translation(meeting_id, target_language)

    async def list_translations(self, meeting_id: int) -> List[Translation]:
        return await self.repository.list_translations(meeting_id)

    # --- Export ---

    async def export(self, meeting_id: int, target_language: str) -> str:
        """Renders the cached translation; never triggers a new translation."""
        with log_meeting(meeting_id), log_step(LOG_STEP):
            meeting = await self.repository.get_meeting(meeting_id)
            if meeting is None:
                raise NotFoundError("Meeting not found")

            translation = await self.repository.get_translation(meeting_id, target_language)
            if translation is None:
                raise NotFoundError("Translation not found")

            summary = MeetingSummary.from_serialized(
                translation.action_items, fallback_summary=translation.summary or ""
            )

            logger.info(f"Exporting {target_language} summary.")
            return format_summary_for_export(
                original_content=meeting.original_content,
                translated_content=translation.translated_content,
                summary=summary,
                source_language=meeting.detected_language or "unknown",
                target_language=target_language,
            )

    # --- CRUD ---

    async def list_meetings(self, user_id: int) -> List[Meeting]:
        return await self.repository.list_user_meetings(user_id)

    async def get_meeting(self, meeting_id: int) -> Meeting | None:
        return await self.repository.get_meeting(meeting_id)

    async def delete_meeting(self, meeting_id: int) -> bool:
        with log_meeting(meeting_id), log_step(LOG_STEP):
            deleted = await self.repository.delete_meeting(meeting_id)
            if not deleted:
                logger.info("Delete requested for a meeting that does not exist.")
            return deleted
