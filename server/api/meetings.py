import logging
from datetime import datetime
from typing import List, Optional

from core.authentication import get_current_user_id
from core.errors import NotFoundError
from core.logging_setup import log_step
from fastapi import APIRouter, Depends, Query
from models import Meeting
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from services.meeting_workflow import MeetingWorkflow

from api.dependencies import get_workflow

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class MeetingResponse(CamelModel):
    id: int
    user_id: int
    title: str
    original_content: str
    detected_language: str | None
    image_url: str | None
    image_key: str | None
    created_at: datetime | None
    updated_at: datetime | None


class TranslationResponse(CamelModel):
    id: int
    meeting_id: int
    target_language: str
    translated_content: str
    summary: str | None
    action_items: str | None


class CreateMeetingRequest(CamelModel):
    title: str
    content: str


class CreateMeetingResponse(CamelModel):
    id: int
    detected_language: str | None


class CreateFromImageRequest(CamelModel):
    title: str
    image_data: str = Field(description="Base64 image, optionally as a data: URL")
    mime_type: str
    file_size: int


class CreateFromImageResponse(CamelModel):
    id: int
    detected_language: str | None
    extracted_text: str
    image_url: str | None


class TranslateRequest(CamelModel):
    target_language: str


class BatchTranslateRequest(CamelModel):
    target_languages: List[str]


class ExportResponse(BaseModel):
    content: str


class DeleteResponse(BaseModel):
    success: bool


def create_meetings_router() -> APIRouter:
    """
    Creates the REST API router for meetings, their cached translations
    and summary export. Every route requires an authenticated user, and a
    meeting owned by someone else is treated as absent.
    """
    router = APIRouter(
        prefix="/api/meetings",
    )
    LOG_STEP = "API-MEETINGS"

    async def _owned_meeting(
        workflow: MeetingWorkflow, meeting_id: int, user_id: int
    ) -> Optional[Meeting]:
        meeting = await workflow.get_meeting(meeting_id)
        if meeting is None or meeting.user_id != user_id:
            return None
        return meeting

    async def _require_owned_meeting(
        workflow: MeetingWorkflow, meeting_id: int, user_id: int
    ) -> Meeting:
        meeting = await _owned_meeting(workflow, meeting_id, user_id)
        if meeting is None:
            raise NotFoundError("Meeting not found")
        return meeting

    @router.get("", response_model=List[MeetingResponse])
    async def list_meetings(
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Lists the caller's meetings, newest first."""
        with log_step(LOG_STEP):
            meetings = await workflow.list_meetings(user_id)
            logger.debug(f"Found {len(meetings)} meetings.")
            return meetings

    @router.post("", response_model=CreateMeetingResponse)
    async def create_meeting(
        body: CreateMeetingRequest,
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Creates a meeting from typed notes and detects their language."""
        with log_step(LOG_STEP):
            meeting = await workflow.create_from_text(user_id, body.title, body.content)
            return CreateMeetingResponse(
                id=meeting.id, detected_language=meeting.detected_language
            )

    @router.post("/image", response_model=CreateFromImageResponse)
    async def create_meeting_from_image(
        body: CreateFromImageRequest,
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Creates a meeting from a photo of notes (whiteboard, handwriting, slides)."""
        with log_step(LOG_STEP):
            logger.info(f"Image upload: {body.mime_type}, {body.file_size} bytes declared.")
            meeting = await workflow.create_from_image(
                user_id,
                body.title,
                body.image_data,
                body.mime_type,
                body.file_size,
            )
            return CreateFromImageResponse(
                id=meeting.id,
                detected_language=meeting.detected_language,
                extracted_text=meeting.original_content,
                image_url=meeting.image_url,
            )

    @router.get("/{meeting_id}", response_model=Optional[MeetingResponse])
    async def get_meeting(
        meeting_id: int,
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Returns the meeting, or null when it does not exist."""
        return await _owned_meeting(workflow, meeting_id, user_id)

    @router.delete("/{meeting_id}", response_model=DeleteResponse)
    async def delete_meeting(
        meeting_id: int,
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Deletes the meeting together with all of its cached translations."""
        with log_step(LOG_STEP):
            if await _owned_meeting(workflow, meeting_id, user_id) is None:
                return DeleteResponse(success=False)
            deleted = await workflow.delete_meeting(meeting_id)
            return DeleteResponse(success=deleted)

    @router.post("/{meeting_id}/translate", response_model=TranslationResponse)
    async def translate_meeting(
        meeting_id: int,
        body: TranslateRequest,
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """
        Returns the cached translation and summary for the target language,
        computing and caching them on first request.
        """
        with log_step(LOG_STEP):
            await _require_owned_meeting(workflow, meeting_id, user_id)
            return await workflow.translate(meeting_id, body.target_language)

    @router.post("/{meeting_id}/translate/batch", response_model=List[TranslationResponse])
    async def translate_meeting_batch(
        meeting_id: int,
        body: BatchTranslateRequest,
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Translates into several languages; results follow the request order."""
        with log_step(LOG_STEP):
            await _require_owned_meeting(workflow, meeting_id, user_id)
            return await workflow.translate_many(meeting_id, body.target_languages)

    @router.get("/{meeting_id}/translation", response_model=Optional[TranslationResponse])
    async def get_translation(
        meeting_id: int,
        target_language: str = Query(..., alias="targetLanguage"),
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Returns the cached translation, or null. Never translates."""
        if await _owned_meeting(workflow, meeting_id, user_id) is None:
            return None
        return await workflow.get_translation(meeting_id, target_language)

    @router.get("/{meeting_id}/translations", response_model=List[TranslationResponse])
    async def list_translations(
        meeting_id: int,
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        if await _owned_meeting(workflow, meeting_id, user_id) is None:
            return []
        return await workflow.list_translations(meeting_id)

    @router.get("/{meeting_id}/export", response_model=ExportResponse)
    async def export_meeting(
        meeting_id: int,
        target_language: str = Query(..., alias="targetLanguage"),
        user_id: int = Depends(get_current_user_id),
        workflow: MeetingWorkflow = Depends(get_workflow),
    ):
        """Renders the Markdown summary document for an already cached translation."""
        with log_step(LOG_STEP):
            await _require_owned_meeting(workflow, meeting_id, user_id)
            content = await workflow.export(meeting_id, target_language)
            return ExportResponse(content=content)

    return router
