import logging
from dataclasses import dataclass, field
from typing import Optional

import ollama
from core.config import Settings
from core.logging_setup import log_step
from core.orm import Database
from integrations.oauth import OAuthClient
from openai import AsyncOpenAI

from .meeting_workflow import MeetingWorkflow
from .ocr import OcrService
from .repository import MeetingRepository
from .storage import BlobStore, HttpBlobStore, LocalBlobStore, resolve_public_base_url
from .summarization import SummaryService
from .translation import (
    CloudTranslationProvider,
    LocalTranslationProvider,
    TranslationProvider,
    build_translation_provider,
)

logger = logging.getLogger(__name__)

LOG_STEP = "STARTUP"


@dataclass
class AppServices:
    """
    Everything a request handler needs, built once at startup and torn down
    at shutdown. Network clients are owned here rather than created lazily.
    """

    workflow: MeetingWorkflow
    repository: MeetingRepository
    translator: TranslationProvider
    translation_mode: str
    cloud_fallback_enabled: bool
    database: Optional[Database] = None
    blob_store: Optional[BlobStore] = None
    local_translator: Optional[LocalTranslationProvider] = None
    cloud_client: Optional[AsyncOpenAI] = field(default=None, repr=False)
    oauth: Optional[OAuthClient] = None

    async def close(self):
        with log_step(LOG_STEP):
            if self.blob_store is not None:
                await self.blob_store.close()
            if self.cloud_client is not None:
                await self.cloud_client.close()
            if self.oauth is not None:
                await self.oauth.close()
            if self.database is not None:
                await self.database.close()
            logger.info("Application services closed.")


async def build_app_services(settings: Settings) -> AppServices:
    with log_step(LOG_STEP):
        database = Database(settings.DATABASE_URL)
        await database.init()

        cloud_client = AsyncOpenAI(
            api_key=settings.CLOUD_API_KEY or "unset",
            base_url=settings.CLOUD_BASE_URL,
            timeout=settings.REMOTE_TIMEOUT_SECONDS,
        )
        if not settings.CLOUD_API_KEY:
            logger.warning("CLOUD_API_KEY is not set; cloud model calls will fail.")

        cloud = CloudTranslationProvider(cloud_client, settings.CLOUD_MODEL)

        local = None
        if settings.TRANSLATION_MODE.strip().lower() == "local":
            client_kwargs = {
                "host": settings.OLLAMA_URL,
                "timeout": settings.REMOTE_TIMEOUT_SECONDS,
            }
            if settings.OLLAMA_API_KEY.strip():
                client_kwargs["headers"] = {
                    "Authorization": f"Bearer {settings.OLLAMA_API_KEY.strip()}"
                }
                logger.debug("Ollama client initialized with Bearer auth.")
            local = LocalTranslationProvider(
                ollama.AsyncClient(**client_kwargs), settings.OLLAMA_MODEL
            )

        translator = build_translation_provider(
            settings.TRANSLATION_MODE, cloud, local, settings.ENABLE_CLOUD_FALLBACK
        )

        if settings.STORAGE_API_URL:
            blob_store: BlobStore = HttpBlobStore(
                settings.STORAGE_API_URL,
                settings.STORAGE_API_KEY,
                timeout=settings.REMOTE_TIMEOUT_SECONDS,
            )
        else:
            blob_store = LocalBlobStore(
                settings.STORAGE_DIR,
                resolve_public_base_url(settings.APP_BASE_URL, settings.STORAGE_PUBLIC_URL),
            )

        oauth = None
        if settings.OAUTH_AUTHORIZE_URL and settings.OAUTH_CLIENT_ID:
            oauth = OAuthClient(
                authorize_url=settings.OAUTH_AUTHORIZE_URL,
                token_url=settings.OAUTH_TOKEN_URL,
                userinfo_url=settings.OAUTH_USERINFO_URL,
                client_id=settings.OAUTH_CLIENT_ID,
                client_secret=settings.OAUTH_CLIENT_SECRET,
                app_base_url=settings.APP_BASE_URL,
                scope=settings.OAUTH_SCOPE,
            )
        else:
            logger.warning("OAuth is not configured; /api/auth/login is disabled.")

        repository = MeetingRepository(database)
        workflow = MeetingWorkflow(
            repository=repository,
            translator=translator,
            summarizer=SummaryService(cloud_client, settings.CLOUD_MODEL),
            ocr=OcrService(cloud_client, settings.CLOUD_MODEL),
            blob_store=blob_store,
        )

        logger.info(
            f"Services ready. Translation mode: {settings.TRANSLATION_MODE} "
            f"(provider: {getattr(translator, 'name', type(translator).__name__)}, "
            f"cloud fallback: {settings.ENABLE_CLOUD_FALLBACK})."
        )

        return AppServices(
            workflow=workflow,
            repository=repository,
            translator=translator,
            translation_mode=settings.TRANSLATION_MODE.strip().lower(),
            cloud_fallback_enabled=settings.ENABLE_CLOUD_FALLBACK,
            database=database,
            blob_store=blob_store,
            local_translator=local,
            cloud_client=cloud_client,
            oauth=oauth,
        )
