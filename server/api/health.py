# /api/health || database and translation provider status

import logging

from core.logging_setup import log_step
from fastapi import APIRouter, Depends
from services.app_services import AppServices

from api.dependencies import get_services

logger = logging.getLogger(__name__)


def create_health_router() -> APIRouter:
    """
    Creates the REST API router for the health check.
    """
    router = APIRouter(
        prefix="/api/health",
    )
    LOG_STEP = "API-HEALTH"

    @router.get("")
    async def health(services: AppServices = Depends(get_services)):
        """
        Reports database reachability and the active translation setup. In
        local mode it also checks that the Ollama model is pulled.
        """
        with log_step(LOG_STEP):
            database_ok = services.database is not None and await services.database.ping()

            translation = {
                "mode": services.translation_mode,
                "cloudFallbackEnabled": services.cloud_fallback_enabled,
            }
            if services.local_translator is not None:
                translation["localModelAvailable"] = (
                    await services.local_translator.check_health()
                )

            degraded = not database_ok or translation.get("localModelAvailable") is False
            if degraded:
                logger.warning(f"Health check degraded: database={database_ok}, {translation}")

            return {
                "status": "degraded" if degraded else "ok",
                "database": "ok" if database_ok else "unavailable",
                "translation": translation,
            }

    return router
