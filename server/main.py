import logging

from core.logging_setup import setup_logging

setup_logging()

from core.config import settings

logger = logging.getLogger(__name__)

logger.info(f"Configuration loaded. Log level set to: {settings.LOGGING_LEVEL}")

from contextlib import asynccontextmanager

from api.auth import create_auth_router
from api.health import create_health_router
from api.meetings import create_meetings_router
from core.errors import MeetingServiceError
from core.logging_setup import log_step
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from services.app_services import AppServices, build_app_services


def create_app(services: AppServices | None = None) -> FastAPI:
    """
    Builds the application. When `services` is given (tests), the lifespan
    uses it as-is and leaves closing it to the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = await build_app_services(settings) if owned else services
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()

    app = FastAPI(
        title="Meeting Notes Translation API",
        description="Translate and summarize meeting notes, typed or photographed, with per-language caching.",
        lifespan=lifespan,
    )

    @app.exception_handler(MeetingServiceError)
    async def meeting_service_error_handler(request: Request, exc: MeetingServiceError):
        with log_step("API"):
            if exc.status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
            else:
                logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    app.include_router(create_meetings_router())
    app.include_router(create_auth_router())
    app.include_router(create_health_router())

    # An absolute STORAGE_PUBLIC_URL means something else serves the files.
    if not settings.STORAGE_API_URL and settings.STORAGE_PUBLIC_URL.startswith("/"):
        app.mount(
            settings.STORAGE_PUBLIC_URL.rstrip("/") or "/uploads",
            StaticFiles(directory=settings.STORAGE_DIR, check_dir=False),
            name="uploads",
        )

    return app


app = create_app()
