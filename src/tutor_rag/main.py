"""FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from .api import router
from .config import get_settings
from .logging_config import configure_logging
from .service import TutorService, get_tutor_service

LOGGER = logging.getLogger(__name__)


def _resolve_service(app: FastAPI) -> TutorService:
    """Resolve the service while respecting FastAPI dependency overrides."""

    override: Any | None = app.dependency_overrides.get(get_tutor_service)
    return override() if override is not None else get_tutor_service()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    service = _resolve_service(app)
    service.start()
    LOGGER.info("Course assistant started")
    try:
        yield
    finally:
        service.stop()
        LOGGER.info("Course assistant stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_dir)
    application = FastAPI(title="Course Assistant RAG API", lifespan=lifespan)
    application.include_router(router)

    @application.get("/healthz", response_class=PlainTextResponse)
    def healthcheck() -> str:
        """Liveness probe used by container orchestrators."""
        return "ok"

    return application


app = create_app()
