"""
FastAPI application for the UserPulse service.

This module initializes and configures the FastAPI application that serves
the analysis job endpoints.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from userpulse.api.endpoints import analyze
from userpulse.config.settings import Settings, settings as default_settings
from userpulse.core.errors import JobNotFound, JobNotReady, UserPulseError
from userpulse.core.service import UserPulseService, build_service
from userpulse.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def create_app(service: Optional[UserPulseService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Pre-built service to serve. When omitted one is built from
            settings at startup and closed at shutdown.
        settings: Settings to configure the app with.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    settings = settings or (service.settings if service else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = service is None
        if owned:
            setup_logging()
            app.state.service = build_service(settings)
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

        yield

        logger.info("Shutting down application")
        if owned:
            await app.state.service.close()
        else:
            await app.state.service.orchestrator.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""Competitive intelligence API.

        Start an analysis job for a product and up to three competitors, poll
        its progress and fetch the final report with its coverage metadata.""",
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_tags=[
            {"name": "analyze", "description": "Analysis job operations"},
            {"name": "health", "description": "Health check and monitoring"},
        ],
    )
    if service is not None:
        app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.DEBUG else ["*"],
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS if not settings.DEBUG else ["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid input data", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(UserPulseError)
    async def service_error_handler(request: Request, exc: UserPulseError) -> JSONResponse:
        if isinstance(exc, JobNotFound):
            content = {"error": "Invalid job id"}
        elif isinstance(exc, JobNotReady):
            content = {"error": "Not ready"}
        else:
            logger.error(f"Request to {request.url.path} failed: {exc}")
            content = {"error": exc.message or exc.__class__.__name__}
        return JSONResponse(status_code=exc.status_code, content=content)

    app.include_router(analyze.router, prefix="/api/v1/analyze", tags=["analyze"])

    @app.get("/health", tags=["health"], summary="Health Check")
    async def health_check(request: Request):
        """Service status, version and the number of jobs currently running."""
        svc: UserPulseService = request.app.state.service
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "jobs_in_flight": svc.orchestrator.in_flight,
            "prometheus": "enabled" if svc.prometheus_exporter else "disabled",
            "debug_mode": settings.DEBUG,
        }

    return app


# Create the application instance
app = create_app()
