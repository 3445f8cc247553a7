"""
FastAPI application for the sync engine.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..exceptions import (
    AuthExpiredError,
    ConfigurationError,
    ForbiddenError,
    GBPSyncError,
    InsufficientScopesError,
    NoRefreshTokenError,
    NotFoundError,
    PublishStateError,
    TransientNetworkError,
    ValidationError,
)
from ..models.base import utcnow
from .routes import (
    EngineServices, set_services, cron_router, accounts_router, publish_router, oauth_router
)

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Checked in order; subclasses must come before their bases
ERROR_STATUS = (
    (InsufficientScopesError, 403),
    (NotFoundError, 404),
    (ValidationError, 400),
    (ForbiddenError, 403),
    (PublishStateError, 409),
    (NoRefreshTokenError, 401),
    (AuthExpiredError, 401),
    (TransientNetworkError, 503),
    (ConfigurationError, 503),
)


def status_for_error(error: GBPSyncError) -> int:
    """HTTP status for an engine error; unclassified failures are 502."""
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 502


def create_app(services: Optional[EngineServices] = None) -> FastAPI:
    """
    Build the HTTP API.

    Args:
        services: Engine services used by the route handlers. Routes answer
            503 until services are set.

    Returns:
        Configured FastAPI application
    """
    set_services(services)

    app = FastAPI(
        title="GBP Sync API",
        description="Google Business Profile token lifecycle, sync and publishing",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    cors_origins = list(services.server_config.cors_origins) if services else []
    logger.info(f"CORS allowed origins: {cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Check API health status."""
        return {
            "status": "healthy" if services else "starting",
            "version": API_VERSION,
            "server_time": utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

    app.include_router(cron_router, tags=["Cron"])
    app.include_router(accounts_router, tags=["Accounts"])
    app.include_router(publish_router, tags=["Publish"])
    app.include_router(oauth_router, tags=["OAuth"])

    @app.exception_handler(GBPSyncError)
    async def engine_error_handler(request: Request, exc: GBPSyncError):
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        body = exc.to_dict()
        body["details"] = exc.provider_body or exc.message
        return JSONResponse(status_code=status_code, content=body)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unexpected error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An internal error occurred",
                "retryable": False,
                "requires_reconnect": False,
            },
        )

    return app
