"""BMNL Radar FastAPI application entry point.

Configures the FastAPI app with:
- CORS and security middleware
- Lifespan events for the database pool, answer cipher and questionnaire
- Route registration (health, auth, participants, consent, analytics, organizer, admin)
- Domain error handlers returning ``{"error", "detail", "request_id"}``
- OpenAPI documentation at /docs (debug mode only)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from src.api.middleware.security import RequestIDMiddleware, SecurityHeadersMiddleware
from src.api.routes import admin, analytics, bmnl, consent, health, organizer
from src.api.routes import auth as auth_routes
from src.api.routes.auth import limiter
from src.api.version import API_VERSION
from src.bmnl.questionnaire import load_questionnaire
from src.core.config import get_settings
from src.core.database import create_engine
from src.core.encryption import create_answer_cipher
from src.core.errors import BmnlError, StorageFailure, Unauthorized

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    On startup: build the answer cipher (fails fast on a missing key),
    load the questionnaire, and open the database pool.
    On shutdown: dispose of the pool.
    """
    settings = get_settings()

    # -- Key material and scoring config ---
    app.state.answer_cipher = create_answer_cipher(settings)
    app.state.questionnaire = load_questionnaire(settings.questionnaire_path)
    logger.info("Answer cipher and questionnaire initialized")

    # -- PostgreSQL ---
    engine, session_factory = create_engine(settings)
    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    logger.info("PostgreSQL connection pool initialized")

    yield

    # -- Shutdown ---
    await engine.dispose()
    logger.info("All connections closed")


def _error_response(request: Request, exc: BmnlError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_dict(), "request_id": request_id},
        headers=headers,
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Consent-governed onboarding assessment and radar profiles",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # -- Rate Limiter (slowapi) ---
    # Register the limiter on app.state so SlowAPIMiddleware and the
    # @limiter.limit decorators on individual routes can find it.
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # -- Security Middleware ---
    # Note: middleware is applied in reverse order (last added = first executed).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "Accept"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SlowAPIMiddleware)

    # -- Routes ---
    app.include_router(health.router)
    app.include_router(auth_routes.router)
    app.include_router(bmnl.router)
    app.include_router(consent.router)
    app.include_router(analytics.router)
    app.include_router(organizer.router)
    app.include_router(admin.router)

    # -- Error Handlers ---
    @app.exception_handler(BmnlError)
    async def domain_error_handler(request: Request, exc: BmnlError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        if exc.status_code >= 500:
            logger.error("%s [%s]: %s", exc.kind, request_id, exc.detail)
        else:
            logger.info("%s [%s]: %s", exc.kind, request_id, exc.detail)
        return _error_response(request, exc)

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception("Storage failure [%s]", request_id)
        return _error_response(request, StorageFailure("The data store is unavailable"))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning("Validation error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=422,
            content={"error": "validation_failed", "detail": str(exc), "request_id": request_id},
        )

    @app.exception_handler(Exception)  # Intentionally broad: top-level global error handler
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception("Unhandled error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": "Internal server error", "request_id": request_id},
        )

    return app


# Application instance used by uvicorn
app = create_app()
