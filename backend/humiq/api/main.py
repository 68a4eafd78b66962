"""
HumIQ Work Sessions - FastAPI Application
==========================================

Application factory: work session routers, request log context and the
mapping from engine errors to HTTP responses.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

import structlog
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from humiq import __version__
from humiq.api import work_sessions
from humiq.api.deps import close_collaborators
from humiq.core.config import settings
from humiq.core.database import close_db, get_db, init_db
from humiq.core.logging import configure_logging
from humiq.core.schemas import ErrorResponse, HealthResponse
from humiq.core.work_session import RetryableError, WorkSessionError

configure_logging()
logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup creates missing tables; shutdown closes the generation and
    evidence HTTP clients, then the connection pool.
    """
    logger.info("app_starting", version=__version__, environment=settings.ENVIRONMENT)
    await init_db()

    yield

    await close_collaborators()
    await close_db()
    logger.info("app_stopped")


def _error_body(exc: WorkSessionError) -> dict:
    return ErrorResponse(
        error=type(exc).__name__,
        detail=exc.message,
        code=exc.code,
    ).model_dump()


# ==========================================================================
# App Factory
# ==========================================================================

def create_app() -> FastAPI:
    """
    Build the FastAPI application.

    Returns:
        Application with routers, middleware and error handlers wired
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=__version__,
        description="Staged work session interviews closed by an Evidence Pack",
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        """Bind request_id and path to every log event of this request."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    # ==========================================================================
    # Error Mapping
    # ==========================================================================

    @app.exception_handler(WorkSessionError)
    async def work_session_error_handler(
        request: Request, exc: WorkSessionError
    ) -> JSONResponse:
        """Engine errors carry their own status and stable code."""
        if exc.status_code >= 500 and not exc.retryable:
            logger.error("work_session_request_failed", code=exc.code, detail=exc.message)
        else:
            logger.warning("work_session_request_rejected", code=exc.code, detail=exc.message)

        headers = None
        if isinstance(exc, RetryableError):
            headers = {"Retry-After": str(exc.retry_after)}

        return JSONResponse(status_code=exc.status_code, content=_error_body(exc), headers=headers)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Anything else is a 500 without internals outside development."""
        logger.error("unhandled_exception", exc_info=exc)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=str(exc) if settings.is_development else "An unexpected error occurred",
                code="INTERNAL_ERROR",
            ).model_dump(),
        )

    # ==========================================================================
    # Routes
    # ==========================================================================

    app.include_router(work_sessions.router)
    app.include_router(work_sessions.packs_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
        """Liveness plus a round trip to the database."""
        try:
            await db.execute(text("SELECT 1"))
            database = "ok"
        except SQLAlchemyError as e:
            logger.warning("health_database_unreachable", error=str(e))
            database = "unreachable"

        return HealthResponse(
            status="healthy" if database == "ok" else "degraded",
            version=__version__,
            environment=settings.ENVIRONMENT,
            database=database,
        )

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Service index."""
        return {
            "name": settings.APP_NAME,
            "version": __version__,
            "api": settings.API_V1_PREFIX,
            "work_sessions": f"{settings.API_V1_PREFIX}/work-sessions",
            "evidence_packs": f"{settings.API_V1_PREFIX}/evidence-packs/{{share_id}}",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "humiq.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
