"""Tokenmeter FastAPI application — entry point for the API server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from src.core.constants import (
    API_VERSION,
    MSG_ACCESS_DENIED,
    MSG_BILLING_NOT_CONFIGURED,
    MSG_INTERNAL_ERROR,
)
from src.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DefaultPlanNotFoundError,
    MeteringBaseError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup/shutdown lifecycle — initialize DB engine, close on exit."""
    log.info("api_starting")
    await get_engine()
    yield
    await close_engine()
    log.info("api_shutdown")


# ── Error Mapping ────────────────────────────────────────────────


def _error(code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=code, content={"detail": detail})


async def _handle_authentication(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_401_UNAUTHORIZED, str(exc) or "Not authenticated")


async def _handle_authorization(request: Request, exc: Exception) -> JSONResponse:
    # Denial reason is logged by the access policy and never returned
    return _error(status.HTTP_403_FORBIDDEN, MSG_ACCESS_DENIED)


async def _handle_default_plan(request: Request, exc: Exception) -> JSONResponse:
    log.error("billing_not_configured", path=request.url.path, error=str(exc))
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, MSG_BILLING_NOT_CONFIGURED)


async def _handle_not_found(request: Request, exc: Exception) -> JSONResponse:
    log.info("resource_not_found", path=request.url.path, error=str(exc))
    return _error(status.HTTP_404_NOT_FOUND, "Not found")


async def _handle_validation(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


async def _handle_internal(request: Request, exc: Exception) -> JSONResponse:
    context = exc.context if isinstance(exc, MeteringBaseError) else {}
    log.error(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        context={k: str(v) for k, v in context.items()},
    )
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, MSG_INTERNAL_ERROR)


def register_error_handlers(app: FastAPI) -> None:
    """Map the metering exception taxonomy to generic HTTP responses."""
    app.add_exception_handler(AuthenticationError, _handle_authentication)
    app.add_exception_handler(AuthorizationError, _handle_authorization)
    app.add_exception_handler(DefaultPlanNotFoundError, _handle_default_plan)
    app.add_exception_handler(NotFoundError, _handle_not_found)
    app.add_exception_handler(ValidationError, _handle_validation)
    app.add_exception_handler(StoreError, _handle_internal)
    app.add_exception_handler(MeteringBaseError, _handle_internal)


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    settings = get_settings()
    setup_logging(json_output=settings.log_json, level=settings.log_level)

    app = FastAPI(
        title="Tokenmeter API",
        description="Token usage metering, quotas and billing periods",
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    from src.api.routes.health import router as health_router
    from src.api.routes.subscriptions import router as subscriptions_router
    from src.api.routes.usage import router as usage_router

    app.include_router(health_router, prefix="/api")
    app.include_router(subscriptions_router, prefix="/api")
    app.include_router(usage_router, prefix="/api")

    return app


app = create_app()
