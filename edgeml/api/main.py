"""FastAPI application factory."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from edgeml.api.routes_channel import router as channel_router
from edgeml.api.routes_health import router as health_router
from edgeml.api.routes_models import router as models_router
from edgeml.core.config import get_settings
from edgeml.core.errors import (
    InferenceError,
    InferenceFailed,
    InvalidArguments,
    InvalidInputShape,
    ModelLoadFailed,
    ModelNotFound,
    ModelNotLoaded,
)
from edgeml.core.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from edgeml.inference.service import InferenceService

logger = get_logger(__name__)

ERROR_STATUS: dict[type[InferenceError], int] = {
    InvalidArguments: 400,
    ModelNotFound: 404,
    ModelNotLoaded: 404,
    InvalidInputShape: 422,
    ModelLoadFailed: 500,
    InferenceFailed: 500,
}


def error_status(exc: InferenceError) -> int:
    for kind, status in ERROR_STATUS.items():
        if isinstance(exc, kind):
            return status
    return 500


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        bind_request_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


def create_app(service: InferenceService | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        service: Pre-built service to serve; one is created from settings
            at startup when omitted. Either way it is shut down with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings = get_settings()
        setup_logging(settings.log_level)
        app.state.service = service or InferenceService()
        if settings.preload_models:
            app.state.service.preload(settings.preload_models)
        logger.info("app_started", version=settings.app_version)
        yield
        released = app.state.service.shutdown()
        logger.info("app_shutdown", released=released)

    app = FastAPI(
        title="Edge Inference Runtime",
        version=get_settings().app_version,
        lifespan=lifespan,
    )

    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(InferenceError)
    async def _inference_error(request: Request, exc: InferenceError) -> JSONResponse:
        logger.info(
            "request_failed",
            path=request.url.path,
            code=exc.code,
            message=exc.message,
        )
        return JSONResponse(status_code=error_status(exc), content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        err = InvalidArguments(
            "Invalid request payload",
            details={"errors": jsonable_encoder(exc.errors())},
        )
        return JSONResponse(status_code=400, content={"error": err.to_dict()})

    app.include_router(health_router)
    app.include_router(models_router)
    app.include_router(channel_router)

    return app


app = create_app()
