"""Health and metrics endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from edgeml.core.config import get_settings

router = APIRouter()


@router.get("/health")
def health(request: Request) -> dict:
    """Liveness / readiness probe."""
    service = request.app.state.service
    return {
        "status": "ok",
        "version": get_settings().app_version,
        "resident_models": len(service.cache),
        "max_resident_models": service.cache.max_resident_models,
    }


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus text exposition endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
