"""
Health check endpoint.

Provides service health status for container orchestration
(Docker and Kubernetes health checks).
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter

from similarity_service.core.state import get_app_state
from similarity_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Check service health.

    The model loads lazily, so a service without a loaded model is still
    healthy: the first request triggers the load.

    Returns:
        Health status with model state, uptime and system time
    """
    state = get_app_state()

    # System time in yyyy-mm-dd hh:mm format (UTC)
    system_time = datetime.now(UTC).strftime("%Y-%m-%d %H:%M")

    return HealthResponse(
        status="healthy",
        model_loaded=state.model_loaded,
        uptime_seconds=state.uptime_seconds,
        uptime=state.uptime_formatted,
        system_time=system_time,
    )
