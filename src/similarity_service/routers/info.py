"""
Service information endpoint.

Exposes service configuration and metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

from similarity_service.config import get_settings
from similarity_service.core.state import get_app_state
from similarity_service.schemas import InfoResponse, ModelInfo, TextInfo

router = APIRouter()


@router.get("/info", response_model=InfoResponse)
async def get_info() -> InfoResponse:
    """
    Get service information and configuration.

    Returns:
        Service metadata and configuration
    """
    settings = get_settings()
    state = get_app_state()

    provider = state.provider
    bundle = provider.bundle

    return InfoResponse(
        service=settings.service.name,
        version=settings.service.version,
        model=ModelInfo(
            name=settings.model.name,
            precision=settings.model.precision,
            device=str(provider.device),
            loaded=bundle is not None,
            token_window=bundle.token_window if bundle is not None else None,
        ),
        text=TextInfo(
            chunking=settings.text.chunking,
            max_tokens=settings.text.max_tokens,
            batch_size=settings.text.batch_size,
        ),
    )
