"""
Startup and shutdown of the similarity service.

Startup wires the pipeline but does not touch the network: the model is
fetched by the first request, or in the background when model.preload is
set. Shutdown stops the preload, closes the HTTP client and releases the
inference thread.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from similarity_service.config import Settings, get_config_path, get_safe_config, get_settings
from similarity_service.core.exceptions import ModelLoadError
from similarity_service.core.state import AppState, init_app_state
from similarity_service.logging import get_logger, setup_logging
from similarity_service.services.aggregator import EmbeddingAggregator
from similarity_service.services.controller import RequestController
from similarity_service.services.image_fetcher import ImageFetcher
from similarity_service.services.model_provider import PRECISION_DTYPES, ModelProvider, get_device

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

# Per-request limit for model file downloads; weight files run to gigabytes
MODEL_DOWNLOAD_TIMEOUT_SECONDS = 300.0


def get_cache_dir(settings: Settings) -> Path:
    """
    Directory for downloaded model files, created if missing.

    A relative model.cache_dir is taken relative to the config file, not
    the working directory.
    """
    cache_dir = Path(settings.model.cache_dir)
    if not cache_dir.is_absolute():
        cache_dir = get_config_path().parent / cache_dir
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def build_pipeline(settings: Settings, state: AppState) -> None:
    """
    Create provider, fetcher, aggregator and controller on the app state.

    Model loading and both encoders share one single-worker executor, so
    at most one of them runs at any time.
    """
    device = get_device(settings.model.device)
    state.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inference")

    state.provider = ModelProvider.from_huggingface(
        source_id=settings.model.name,
        precision=settings.model.precision,
        device=device,
        cache_dir=get_cache_dir(settings),
        revision=settings.model.revision,
        token=settings.model.token,
        timeout=MODEL_DOWNLOAD_TIMEOUT_SECONDS,
        executor=state.executor,
    )
    state.fetcher = ImageFetcher(
        timeout=settings.image.fetch_timeout_seconds,
        max_bytes=settings.image.max_bytes,
        allow_local_files=settings.image.allow_local_files,
    )
    state.controller = RequestController(
        provider=state.provider,
        fetcher=state.fetcher,
        aggregator=EmbeddingAggregator(
            device=device,
            dtype=PRECISION_DTYPES[settings.model.precision],
            batch_size=settings.text.batch_size,
        ),
        chunking=settings.text.chunking,
        max_tokens=settings.text.max_tokens,
        executor=state.executor,
    )


async def preload_model(provider: ModelProvider) -> None:
    """Load the model bundle ahead of the first request."""
    try:
        await provider.acquire()
    except ModelLoadError as e:
        # Not fatal: acquire() retries on the next request
        get_logger().warning(
            "Model preload failed",
            extra={"error_message": e.message, "details": e.details},
        )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging(settings.logging.level, settings.service.name, settings.logging.format)
    logger = get_logger()

    state = init_app_state()
    logger.info(
        "Service starting",
        extra={"version": settings.service.version, "config": get_safe_config()},
    )

    build_pipeline(settings, state)
    logger.info(
        "Pipeline wired",
        extra={"model": settings.model.name, "device": str(state.provider.device)},
    )

    preload: asyncio.Task[None] | None = None
    if settings.model.preload:
        preload = asyncio.create_task(preload_model(state.provider))

    yield

    logger.info("Service shutting down", extra={"uptime": state.uptime_formatted})

    if preload is not None and not preload.done():
        preload.cancel()
    if state.fetcher is not None:
        await state.fetcher.close()
    if state.executor is not None:
        state.executor.shutdown(wait=False, cancel_futures=True)

    logger.info("Service stopped")
