"""
Unit tests for application startup and shutdown.

Startup only wires the pipeline; nothing is downloaded unless preload is on.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest
import torch
from fastapi.testclient import TestClient

from similarity_service.app import create_app
from similarity_service.config import get_settings
from similarity_service.core.exceptions import ModelLoadError
from similarity_service.core.lifespan import build_pipeline, get_cache_dir, preload_model
from similarity_service.core.state import AppState, get_app_state, reset_app_state
from similarity_service.services.controller import RequestController
from similarity_service.services.model_provider import ModelProvider

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def clean_state() -> Iterator[None]:
    yield
    reset_app_state()


@pytest.mark.unit
class TestGetCacheDir:
    """Tests for get_cache_dir()."""

    def test_relative_to_config_file(self, test_config_file: Path) -> None:
        cache_dir = get_cache_dir(get_settings())

        assert cache_dir == test_config_file.parent / ".cache" / "models"
        assert cache_dir.is_dir()


@pytest.mark.unit
class TestBuildPipeline:
    """Tests for build_pipeline()."""

    def test_wires_components(self) -> None:
        state = AppState()

        build_pipeline(get_settings(), state)

        try:
            assert isinstance(state.provider, ModelProvider)
            assert isinstance(state.controller, RequestController)
            assert state.provider.source_id == "test-org/tiny-clip"
            assert state.provider.device == torch.device("cpu")
            assert not state.provider.is_loaded
            assert state.controller.chunking is True
            assert state.fetcher is not None
            assert state.fetcher.allow_local_files is True
        finally:
            state.executor.shutdown(wait=False)


@pytest.mark.unit
class TestPreloadModel:
    """Tests for preload_model()."""

    async def test_failure_is_logged_not_raised(self) -> None:
        provider = AsyncMock()
        provider.acquire.side_effect = ModelLoadError("hub unreachable")

        with patch("similarity_service.core.lifespan.get_logger") as get_logger:
            await preload_model(provider)

        get_logger.return_value.warning.assert_called_once()

    async def test_success_loads_bundle(self) -> None:
        provider = AsyncMock()

        await preload_model(provider)

        provider.acquire.assert_awaited_once_with()


@pytest.mark.unit
class TestLifespan:
    """Tests for the application lifespan."""

    def test_startup_initializes_state(self) -> None:
        with TestClient(create_app()) as client:
            state = get_app_state()
            response = client.get("/health")

            assert response.status_code == 200
            assert response.json()["model_loaded"] is False
            assert state.controller.provider is state.provider

    def test_startup_does_not_load_model_without_preload(self) -> None:
        with (
            patch.object(ModelProvider, "acquire") as acquire,
            TestClient(create_app()),
        ):
            pass

        acquire.assert_not_called()
