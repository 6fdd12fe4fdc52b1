"""
Shared fixtures for unit tests.

The pipeline is wired with the model doubles from tests.factories so that
routers and the controller run without downloading a model.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
import torch
from fastapi.testclient import TestClient

from similarity_service.app import create_app
from similarity_service.core.state import AppState, init_app_state, reset_app_state
from similarity_service.services.aggregator import EmbeddingAggregator
from similarity_service.services.controller import RequestController
from similarity_service.services.image_fetcher import ImageFetcher
from similarity_service.services.model_provider import ModelProvider
from tests.factories import FakeLoader

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def fake_loader() -> FakeLoader:
    """Loader reporting one file of known size and one of unknown size."""
    return FakeLoader(files=(("config.json", 0), ("model.safetensors", 1024)))


@pytest.fixture
def app_state(fake_loader: FakeLoader) -> Iterator[AppState]:
    """
    Application state with a fully wired pipeline.

    The model is not loaded until the first request.
    """
    state = init_app_state()
    device = torch.device("cpu")
    state.fetcher = ImageFetcher(timeout=5.0, max_bytes=1024 * 1024, allow_local_files=False)
    state.provider = ModelProvider(
        source_id="test-org/tiny-clip",
        precision="fp32",
        device=device,
        loader=fake_loader,
    )
    state.controller = RequestController(
        provider=state.provider,
        fetcher=state.fetcher,
        aggregator=EmbeddingAggregator(device=device, dtype=torch.float32),
        chunking=True,
        max_tokens=None,
    )
    yield state
    reset_app_state()


@pytest.fixture
def client(app_state: AppState) -> Iterator[TestClient]:
    """Test client for an app whose startup wiring is replaced by app_state."""
    with patch("similarity_service.app.lifespan"):
        app = create_app()
    yield TestClient(app, raise_server_exceptions=False)
