"""
Shared fixtures for integration tests.

Integration tests use the real application and download the real model on
first use. They are deselected by default; run them with -m integration.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import yaml
from fastapi.testclient import TestClient

from similarity_service.app import create_app
from similarity_service.config import clear_settings_cache
from similarity_service.core.state import reset_app_state
from tests.conftest import TEST_CONFIG

if TYPE_CHECKING:
    from collections.abc import Iterator

PROJECT_ROOT = Path(__file__).resolve().parents[2]
MODEL_NAME = "openai/clip-vit-base-patch32"


@pytest.fixture(scope="session")
def integration_config_file(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Test configuration pointing at a real model, cached in the project."""
    config = yaml.safe_load(TEST_CONFIG)
    config["model"]["name"] = MODEL_NAME
    config["model"]["cache_dir"] = str(PROJECT_ROOT / ".cache" / "models")
    config["logging"]["level"] = "INFO"

    config_file = tmp_path_factory.mktemp("integration") / "config.yaml"
    config_file.write_text(yaml.safe_dump(config))
    return config_file


@pytest.fixture(autouse=True)
def use_test_config(integration_config_file: Path) -> Path:
    """Keep the module-wide configuration in place for every test."""
    return integration_config_file


@pytest.fixture(scope="module")
def integration_client(integration_config_file: Path) -> Iterator[TestClient]:
    """
    Create test client with the real application.

    Uses context manager to trigger lifespan events. The model is loaded by
    the first request and shared by all tests in the module.
    """
    with pytest.MonkeyPatch.context() as mp:
        mp.setenv("CONFIG_PATH", str(integration_config_file))
        clear_settings_cache()
        app = create_app()
        with TestClient(app) as test_client:
            yield test_client
        clear_settings_cache()
        reset_app_state()


@pytest.fixture
def client(integration_client: TestClient) -> TestClient:
    return integration_client
