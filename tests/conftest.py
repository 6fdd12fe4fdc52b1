"""
Shared fixtures for all tests.

Every test runs against a temporary config.yaml so that settings and
logging never depend on the working directory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from similarity_service.config import clear_settings_cache

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


TEST_CONFIG = """
service:
  name: "similarity-test"
  version: "0.1.0"

model:
  name: "test-org/tiny-clip"
  precision: "fp32"
  device: "cpu"
  cache_dir: ".cache/models"
  revision: "main"
  token: null
  preload: false

text:
  chunking: true
  max_tokens: null
  batch_size: 4

image:
  fetch_timeout_seconds: 5.0
  max_bytes: 1048576
  allow_local_files: true

server:
  host: "127.0.0.1"
  port: 8000

logging:
  level: "DEBUG"
  format: "json"
"""


@pytest.fixture
def test_config_file(tmp_path: Path) -> Path:
    """Write the test configuration to a temporary file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(TEST_CONFIG)
    return config_file


@pytest.fixture(autouse=True)
def use_test_config(
    test_config_file: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[Path]:
    """Point CONFIG_PATH at the test configuration and reset the settings cache."""
    monkeypatch.setenv("CONFIG_PATH", str(test_config_file))
    clear_settings_cache()
    yield test_config_file
    clear_settings_cache()
