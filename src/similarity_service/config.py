"""
Settings for the similarity service, read from a YAML file.

There are no defaults: every key in config.yaml is required, unknown keys
are rejected, and a bad file stops the service before it binds a port.
The file location comes from CONFIG_PATH, falling back to ./config.yaml.
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_FILE",
    "REDACTION_MARKER",
    "SENSITIVE_KEYWORDS",
    "ConfigurationError",
    "ImageConfig",
    "LoggingConfig",
    "ModelConfig",
    "ServerConfig",
    "ServiceConfig",
    "Settings",
    "TextConfig",
    "clear_settings_cache",
    "get_config_path",
    "get_safe_config",
    "get_settings",
    "is_sensitive_key",
    "load_yaml_config",
    "redact_sensitive_values",
]

CONFIG_PATH_ENV = "CONFIG_PATH"
DEFAULT_CONFIG_FILE = "config.yaml"

REDACTION_MARKER: str = "[REDACTED]"

SENSITIVE_KEYWORDS: frozenset[str] = frozenset(
    {"key", "secret", "pass", "password", "token", "credential", "auth", "private", "bearer"}
)

# Whole underscore-separated segments only, so "max_tokens" is not a secret
_SENSITIVE_PATTERN = re.compile(
    r"(?:^|_)(" + "|".join(sorted(SENSITIVE_KEYWORDS)) + r")(?:$|_)",
    re.IGNORECASE,
)


class ConfigurationError(Exception):
    """The configuration file is missing, unreadable or incomplete."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ServiceConfig(_Section):
    name: str
    version: str


class ModelConfig(_Section):
    """Which dual-encoder to load, and how."""

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    name: str
    """HuggingFace repository id, e.g. openai/clip-vit-base-patch32."""

    precision: Literal["fp32", "fp16"]
    device: Literal["auto", "cpu", "cuda", "mps"]

    cache_dir: str
    """Where model files are stored; relative paths start at the config file."""

    revision: str
    token: str | None

    preload: bool
    """Start loading during startup instead of on the first request."""


class TextConfig(_Section):
    chunking: bool
    """Split text longer than the token window instead of truncating it."""

    max_tokens: int | None = Field(..., ge=1)
    """Content tokens per chunk. Null derives it from the model's token window."""

    batch_size: int = Field(..., ge=1)
    """Most chunks encoded in one text-encoder forward pass."""


class ImageConfig(_Section):
    fetch_timeout_seconds: float = Field(..., gt=0)
    max_bytes: int = Field(..., gt=0)
    allow_local_files: bool


class ServerConfig(_Section):
    host: str
    port: int = Field(..., ge=1, le=65535)


class LoggingConfig(_Section):
    level: str
    format: Literal["json", "text"]


class Settings(_Section):
    """
    The complete service configuration.

    Usage:
        from similarity_service.config import get_settings
        settings = get_settings()
    """

    service: ServiceConfig
    model: ModelConfig
    text: TextConfig
    image: ImageConfig
    server: ServerConfig
    logging: LoggingConfig


def get_config_path() -> Path:
    """Path of the config file: $CONFIG_PATH, or config.yaml in the working directory."""
    return Path(os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_FILE))


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML file that must contain a mapping.

    Raises:
        ConfigurationError: If the file does not exist, is not valid YAML,
            is empty, or holds something other than a mapping
    """
    try:
        text = config_path.read_text()
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Configuration file not found: {config_path.absolute()}\n"
            f"Create it or point {CONFIG_PATH_ENV} at an existing file."
        ) from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        raise ConfigurationError(f"Configuration file is empty: {config_path}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration must be a YAML mapping, got {type(data).__name__}")
    return data


@lru_cache
def get_settings() -> Settings:
    """
    Load and validate the configuration once per process.

    Raises:
        ConfigurationError: If the file cannot be read or fails validation
    """
    config_path = get_config_path()
    try:
        return Settings.model_validate(load_yaml_config(config_path))
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed for {config_path}: {e}\n"
            f"Every setting must be given explicitly; none has a default."
        ) from e


def clear_settings_cache() -> None:
    """Forget the loaded settings so the next get_settings() rereads the file."""
    get_settings.cache_clear()


def is_sensitive_key(key: str) -> bool:
    return _SENSITIVE_PATTERN.search(key) is not None


def redact_sensitive_values(data: dict[str, Any], redaction_marker: str) -> dict[str, Any]:
    """Copy of data with the values of sensitive keys replaced, at any depth."""
    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            redacted[key] = redaction_marker
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_values(value, redaction_marker)
        else:
            redacted[key] = value
    return redacted


def get_safe_config() -> dict[str, Any]:
    """Current settings as a dict, safe to log."""
    return redact_sensitive_values(get_settings().model_dump(), REDACTION_MARKER)
