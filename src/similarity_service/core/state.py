"""
Process-wide state: start time and the pipeline wired up at startup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from concurrent.futures import ThreadPoolExecutor

    from similarity_service.services.controller import RequestController
    from similarity_service.services.image_fetcher import ImageFetcher
    from similarity_service.services.model_provider import ModelProvider

_UNITS = (("d", 86400), ("h", 3600), ("m", 60))


@dataclass
class AppState:
    """
    Runtime application state.

    provider and controller raise RuntimeError when read before the
    lifespan has wired the pipeline.
    """

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    fetcher: ImageFetcher | None = field(default=None, repr=False)
    executor: ThreadPoolExecutor | None = field(default=None, repr=False)
    _provider: ModelProvider | None = field(default=None, repr=False)
    _controller: RequestController | None = field(default=None, repr=False)

    @property
    def provider(self) -> ModelProvider:
        if self._provider is None:
            raise RuntimeError("Model provider not initialized")
        return self._provider

    @provider.setter
    def provider(self, value: ModelProvider) -> None:
        self._provider = value

    @property
    def controller(self) -> RequestController:
        if self._controller is None:
            raise RuntimeError("Request controller not initialized")
        return self._controller

    @controller.setter
    def controller(self, value: RequestController) -> None:
        self._controller = value

    @property
    def model_loaded(self) -> bool:
        return self._provider is not None and self._provider.is_loaded

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def uptime_formatted(self) -> str:
        """Uptime like "2d 3h 15m 42s"; leading zero units are left out."""
        remaining = int(self.uptime_seconds)
        parts = []
        for suffix, size in _UNITS:
            count, remaining = divmod(remaining, size)
            if count or parts:
                parts.append(f"{count}{suffix}")
        parts.append(f"{remaining}s")
        return " ".join(parts)


_app_state: AppState | None = None


def get_app_state() -> AppState:
    """
    The state created by the lifespan.

    Raises:
        RuntimeError: If the application has not started
    """
    if _app_state is None:
        raise RuntimeError("Application state not initialized")
    return _app_state


def init_app_state() -> AppState:
    global _app_state  # noqa: PLW0603
    _app_state = AppState()
    return _app_state


def reset_app_state() -> None:
    global _app_state  # noqa: PLW0603
    _app_state = None
