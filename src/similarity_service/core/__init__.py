"""
Core components for the similarity service.

Provides application lifecycle management, state tracking,
and exception handling.
"""

from similarity_service.core.exceptions import (
    DegenerateVectorError,
    EmptyInputError,
    EncodeError,
    ImageFetchError,
    ModelLoadError,
    ServiceError,
)
from similarity_service.core.state import AppState, get_app_state

__all__ = [
    "AppState",
    "DegenerateVectorError",
    "EmptyInputError",
    "EncodeError",
    "ImageFetchError",
    "ModelLoadError",
    "ServiceError",
    "get_app_state",
]
