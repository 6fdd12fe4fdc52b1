"""
Pydantic request/response and event models for the similarity service API.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# === Request Models ===


class SimilarityRequest(BaseModel):
    """Inbound similarity request: one text and one image source."""

    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., min_length=1)
    """Text to compare; surrounding whitespace is ignored."""

    url: str = Field(..., min_length=1)
    """Image location: http(s) URL, base64 data URL, or local file path."""

    @field_validator("text", "url")
    @classmethod
    def strip_whitespace(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


# === Event Models ===


class InitiateEvent(BaseModel):
    """Request accepted; sent once before any loading."""

    status: Literal["initiate"] = "initiate"


class ProgressInfo(BaseModel):
    """Download/load progress of one model file."""

    file: str
    name: str
    loaded: int
    total: int
    progress: float
    """Percent complete, loaded / total * 100."""


class ProgressMessage(BaseModel):
    """Model load progress."""

    status: Literal["progress"] = "progress"
    progress: ProgressInfo


class ReadyEvent(BaseModel):
    """Model bundle fully available."""

    status: Literal["ready"] = "ready"


class CompleteEvent(BaseModel):
    """Successful result carrying the cosine similarity."""

    status: Literal["complete"] = "complete"
    output: float
    """Cosine similarity in [-1, 1]."""

    chunks: int
    """Number of text chunks that were embedded and pooled."""

    dimension: int
    """Embedding dimension."""

    processing_time_ms: float
    """Time spent from request start to result, in milliseconds."""


class ErrorEvent(BaseModel):
    """Failed request."""

    status: Literal["error"] = "error"
    error: str
    """Human-readable failure description."""

    code: str
    """Machine-readable error code."""


SimilarityEvent = Annotated[
    InitiateEvent | ProgressMessage | ReadyEvent | CompleteEvent | ErrorEvent,
    Field(discriminator="status"),
]


# === Response Models ===


class HealthResponse(BaseModel):
    """Response model for GET /health endpoint."""

    status: Literal["healthy", "degraded", "unhealthy"]
    """Service health status."""

    model_loaded: bool
    """Whether the model bundle has been constructed."""

    uptime_seconds: float
    """Uptime in seconds since service start."""

    uptime: str
    """Human-readable uptime (e.g., "2d 3h 15m 42s")."""

    system_time: str
    """Current system time in yyyy-mm-dd hh:mm format (UTC)."""


class ModelInfo(BaseModel):
    """Model configuration info for /info endpoint."""

    model_config = ConfigDict(protected_namespaces=())

    name: str
    """HuggingFace model identifier."""

    precision: str
    """Encoder weight precision (fp32, fp16)."""

    device: str
    """Compute device (cpu, cuda, mps)."""

    loaded: bool
    """Whether the model bundle has been constructed."""

    token_window: int | None
    """Text encoder token window, once loaded."""


class TextInfo(BaseModel):
    """Text handling configuration for /info endpoint."""

    chunking: bool
    max_tokens: int | None
    batch_size: int


class InfoResponse(BaseModel):
    """Response model for GET /info endpoint."""

    service: str
    """Service name."""

    version: str
    """Service version (semver)."""

    model: ModelInfo
    """Model configuration."""

    text: TextInfo
    """Text chunking configuration."""


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    """Machine-readable error code."""

    message: str
    """Human-readable error description."""

    details: dict[str, Any]
    """Additional error context."""
