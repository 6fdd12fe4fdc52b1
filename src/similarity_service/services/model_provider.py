"""
Lazy, single-construction access to the dual-encoder model bundle.

The bundle (tokenizer, image preprocessor, text encoder, image encoder) is
built at most once per provider. Concurrent first callers share the same
in-flight construction; a failed construction is not remembered, so the
next call retries.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Protocol

import torch
from transformers import (
    AutoImageProcessor,
    AutoTokenizer,
    CLIPTextModelWithProjection,
    CLIPVisionModelWithProjection,
)

from similarity_service.core.exceptions import ModelLoadError
from similarity_service.logging import get_logger
from similarity_service.services.model_fetcher import ModelFetcher, ProgressSink

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Executor

Precision = Literal["fp32", "fp16"]

PRECISION_DTYPES: dict[str, torch.dtype] = {
    "fp32": torch.float32,
    "fp16": torch.float16,
}

# CLIP text encoders accept 77 positions; used when the tokenizer reports none
DEFAULT_TOKEN_WINDOW = 77


@dataclass(frozen=True)
class ModelBundle:
    """
    The four inference artifacts of one dual-encoder model.

    Attributes:
        tokenizer: Text tokenizer
        processor: Image preprocessor
        text_encoder: Text tower with projection head
        vision_encoder: Vision tower with projection head
        source_id: Model identifier all four artifacts were loaded from
        precision: Numeric precision of the encoder weights
        device: Device the encoders run on
        token_window: Maximum tokens the text encoder accepts per pass
    """

    tokenizer: Any
    processor: Any
    text_encoder: Any
    vision_encoder: Any
    source_id: str
    precision: Precision
    device: torch.device
    token_window: int

    @property
    def dtype(self) -> torch.dtype:
        return PRECISION_DTYPES[self.precision]


class BundleLoader(Protocol):
    """Builds a ModelBundle; called from a worker thread."""

    def __call__(
        self,
        source_id: str,
        precision: Precision,
        device: torch.device,
        progress_sink: ProgressSink | None,
    ) -> ModelBundle: ...


def get_device(device_config: str) -> torch.device:
    """
    Resolve device from config string.

    Args:
        device_config: One of "auto", "cpu", "cuda", "mps"

    Returns:
        Resolved torch device
    """
    if device_config == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        elif torch.backends.mps.is_available():
            return torch.device("mps")
        else:
            return torch.device("cpu")
    return torch.device(device_config)


def get_token_window(tokenizer: Any, text_encoder: Any) -> int:
    """Token window from the encoder config, falling back to the tokenizer."""
    config = getattr(text_encoder, "config", None)
    window = getattr(config, "max_position_embeddings", None)
    if isinstance(window, int) and window > 0:
        return window
    window = getattr(tokenizer, "model_max_length", None)
    # Tokenizers without a limit report a huge sentinel value
    if isinstance(window, int) and 0 < window < 100_000:
        return window
    return DEFAULT_TOKEN_WINDOW


class HuggingFaceLoader:
    """
    Default bundle loader: fetch files with progress, then build artifacts.

    Artifacts are resolved in order: tokenizer, image preprocessor, text
    encoder, image encoder.
    """

    def __init__(self, fetcher: ModelFetcher) -> None:
        self.fetcher = fetcher

    def __call__(
        self,
        source_id: str,
        precision: Precision,
        device: torch.device,
        progress_sink: ProgressSink | None,
    ) -> ModelBundle:
        if precision == "fp16" and device.type == "cpu":
            raise ModelLoadError(
                "Half precision is not supported on CPU",
                details={"model": source_id, "precision": precision, "device": str(device)},
            )

        local_dir = self.fetcher.fetch(source_id, progress_sink)
        dtype = PRECISION_DTYPES[precision]

        steps: list[tuple[str, Callable[[], Any]]] = [
            ("tokenizer", lambda: AutoTokenizer.from_pretrained(local_dir)),
            ("image preprocessor", lambda: AutoImageProcessor.from_pretrained(local_dir)),
            (
                "text encoder",
                lambda: CLIPTextModelWithProjection.from_pretrained(local_dir, torch_dtype=dtype).to(device).eval(),
            ),
            (
                "image encoder",
                lambda: CLIPVisionModelWithProjection.from_pretrained(local_dir, torch_dtype=dtype).to(device).eval(),
            ),
        ]
        artifacts = []
        for artifact, build in steps:
            try:
                artifacts.append(build())
            except Exception as e:
                raise ModelLoadError(
                    f"Failed to load {artifact} for '{source_id}': {e}",
                    details={"model": source_id, "artifact": artifact},
                ) from e
        tokenizer, processor, text_encoder, vision_encoder = artifacts

        return ModelBundle(
            tokenizer=tokenizer,
            processor=processor,
            text_encoder=text_encoder,
            vision_encoder=vision_encoder,
            source_id=source_id,
            precision=precision,
            device=device,
            token_window=get_token_window(tokenizer, text_encoder),
        )


class ModelProvider:
    """
    Owns the one ModelBundle of the process.

    The provider is bound to a single model source and precision; serving a
    different model requires a different provider.
    """

    def __init__(
        self,
        source_id: str,
        precision: Precision,
        device: torch.device,
        loader: BundleLoader,
        executor: Executor | None = None,
    ) -> None:
        self.source_id = source_id
        self.precision = precision
        self.device = device
        self._loader = loader
        self._executor = executor
        self._bundle: ModelBundle | None = None
        self._pending: asyncio.Future[ModelBundle] | None = None

    @classmethod
    def from_huggingface(
        cls,
        source_id: str,
        precision: Precision,
        device: torch.device,
        cache_dir: Path,
        revision: str,
        token: str | None,
        timeout: float,
        executor: Executor | None = None,
    ) -> ModelProvider:
        """Provider backed by HuggingFaceLoader."""
        fetcher = ModelFetcher(cache_dir=cache_dir, revision=revision, token=token, timeout=timeout)
        return cls(source_id, precision, device, HuggingFaceLoader(fetcher), executor)

    @property
    def bundle(self) -> ModelBundle | None:
        return self._bundle

    @property
    def is_loaded(self) -> bool:
        return self._bundle is not None

    async def acquire(self, progress_sink: ProgressSink | None = None) -> ModelBundle:
        """
        Return the model bundle, constructing it on first use.

        Only the caller that starts the construction has its progress sink
        wired to the download; callers joining an in-flight construction
        wait for its result.

        Raises:
            ModelLoadError: If any artifact fails to load
        """
        if self._bundle is not None:
            return self._bundle

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._construct(progress_sink))

        # A cancelled waiter must not cancel the shared construction
        return await asyncio.shield(self._pending)

    async def _construct(self, progress_sink: ProgressSink | None) -> ModelBundle:
        logger = get_logger()
        logger.info(
            "Loading model bundle",
            extra={"model": self.source_id, "precision": self.precision, "device": str(self.device)},
        )
        start_time = time.perf_counter()
        loop = asyncio.get_running_loop()

        try:
            bundle = await loop.run_in_executor(
                self._executor,
                self._loader,
                self.source_id,
                self.precision,
                self.device,
                progress_sink,
            )
        except ModelLoadError:
            logger.exception("Failed to load model bundle", extra={"model": self.source_id})
            raise
        except Exception as e:
            logger.exception("Failed to load model bundle", extra={"model": self.source_id})
            raise ModelLoadError(
                f"Failed to load model '{self.source_id}': {e}",
                details={"model": self.source_id},
            ) from e
        finally:
            self._pending = None

        self._bundle = bundle
        logger.info(
            "Model bundle loaded",
            extra={
                "model": self.source_id,
                "token_window": bundle.token_window,
                "load_time_ms": round((time.perf_counter() - start_time) * 1000, 2),
            },
        )
        return bundle
