"""
Request controller: the message boundary of the similarity pipeline.

A request is turned into a stream of events on its own channel:

    initiate -> (progress)* -> ready -> complete | error

progress/ready appear only when this request had to wait for the model
bundle to be built. Requests run strictly one at a time; a second request
waits for the first to finish.
"""

from __future__ import annotations

import asyncio
import enum
import time
from contextlib import aclosing
from typing import TYPE_CHECKING

from similarity_service.core.exceptions import EmptyInputError, ServiceError
from similarity_service.logging import get_logger
from similarity_service.schemas import (
    CompleteEvent,
    ErrorEvent,
    InitiateEvent,
    ProgressInfo,
    ProgressMessage,
    ReadyEvent,
)
from similarity_service.services import text_chunker
from similarity_service.services.vector_math import cosine_similarity

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from concurrent.futures import Executor

    import numpy as np
    from numpy.typing import NDArray

    from similarity_service.schemas import SimilarityEvent, SimilarityRequest
    from similarity_service.services.aggregator import EmbeddingAggregator
    from similarity_service.services.image_fetcher import ImageFetcher
    from similarity_service.services.model_fetcher import ProgressEvent
    from similarity_service.services.model_provider import ModelBundle, ModelProvider

    # An outbound event and, for error events, the exception behind it
    _Envelope = tuple[SimilarityEvent, ServiceError | None]


class ControllerState(enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    LOADING = "loading"
    READY = "ready"
    COMPUTING = "computing"
    DONE = "done"
    ERROR = "error"


class RequestController:
    """
    Orchestrates model acquisition, embedding and scoring for one request
    at a time, reporting each step as an event.

    Encoder calls run on the given executor (the background execution
    context); the event loop stays free to accept further messages.
    """

    def __init__(
        self,
        provider: ModelProvider,
        fetcher: ImageFetcher,
        aggregator: EmbeddingAggregator,
        chunking: bool,
        max_tokens: int | None,
        executor: Executor | None = None,
    ) -> None:
        self.provider = provider
        self.fetcher = fetcher
        self.aggregator = aggregator
        self.chunking = chunking
        self.max_tokens = max_tokens
        self._executor = executor
        self._lock = asyncio.Lock()
        self._state = ControllerState.IDLE

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def stream(self, request: SimilarityRequest) -> AsyncIterator[SimilarityEvent]:
        """
        Run one request and yield its events in order.

        Waits for any running request to finish first. The final event is
        always CompleteEvent or ErrorEvent.
        """
        async with aclosing(self._session(request)) as session:
            async for event, _error in session:
                yield event

    async def compute(self, request: SimilarityRequest) -> CompleteEvent:
        """
        Run one request and return its result.

        Raises:
            ServiceError: The error that ended the request
        """
        result: CompleteEvent | None = None
        failure: ServiceError | None = None

        async with aclosing(self._session(request)) as session:
            async for event, error in session:
                if isinstance(event, CompleteEvent):
                    result = event
                elif error is not None:
                    failure = error

        if failure is not None:
            raise failure
        if result is None:
            raise RuntimeError("Request finished without a result")
        return result

    async def _session(self, request: SimilarityRequest) -> AsyncIterator[_Envelope]:
        async with self._lock:
            channel: asyncio.Queue[_Envelope] = asyncio.Queue()
            task = asyncio.create_task(self._run(request, channel))
            try:
                while True:
                    envelope = await channel.get()
                    yield envelope
                    if isinstance(envelope[0], (CompleteEvent, ErrorEvent)):
                        break
            finally:
                if not task.done():
                    # The pipeline is not cancellable; hold the lock until it finishes
                    await asyncio.wait({task})

    async def _run(self, request: SimilarityRequest, channel: asyncio.Queue[_Envelope]) -> None:
        logger = get_logger()
        loop = asyncio.get_running_loop()
        start_time = time.perf_counter()

        def relay_progress(progress: ProgressEvent) -> None:
            # Called from the loader thread
            message = ProgressMessage(
                progress=ProgressInfo(
                    file=progress.file,
                    name=progress.name,
                    loaded=progress.loaded,
                    total=progress.total,
                    progress=progress.progress,
                )
            )
            loop.call_soon_threadsafe(channel.put_nowait, (message, None))

        logger.info(
            "Similarity request received",
            extra={"text_length": len(request.text), "model_loaded": self.provider.is_loaded},
        )

        try:
            self._state = ControllerState.INITIALIZING
            channel.put_nowait((InitiateEvent(), None))

            if self.provider.is_loaded:
                bundle = await self.provider.acquire()
                self._state = ControllerState.READY
            else:
                self._state = ControllerState.LOADING
                bundle = await self.provider.acquire(relay_progress)
                self._state = ControllerState.READY
                channel.put_nowait((ReadyEvent(), None))

            self._state = ControllerState.COMPUTING
            text_embedding, image_embedding, chunks = await self._compute(bundle, request)
            score = cosine_similarity(text_embedding, image_embedding)

            processing_time_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.info(
                "Similarity computed",
                extra={
                    "score": round(score, 6),
                    "chunks": chunks,
                    "processing_time_ms": processing_time_ms,
                },
            )
            self._state = ControllerState.DONE
            complete = CompleteEvent(
                output=score,
                chunks=chunks,
                dimension=int(text_embedding.shape[0]),
                processing_time_ms=processing_time_ms,
            )
            channel.put_nowait((complete, None))
        except ServiceError as e:
            self._state = ControllerState.ERROR
            logger.warning(
                "Similarity request failed",
                extra={"error_code": e.error, "error_message": e.message, "details": e.details},
            )
            channel.put_nowait((ErrorEvent(error=e.message, code=e.error), e))
        except Exception as e:
            self._state = ControllerState.ERROR
            logger.exception("Unexpected error during similarity request")
            error = ServiceError(
                error="internal_error",
                message=f"Unexpected error: {type(e).__name__}",
                status_code=500,
            )
            channel.put_nowait((ErrorEvent(error=error.message, code=error.error), error))
        finally:
            self._state = ControllerState.IDLE

    async def _compute(
        self,
        bundle: ModelBundle,
        request: SimilarityRequest,
    ) -> tuple[NDArray[np.float32], NDArray[np.float32], int]:
        """Embed text and image concurrently; returns (text, image, chunk count)."""
        text = request.text.strip()
        if not text:
            raise EmptyInputError("Text is empty")

        chunks = text_chunker.split(text, bundle.tokenizer, self._chunk_size(bundle))
        get_logger().debug(
            "Text split into chunks",
            extra={"chunks": len(chunks), "token_counts": [c.token_count for c in chunks]},
        )

        loop = asyncio.get_running_loop()

        async def embed_text() -> NDArray[np.float32]:
            return await loop.run_in_executor(
                self._executor,
                self.aggregator.embed_text,
                chunks,
                bundle.tokenizer,
                bundle.text_encoder,
                bundle.token_window,
            )

        async def embed_image() -> NDArray[np.float32]:
            image = await self.fetcher.fetch(request.url)
            return await loop.run_in_executor(
                self._executor,
                self.aggregator.embed_image,
                image,
                bundle.processor,
                bundle.vision_encoder,
            )

        # Both branches run to completion before any failure is reported
        text_result, image_result = await asyncio.gather(embed_text(), embed_image(), return_exceptions=True)
        for outcome in (text_result, image_result):
            if isinstance(outcome, BaseException):
                raise outcome
        return text_result, image_result, len(chunks)

    def _chunk_size(self, bundle: ModelBundle) -> int | None:
        if not self.chunking:
            return None
        if self.max_tokens is not None:
            return self.max_tokens
        return text_chunker.content_window(bundle.tokenizer, bundle.token_window)
