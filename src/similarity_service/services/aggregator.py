"""
Embedding extraction and pooling.

Text: every chunk is encoded on its own, each raw embedding is normalized,
and several chunks are combined by mean-then-renormalize so that chunks
contribute by direction, not by magnitude.

Image: preprocess, encode, normalize.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import torch

from similarity_service.core.exceptions import EmptyInputError, EncodeError
from similarity_service.logging import get_logger
from similarity_service.services.vector_math import normalize

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray
    from PIL import Image

    from similarity_service.services.text_chunker import TextChunk

# Chunks per text-encoder forward pass; bounds memory for very long text
DEFAULT_TEXT_BATCH_SIZE = 32


def pool(embeddings: Sequence[NDArray[np.float32]]) -> NDArray[np.float32]:
    """
    Combine normalized embeddings into one unit vector.

    A single embedding is returned unchanged; several are averaged
    element-wise and the mean is normalized again.

    Raises:
        EmptyInputError: If no embeddings are given
        DegenerateVectorError: If the mean is the zero vector
    """
    if len(embeddings) == 0:
        raise EmptyInputError("No embeddings to pool")
    if len(embeddings) == 1:
        return embeddings[0]
    return normalize(np.mean(np.stack(embeddings), axis=0))


class EmbeddingAggregator:
    """
    Runs the encoders and turns their outputs into normalized embeddings.

    Attributes:
        device: Torch device the encoders live on
        dtype: Floating point dtype of the encoder weights
        batch_size: Most chunks passed to the text encoder in one forward pass
    """

    def __init__(
        self,
        device: torch.device,
        dtype: torch.dtype,
        batch_size: int = DEFAULT_TEXT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.device = device
        self.dtype = dtype
        self.batch_size = batch_size

    @torch.no_grad()
    def embed_text(
        self,
        chunks: Sequence[TextChunk],
        tokenizer: Any,
        text_encoder: Any,
        token_window: int,
    ) -> NDArray[np.float32]:
        """
        Encode text chunks and pool them into one unit-length embedding.

        Args:
            chunks: Output of text_chunker.split()
            tokenizer: Tokenizer matching the text encoder
            text_encoder: Text tower with projection head
            token_window: Fixed length every chunk is padded/truncated to

        Returns:
            1D float32 array, L2-normalized

        Raises:
            EmptyInputError: If chunks is empty
            EncodeError: If tokenization or the forward pass fails
            DegenerateVectorError: If an embedding has zero norm
        """
        if len(chunks) == 0:
            raise EmptyInputError("Text produced no tokens to embed")

        rows: list[NDArray[np.float32]] = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start : start + self.batch_size]
            raw = self._encode_text_batch([chunk.text for chunk in batch], tokenizer, text_encoder, token_window)
            if raw.shape[0] != len(batch):
                raise EncodeError(
                    "Text encoder returned an unexpected number of embeddings",
                    details={"chunks": len(batch), "embeddings": int(raw.shape[0])},
                )
            rows.extend(normalize(row) for row in raw)

        return pool(rows)

    def _encode_text_batch(
        self,
        texts: list[str],
        tokenizer: Any,
        text_encoder: Any,
        token_window: int,
    ) -> NDArray[np.float32]:
        try:
            inputs = tokenizer(
                texts,
                padding="max_length",
                truncation=True,
                max_length=token_window,
                return_tensors="pt",
            )
            inputs = {name: tensor.to(self.device) for name, tensor in inputs.items()}
            outputs = text_encoder(**inputs)
            return outputs.text_embeds.float().cpu().numpy()
        except Exception as e:
            get_logger().exception("Text encoder failed", extra={"chunks": len(texts)})
            raise EncodeError(
                f"Text encoding failed: {e}",
                details={"chunks": len(texts)},
            ) from e

    @torch.no_grad()
    def embed_image(
        self,
        image: Image.Image,
        processor: Any,
        vision_encoder: Any,
    ) -> NDArray[np.float32]:
        """
        Encode one image into a unit-length embedding.

        Args:
            image: PIL Image in RGB mode
            processor: HuggingFace image processor
            vision_encoder: Vision tower with projection head

        Returns:
            1D float32 array, L2-normalized

        Raises:
            EncodeError: If preprocessing or the forward pass fails
            DegenerateVectorError: If the embedding has zero norm
        """
        try:
            inputs = processor(images=image, return_tensors="pt")
            pixel_values = inputs["pixel_values"].to(self.device, dtype=self.dtype)
            outputs = vision_encoder(pixel_values=pixel_values)
            raw = outputs.image_embeds[0].float().cpu().numpy()
        except Exception as e:
            get_logger().exception("Image encoder failed")
            raise EncodeError(f"Image encoding failed: {e}") from e

        return normalize(raw)
