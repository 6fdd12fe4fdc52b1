"""
Token-window chunking of input text.

Text encoders accept a fixed number of tokens (77 for the CLIP family).
Anything past the window is silently dropped at encode time, so long text
is split into consecutive token windows that are embedded separately and
pooled afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TextChunk:
    """
    A slice of the input text covering token ids [start, end).

    Attributes:
        text: Decoded text of the token slice, special tokens stripped
        start: Index of the first token of the slice
        end: Index one past the last token of the slice
    """

    text: str
    start: int
    end: int

    @property
    def token_count(self) -> int:
        return self.end - self.start


def content_window(tokenizer: Any, token_window: int) -> int:
    """
    Number of content tokens that fit in the encoder window.

    The tokenizer adds its own special tokens (BOS/EOS for CLIP) at encode
    time, and those share the window with the content.
    """
    special = int(tokenizer.num_special_tokens_to_add(pair=False))
    return max(1, token_window - special)


def split(text: str, tokenizer: Any, max_tokens: int | None) -> list[TextChunk]:
    """
    Split text into contiguous, non-overlapping token windows.

    Args:
        text: Input text
        tokenizer: HuggingFace tokenizer (encode/decode)
        max_tokens: Tokens per window; None keeps the whole text as one
            chunk and leaves truncation to the encoder

    Returns:
        Chunks in order; empty when the text has no tokens

    Raises:
        ValueError: If max_tokens is smaller than 1
    """
    if max_tokens is not None and max_tokens < 1:
        raise ValueError(f"max_tokens must be at least 1, got {max_tokens}")

    token_ids = list(tokenizer.encode(text, add_special_tokens=False))
    total = len(token_ids)
    if total == 0:
        return []

    step = total if max_tokens is None else max_tokens

    chunks = []
    for start in range(0, total, step):
        end = min(start + step, total)
        decoded = tokenizer.decode(token_ids[start:end], skip_special_tokens=True)
        chunks.append(TextChunk(text=decoded.strip(), start=start, end=end))
    return chunks
