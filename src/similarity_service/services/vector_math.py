"""
Vector math for embeddings: L2 normalization and cosine similarity.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from similarity_service.core.exceptions import DegenerateVectorError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


def normalize(vector: ArrayLike) -> NDArray[np.float32]:
    """
    Scale a vector to unit Euclidean length.

    Args:
        vector: 1D array of any real dtype

    Returns:
        float32 copy with L2 norm 1.0

    Raises:
        DegenerateVectorError: If the norm is zero or not finite
    """
    array = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(array))
    if norm == 0.0 or not np.isfinite(norm):
        raise DegenerateVectorError(
            "Cannot normalize a vector with zero or non-finite norm",
            details={"norm": norm, "dimension": int(array.size)},
        )
    return (array / norm).astype(np.float32)


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """
    Cosine of the angle between two vectors.

    Norms are recomputed, so inputs need not be normalized.

    Raises:
        ValueError: If the vectors differ in shape
        DegenerateVectorError: If either vector has zero norm
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise ValueError(f"Dimension mismatch: {vec_a.shape} vs {vec_b.shape}")

    norm_a = float(np.linalg.norm(vec_a))
    norm_b = float(np.linalg.norm(vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        raise DegenerateVectorError(
            "Cosine similarity is undefined for a zero vector",
            details={"norm_a": norm_a, "norm_b": norm_b},
        )

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    # Rounding can push |cos| a hair past 1
    return max(-1.0, min(1.0, similarity))
