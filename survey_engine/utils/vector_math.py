"""
Vector helpers for embedding comparison
"""

import numpy as np


def as_vector(values) -> np.ndarray:
    """Convert an embedding (list, tuple, ndarray) to a float vector"""
    return np.asarray(values, dtype=np.float64).reshape(-1)


def l2_normalize(vector) -> np.ndarray:
    vector = as_vector(vector)
    norm = np.linalg.norm(vector)
    if norm > 0:
        return vector / norm
    return vector


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 for empty vectors, mismatched dimensions, or zero vectors.
    """
    if a is None or b is None:
        return 0.0
    a = as_vector(a)
    b = as_vector(b)
    if a.size == 0 or b.size == 0 or a.shape != b.shape:
        return 0.0
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def max_similarity(vector, others) -> float:
    """Maximum cosine similarity of vector against a list of vectors"""
    scores = [cosine_similarity(vector, other) for other in others if other is not None]
    return max(scores) if scores else 0.0
