from __future__ import annotations

from typing import Optional, Sequence, Union

import numpy as np

ArrayLike = Union[np.ndarray, Sequence[float]]


def l2_normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise) safely."""
    arr = np.asarray(vec, dtype=np.float32)
    if arr.ndim == 1:
        denom = float(np.linalg.norm(arr))
        if denom < eps:
            return arr
        return arr / denom
    if arr.ndim == 2:
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms = np.maximum(norms, eps)
        return arr / norms
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def as_embedding(values: Optional[ArrayLike]) -> Optional[np.ndarray]:
    """Coerce an embedding-like value to a flat float32 array, or None if empty."""
    if values is None:
        return None
    arr = np.asarray(values, dtype=np.float32).reshape(-1)
    if arr.size == 0:
        return None
    return arr


def euclidean_distance(a: ArrayLike, b: ArrayLike) -> float:
    """Euclidean distance for 1D vectors of equal length."""
    va = np.asarray(a, dtype=np.float32).reshape(-1)
    vb = np.asarray(b, dtype=np.float32).reshape(-1)
    if va.shape != vb.shape:
        raise ValueError(f"Embedding length mismatch: {va.shape[0]} != {vb.shape[0]}")
    return float(np.linalg.norm(va - vb))
