"""Nearest-neighbour face matching over enrolled embeddings.

The matcher is a pure function of its inputs: callers load the candidate
templates (active identities only) and pass them in.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..core.constants import DEFAULT_MATCH_THRESHOLD
from ..core.exceptions import DimensionMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceCandidate:
    identity_id: str
    embedding: Sequence[float]


@dataclass(frozen=True)
class FaceMatch:
    identity_id: str
    distance: float
    confidence: float


def as_vector(values: Sequence[float], *, dimension: Optional[int] = None) -> np.ndarray:
    vec = np.asarray(values, dtype=np.float64).reshape(-1)
    if vec.size == 0:
        raise DimensionMismatch(dimension or 0, 0)
    if dimension is not None and vec.size != dimension:
        raise DimensionMismatch(dimension, int(vec.size))
    return vec


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    va = as_vector(a)
    vb = as_vector(b, dimension=va.size)
    return float(np.linalg.norm(va - vb))


def confidence_from_distance(distance: float) -> float:
    # distance is unbounded above, so confidence floors at 0
    return max(0.0, 1.0 - distance)


def match(
    sample: Sequence[float],
    candidates: Sequence[FaceCandidate],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    *,
    dimension: Optional[int] = None,
) -> Optional[FaceMatch]:
    """Return the closest candidate strictly under ``threshold``, or None.

    Equal distances resolve to the lowest identity id.
    """
    p = as_vector(sample, dimension=dimension)
    if not candidates:
        return None

    gallery = np.stack([as_vector(c.embedding, dimension=p.size) for c in candidates])
    distances = np.linalg.norm(gallery - p, axis=1)

    best_distance, best_id = min(
        (float(d), c.identity_id) for d, c in zip(distances, candidates)
    )
    if best_distance >= threshold:
        logger.info("No match below threshold %.2f (best distance=%.3f)", threshold, best_distance)
        return None

    logger.info("Matched identity %s (distance=%.3f, threshold=%.2f)", best_id, best_distance, threshold)
    return FaceMatch(
        identity_id=best_id,
        distance=best_distance,
        confidence=confidence_from_distance(best_distance),
    )
