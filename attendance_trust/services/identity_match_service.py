"""
Identity Match Service - compares face embeddings

Embeddings come from an external model; this service only validates,
compares and averages them. Anything malformed fails closed (no match).
"""
import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from attendance_trust.config import settings
from attendance_trust.models.domain import FaceEmbedding, FaceMatchResult, utcnow
from attendance_trust.models.registry import algorithm_registry

logger = logging.getLogger(__name__)


def _no_match(message: str) -> FaceMatchResult:
    return FaceMatchResult(match=False, similarity=0.0, distance=math.inf, message=message)


def _as_vector(values: Sequence[float]) -> Optional[np.ndarray]:
    try:
        vector = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if vector.ndim != 1 or vector.size == 0 or not np.all(np.isfinite(vector)):
        return None
    return vector


class IdentityMatchService:
    """Euclidean-distance face matching with a similarity threshold"""

    def __init__(self, threshold: Optional[float] = None):
        self.threshold = settings.FACE_MATCH_THRESHOLD if threshold is None else threshold

    def compare_vectors(
        self,
        first: Sequence[float],
        second: Sequence[float],
        threshold: Optional[float] = None
    ) -> FaceMatchResult:
        """
        Compare two raw embedding vectors.

        similarity = max(0, 1 - euclidean_distance); a match needs
        similarity >= threshold.
        """
        threshold = self.threshold if threshold is None else threshold

        a = _as_vector(first)
        b = _as_vector(second)
        if a is None or b is None:
            return _no_match("Embedding contains invalid values")
        if a.shape != b.shape:
            return _no_match(f"Embedding length mismatch: {a.size} vs {b.size}")

        distance = float(np.linalg.norm(a - b))
        similarity = max(0.0, 1.0 - distance)
        match = similarity >= threshold

        if match:
            message = f"Face match confirmed ({round(similarity * 100)}% similarity)"
        else:
            message = (
                f"Face mismatch detected ({round(similarity * 100)}% similarity, "
                f"threshold: {round(threshold * 100)}%)"
            )

        return FaceMatchResult(match=match, similarity=similarity, distance=distance, message=message)

    def compare(
        self,
        registered: FaceEmbedding,
        live: FaceEmbedding,
        threshold: Optional[float] = None
    ) -> FaceMatchResult:
        """Compare a registered template with a live embedding."""
        if registered.algorithm_id != live.algorithm_id:
            logger.warning(
                f"Refusing cross-algorithm comparison: "
                f"{registered.algorithm_id} vs {live.algorithm_id}"
            )
            return _no_match("Embeddings come from different algorithms")

        expected = algorithm_registry.dimension_for(registered.algorithm_id)
        if expected is None:
            logger.warning(f"Unknown embedding algorithm: {registered.algorithm_id}")
            return _no_match(f"Unknown embedding algorithm: {registered.algorithm_id}")

        if len(registered.vector) != expected or len(live.vector) != expected:
            return _no_match(
                f"Embedding dimensionality must be {expected}, got "
                f"{len(registered.vector)} and {len(live.vector)}"
            )

        return self.compare_vectors(registered.vector, live.vector, threshold)

    def validate(self, embedding: Optional[FaceEmbedding]) -> bool:
        """Check an embedding before storage or comparison."""
        if embedding is None:
            return False

        expected = algorithm_registry.dimension_for(embedding.algorithm_id)
        if expected is None or len(embedding.vector) != expected:
            logger.warning(
                f"Invalid embedding length {len(embedding.vector)} for "
                f"{embedding.algorithm_id}, expected {expected}"
            )
            return False

        if _as_vector(embedding.vector) is None:
            logger.warning("Embedding contains invalid values")
            return False

        if not math.isfinite(embedding.quality_confidence) or \
                embedding.quality_confidence < settings.MIN_EMBEDDING_QUALITY:
            logger.warning(f"Low embedding quality: {embedding.quality_confidence}")
            return False

        return True

    def average(self, embeddings: List[FaceEmbedding]) -> Optional[FaceEmbedding]:
        """
        Element-wise mean of several enrollment captures.

        Returns None for an empty list, mixed algorithms, mixed lengths or
        non-finite values.
        """
        if not embeddings:
            return None

        algorithm_id = embeddings[0].algorithm_id
        if any(e.algorithm_id != algorithm_id for e in embeddings):
            logger.warning("Cannot average embeddings from different algorithms")
            return None

        vectors = [_as_vector(e.vector) for e in embeddings]
        if any(v is None for v in vectors) or len({v.size for v in vectors}) != 1:
            logger.warning("Cannot average malformed or mismatched embeddings")
            return None

        mean_vector = np.mean(np.stack(vectors), axis=0)
        mean_confidence = sum(e.quality_confidence for e in embeddings) / len(embeddings)

        return FaceEmbedding(
            vector=mean_vector.tolist(),
            algorithm_id=algorithm_id,
            captured_at=utcnow(),
            quality_confidence=mean_confidence
        )


# Singleton instance
identity_match_service = IdentityMatchService()
