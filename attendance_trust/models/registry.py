"""
Embedding Algorithm Registry - tracks the embedding models the engine accepts
and the vector dimensionality each one declares
"""
import logging
import threading
from typing import Dict, Any, Optional
from attendance_trust.config import settings

logger = logging.getLogger(__name__)


class AlgorithmRegistry:
    """Registry of embedding algorithms and their declared dimensionality"""

    def __init__(self):
        self._algorithms: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._loaded = False

    def load_algorithms(self) -> None:
        """Register the algorithms configured for this deployment"""
        if self._loaded:
            return

        for algorithm_id, dimension in settings.EMBEDDING_ALGORITHMS.items():
            self.register(algorithm_id, dimension)

        self._loaded = True
        logger.info(f"Registered {len(self._algorithms)} embedding algorithm(s)")

    def register(self, algorithm_id: str, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError(f"Dimension must be positive, got {dimension}")
        with self._lock:
            self._algorithms[algorithm_id] = int(dimension)

    def dimension_for(self, algorithm_id: str) -> Optional[int]:
        """Declared dimensionality, or None for an unknown algorithm"""
        if not self._loaded:
            self.load_algorithms()
        return self._algorithms.get(algorithm_id)

    def list_algorithms(self) -> Dict[str, Any]:
        if not self._loaded:
            self.load_algorithms()
        return {
            "algorithms": [
                {"algorithm_id": name, "dimension": dim}
                for name, dim in sorted(self._algorithms.items())
            ],
            "count": len(self._algorithms)
        }


# Singleton instance
algorithm_registry = AlgorithmRegistry()
