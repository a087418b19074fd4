"""
Embedding gateway.

Wraps the embedding provider, checks vector dimensionality and converts vectors
to and from their stored form. Batch calls are best-effort: each text that
cannot be embedded comes back as None instead of failing the batch.
"""

import json
from typing import Any, List, Optional, Sequence

from ..utils.errors import DimensionMismatch, ServiceUnavailable
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingGateway:
    """Single entry point for turning text into vectors."""

    def __init__(self, provider, dimension: int, batch_size: int = 96):
        """
        Args:
            provider: Object with ``embed(text)``; ``embed_batch(texts)`` is used when
                ``provider.supports_batch`` is true
            dimension: Expected vector length
            batch_size: Maximum texts per provider batch call
        """
        self.provider = provider
        self.dimension = dimension
        self.batch_size = max(1, batch_size)

    def _check(self, vector: Optional[Sequence[float]]) -> List[float]:
        if not vector:
            raise ServiceUnavailable('Embedding provider returned an empty vector')
        if len(vector) != self.dimension:
            logger.error(f'Embedding provider returned {len(vector)} dimensions, expected {self.dimension}')
            raise DimensionMismatch(len(vector), self.dimension)
        return [float(v) for v in vector]

    def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            ServiceUnavailable: If the provider fails or returns nothing
            DimensionMismatch: If the vector has the wrong length
        """
        if not text or not text.strip():
            raise ServiceUnavailable('Cannot embed empty text')
        try:
            vector = self.provider.embed(text)
        except ServiceUnavailable:
            raise
        except Exception as e:
            logger.warning(f'Embedding provider error: {e}')
            raise ServiceUnavailable(f'Embedding provider error: {e}')
        return self._check(vector)

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        """
        Embed several texts, best-effort per item.

        Uses the provider's batch endpoint when it has one and falls back to
        individual calls for any chunk whose batch call fails.

        Returns:
            One entry per input text: the vector, or None if that text failed
        """
        results: List[Optional[List[float]]] = [None] * len(texts)

        for start in range(0, len(texts), self.batch_size):
            chunk = texts[start:start + self.batch_size]
            vectors = None

            if getattr(self.provider, 'supports_batch', False):
                try:
                    vectors = self.provider.embed_batch(chunk)
                    if len(vectors) != len(chunk):
                        raise ServiceUnavailable(f'Expected {len(chunk)} embeddings, got {len(vectors)}')
                except Exception as e:
                    logger.warning(f'Batch embedding failed for {len(chunk)} texts, falling back to single calls: {e}')

            for offset, text in enumerate(chunk):
                try:
                    if vectors is not None:
                        results[start + offset] = self._check(vectors[offset])
                    else:
                        results[start + offset] = self.embed(text)
                except DimensionMismatch:
                    raise
                except ServiceUnavailable as e:
                    logger.warning(f'Embedding failed for item {start + offset}: {e}')

        failed = sum(1 for r in results if r is None)
        if failed:
            logger.warning(f'{failed}/{len(texts)} texts could not be embedded')
        return results

    @staticmethod
    def format_for_storage(vector: Sequence[float]) -> List[float]:
        """Stored form of a vector (a knn_vector column takes a plain float list)."""
        return [float(v) for v in vector]

    @staticmethod
    def parse_stored(value: Any) -> Optional[List[float]]:
        """
        Decode a stored vector.

        Accepts a float list or the legacy ``"[0.1,0.2]"`` string form.

        Returns:
            The vector, or None when nothing usable is stored
        """
        if value is None or value == '':
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                logger.warning('Ignoring unparseable stored embedding')
                return None
        if not isinstance(value, (list, tuple)) or not value:
            return None
        try:
            return [float(v) for v in value]
        except (TypeError, ValueError):
            logger.warning('Ignoring stored embedding with non-numeric values')
            return None
