"""In-memory vector index over entity embeddings.

One :class:`~codecontext.models.EmbeddingVector` per entity, kept in
insertion order with an id -> position map for point lookups.  Search is
a brute-force cosine scan, which stays in the low hundreds of
milliseconds up to roughly 10^5 vectors.

The store is populated once while an index is built and only read
afterwards, so concurrent queries never observe a partial write.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from .embeddings import cosine_similarity
from .errors import DimensionMismatchError
from .models import EmbeddingVector, SimilarityResult

logger = logging.getLogger(__name__)

SERIALIZATION_VERSION = 1

VectorFilter = Callable[[EmbeddingVector], bool]


class VectorStore:
    """Append-only embedding store with cosine top-K search.

    All vectors share the dimensionality of the first one added; adding a
    vector with a different length raises :class:`DimensionMismatchError`.
    Re-adding an existing entity id replaces its vector in place.
    """

    def __init__(self) -> None:
        self._vectors: List[EmbeddingVector] = []
        self._positions: Dict[str, int] = {}
        self.dimension: Optional[int] = None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, item: EmbeddingVector) -> None:
        size = len(item.vector)
        if self.dimension is None:
            self.dimension = size
        elif size != self.dimension:
            raise DimensionMismatchError(self.dimension, size)

        position = self._positions.get(item.entity_id)
        if position is None:
            self._positions[item.entity_id] = len(self._vectors)
            self._vectors.append(item)
        else:
            self._vectors[position] = item

    def add_batch(self, items: Iterable[EmbeddingVector]) -> None:
        for item in items:
            self.add(item)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._vectors)

    def count(self) -> int:
        return len(self._vectors)

    def get(self, entity_id: str) -> Optional[EmbeddingVector]:
        position = self._positions.get(entity_id)
        return self._vectors[position] if position is not None else None

    def entity_ids(self) -> List[str]:
        return [item.entity_id for item in self._vectors]

    def find_similar(
        self,
        query_vector: List[float],
        top_k: int = 10,
        predicate: Optional[VectorFilter] = None,
    ) -> List[SimilarityResult]:
        """Return the *top_k* stored vectors most similar to *query_vector*.

        Ties are broken by entity id so results are stable.  A zero
        vector scores 0 against everything.
        """
        if top_k <= 0 or not self._vectors:
            return []
        results: List[SimilarityResult] = []
        for item in self._vectors:
            if predicate is not None and not predicate(item):
                continue
            results.append(SimilarityResult(
                entity_id=item.entity_id,
                score=cosine_similarity(query_vector, item.vector),
                kind=item.kind,
                file=item.file,
            ))
        results.sort(key=lambda r: (-r.score, r.entity_id))
        return results[:top_k]

    def find_similar_to(self, entity_id: str, top_k: int = 10) -> List[SimilarityResult]:
        """Nearest neighbours of a stored entity, excluding the entity itself."""
        item = self.get(entity_id)
        if item is None:
            return []
        return self.find_similar(
            item.vector, top_k, predicate=lambda other: other.entity_id != entity_id,
        )

    def scores(self, query_vector: List[float]) -> Dict[str, float]:
        """Similarity of every stored vector to *query_vector*, keyed by id."""
        return {
            item.entity_id: cosine_similarity(query_vector, item.vector)
            for item in self._vectors
        }

    def stats(self) -> Dict[str, Any]:
        by_kind: Dict[str, int] = {}
        for item in self._vectors:
            by_kind[item.kind] = by_kind.get(item.kind, 0) + 1
        return {
            "total_vectors": len(self._vectors),
            "by_kind": by_kind,
            "dimension": self.dimension or 0,
        }

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": SERIALIZATION_VERSION,
            "vectors": [item.to_dict() for item in self._vectors],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VectorStore":
        version = data.get("version", SERIALIZATION_VERSION)
        if version != SERIALIZATION_VERSION:
            raise ValueError(f"Unsupported vector store version: {version}")
        store = cls()
        store.add_batch(EmbeddingVector.from_dict(row) for row in data.get("vectors", []))
        return store

    @classmethod
    def from_json(cls, payload: str) -> "VectorStore":
        return cls.from_dict(json.loads(payload))
