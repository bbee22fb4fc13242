"""
modules/search/vector_search.py
---------------------------------
Similarity-search collaborator: cosine similarity between a query embedding
and the per-activity embeddings captured in the current SearchIndex.  The
index keeps them as one unit-row numpy matrix, so a query is a single
matrix-vector product followed by a stable argsort.

search(query, k) → list[SearchHit] (descending similarity)

Raises RetrievalUnavailable when no embedding generator is configured, the
index holds no vectors, or the query embedding cannot be produced or has the
wrong dimension; the
retrieval pipeline then degrades to token search.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import numpy as np

from modules.errors import RetrievalUnavailable
from modules.search.search_index import SearchIndexManager


@dataclass
class SearchHit:
    activity_id: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"activity_id": self.activity_id, "similarity": self.similarity, "metadata": self.metadata}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchHit":
        return cls(str(data["activity_id"]), float(data["similarity"]), dict(data.get("metadata") or {}))


class SimilaritySearch(Protocol):
    def search(self, query: str, k: int) -> list[SearchHit]: ...


def cosine(a: list[float], b: list[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    va, vb = np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class VectorSearch:
    """Brute-force cosine search over the index's embedding matrix."""

    def __init__(
        self,
        index_manager: SearchIndexManager,
        embed_fn: Optional[Callable[[str], list[float]]],
    ) -> None:
        self._index_manager = index_manager
        self._embed_fn = embed_fn

    def search(self, query: str, k: int) -> list[SearchHit]:
        if self._embed_fn is None:
            raise RetrievalUnavailable("no embedding generator configured")
        index = self._index_manager.get_index()
        matrix = index.embedding_matrix
        if matrix is None or not index.embedding_ids:
            raise RetrievalUnavailable("index holds no embeddings")
        try:
            qvec = np.asarray(self._embed_fn(query), dtype=np.float64)
        except Exception as exc:
            raise RetrievalUnavailable(f"query embedding failed: {exc}") from exc

        if qvec.shape != (matrix.shape[1],):
            raise RetrievalUnavailable(
                f"query embedding has shape {qvec.shape}, index rows have {matrix.shape[1]} dims")
        qnorm = np.linalg.norm(qvec)
        sims = matrix @ qvec / qnorm if qnorm > 0 else np.zeros(len(index.embedding_ids))
        np.clip(sims, 0.0, None, out=sims)

        # Rows are in id order, so a stable sort breaks similarity ties by id.
        order = np.argsort(-sims, kind="stable")[:max(k, 0)]
        return [
            SearchHit(
                activity_id = index.embedding_ids[i],
                similarity  = float(sims[i]),
                metadata    = {"title": index.activities[index.embedding_ids[i]].activity.title},
            )
            for i in order
        ]
