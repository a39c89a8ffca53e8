# Semantic Dupes - Find semantically duplicated components, hooks and functions
# Copyright (C) 2025  Jonathan Louis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Vector store - chunk id to embedding, with exact cosine similarity search.

Search is brute force over every stored vector. Callers depend on the
VectorIndex protocol only, so an approximate backend can replace
VectorStore without touching them.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable
import logging

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .errors import CorruptIndexError, DimensionMismatchError
from .models import SimilarityResult
from .storage import read_json_document, write_json_atomic


logger = logging.getLogger(__name__)

VECTORS_FILE = "vectors.json"


@runtime_checkable
class VectorIndex(Protocol):
    """
    Protocol for chunk vector storage.

    Duplicate detection and similarity lookups find neighbours through
    query(), so an approximate index can stand in for VectorStore.
    """

    @property
    def dimension(self) -> Optional[int]:
        ...

    def upsert(self, id: str, vector: Sequence[float]) -> None:
        ...

    def remove(self, id: str) -> bool:
        ...

    def remove_by_prefix(self, prefix: str) -> List[str]:
        ...

    def get(self, id: str) -> Optional[np.ndarray]:
        ...

    def has(self, id: str) -> bool:
        ...

    def query(
        self,
        vector: Sequence[float],
        k: Optional[int] = None,
        min_similarity: float = 0.0,
    ) -> List[SimilarityResult]:
        """Nearest neighbours, best first; ties ordered by id."""
        ...

    def ids(self) -> List[str]:
        ...

    def size(self) -> int:
        ...


class VectorStore:
    """Insertion-ordered, exact in-memory vector index."""

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension
        self._vectors: Dict[str, np.ndarray] = {}

        # Stacked matrix for queries, rebuilt lazily after writes
        self._matrix: Optional[np.ndarray] = None
        self._matrix_ids: List[str] = []

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _coerce(self, vector: Sequence[float], context: str = "vector") -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32).reshape(-1)
        if self._dimension is not None and arr.shape[0] != self._dimension:
            raise DimensionMismatchError(self._dimension, arr.shape[0], context)
        return arr

    def _invalidate(self):
        self._matrix = None
        self._matrix_ids = []

    def upsert(self, id: str, vector: Sequence[float]) -> None:
        """
        Insert or replace a vector.

        The first vector fixes the store's dimension if it was not given.

        Raises:
            DimensionMismatchError: If the vector has another dimension
        """
        arr = self._coerce(vector)
        if self._dimension is None:
            self._dimension = int(arr.shape[0])
        self._vectors[id] = arr
        self._invalidate()

    def remove(self, id: str) -> bool:
        if self._vectors.pop(id, None) is None:
            return False
        self._invalidate()
        return True

    def remove_many(self, ids: Iterable[str]) -> List[str]:
        removed = [id for id in list(ids) if self._vectors.pop(id, None) is not None]
        if removed:
            self._invalidate()
        return removed

    def remove_by_prefix(self, prefix: str) -> List[str]:
        """Remove every id starting with prefix (e.g. "src/Card.tsx#")."""
        return self.remove_many([id for id in self._vectors if id.startswith(prefix)])

    def get(self, id: str) -> Optional[np.ndarray]:
        return self._vectors.get(id)

    def has(self, id: str) -> bool:
        return id in self._vectors

    def ids(self) -> List[str]:
        return list(self._vectors)

    def size(self) -> int:
        return len(self._vectors)

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, id: str) -> bool:
        return id in self._vectors

    def clear(self):
        self._vectors.clear()
        self._invalidate()

    def matrix(self) -> np.ndarray:
        """All vectors stacked in insertion order."""
        if self._matrix is None:
            self._matrix_ids = list(self._vectors)
            if self._matrix_ids:
                self._matrix = np.vstack([self._vectors[i] for i in self._matrix_ids])
            else:
                self._matrix = np.zeros((0, self._dimension or 0), dtype=np.float32)
        return self._matrix

    def query(
        self,
        vector: Sequence[float],
        k: Optional[int] = None,
        min_similarity: float = 0.0,
    ) -> List[SimilarityResult]:
        """
        Find the stored vectors most similar to a query vector.

        Args:
            vector: Query vector (same dimension as the store)
            k: Maximum number of results (None = all above the threshold)
            min_similarity: Inclusive cosine similarity threshold

        Returns:
            Results sorted by score descending, then id ascending
        """
        if not self._vectors:
            return []

        query = self._coerce(vector, context="query vector")
        matrix = self.matrix()

        scores = cosine_similarity(query.reshape(1, -1), matrix)[0]
        scores = np.clip(scores, -1.0, 1.0)

        results = [
            SimilarityResult(id=id, score=float(score))
            for id, score in zip(self._matrix_ids, scores)
            if score >= min_similarity
        ]
        results.sort(key=lambda r: (-r.score, r.id))

        if k is not None:
            results = results[:k]

        return results

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, index_dir: Path):
        data = {
            "dimension": self._dimension,
            "ids": list(self._vectors),
            "vectors": [vec.tolist() for vec in self._vectors.values()],
        }
        write_json_atomic(Path(index_dir) / VECTORS_FILE, data)

    @classmethod
    def load(cls, index_dir: Path) -> "VectorStore":
        """
        Load persisted vectors.

        Raises:
            IndexNotFoundError: If no vector file exists
            CorruptIndexError: If the document is invalid
        """
        path = Path(index_dir) / VECTORS_FILE
        data = read_json_document(path)

        try:
            dimension = data["dimension"]
            ids = data["ids"]
            vectors = data["vectors"]
        except (KeyError, TypeError) as e:
            raise CorruptIndexError(f"Malformed vector document {path}: {e}", path) from e

        if not isinstance(ids, list) or not isinstance(vectors, list) or len(ids) != len(vectors):
            raise CorruptIndexError(f"Malformed vector document {path}: ids and vectors differ", path)

        store = cls(dimension=int(dimension) if dimension is not None else None)
        try:
            for id, vec in zip(ids, vectors):
                store.upsert(str(id), vec)
        except (ValueError, TypeError, DimensionMismatchError) as e:
            raise CorruptIndexError(f"Malformed vector in {path}: {e}", path) from e

        logger.debug("Loaded %d vectors from %s", store.size(), path)
        return store
