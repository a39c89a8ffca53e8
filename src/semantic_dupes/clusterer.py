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
Duplicate finder - groups near-duplicate chunks.

Two chunks are near-duplicates when their cosine similarity reaches the
threshold. Groups are the connected components of that relation, so if
A~B and B~C then A, B and C form one group even when A and C are further
apart. Every chunk lands in at most one group.
"""

from typing import Dict, Iterable, List, Optional, Sequence
import fnmatch
import logging

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .metadata_store import MetadataStore
from .models import DuplicateGroup, DuplicateMember, SearchResult, SimilarityResult
from .scorer import (
    average_pairwise_similarity,
    dominant_kind,
    duplicate_score,
    find_representative_idx,
    size_ratio,
    sort_duplicate_groups,
)
from .vector_store import VectorIndex


logger = logging.getLogger(__name__)


class UnionFind:
    """Disjoint sets over 0..n-1; the smaller index is always the root."""

    def __init__(self, n: int):
        self.parent = list(range(n))

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int):
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if ra < rb:
            self.parent[rb] = ra
        else:
            self.parent[ra] = rb


def _path_excluded(file_path: str, exclude_paths: Sequence[str]) -> bool:
    for pattern in exclude_paths:
        prefix = pattern.rstrip("/")
        if file_path == prefix or file_path.startswith(prefix + "/"):
            return True
        if fnmatch.fnmatch(file_path, pattern):
            return True
    return False


def find_duplicate_groups(
    vector_store: VectorIndex,
    metadata_store: MetadataStore,
    min_similarity: float = 0.85,
    min_group_size: int = 2,
    kind: Optional[str] = None,
    exclude_paths: Iterable[str] = (),
    max_neighbors: Optional[int] = None,
) -> List[DuplicateGroup]:
    """
    Find groups of semantically duplicated chunks.

    Args:
        vector_store: Chunk vectors
        metadata_store: Chunk metadata (defines member order)
        min_similarity: Inclusive cosine similarity threshold (0.0-1.0)
        min_group_size: Minimum members per group (at least 2)
        kind: Only consider chunks of this kind
        exclude_paths: Path prefixes or globs to leave out
        max_neighbors: Link each chunk to at most this many neighbours

    Returns:
        Groups sorted by duplicate score (highest first), then group id
    """
    exclude_paths = list(exclude_paths)
    min_group_size = max(2, min_group_size)

    # Candidates in metadata store order
    ids: List[str] = []
    metas = []
    rows = []
    for id, meta in metadata_store.items():
        if kind is not None and meta.kind != kind:
            continue
        if exclude_paths and _path_excluded(meta.file_path, exclude_paths):
            continue
        vec = vector_store.get(id)
        if vec is None:
            continue
        ids.append(id)
        metas.append(meta)
        rows.append(vec)

    if len(ids) < min_group_size:
        return []

    vectors = np.vstack(rows).astype(np.float32)
    position = {id: i for i, id in enumerate(ids)}
    uf = UnionFind(len(ids))

    # Neighbourhood of every candidate through the index query
    for i, id in enumerate(ids):
        neighbors = [
            position[hit.id]
            for hit in vector_store.query(vectors[i], min_similarity=min_similarity)
            if hit.id != id and hit.id in position
        ]
        if max_neighbors is not None:
            # Hits come best first, ties by id
            neighbors = neighbors[:max_neighbors]
        for j in neighbors:
            uf.union(i, j)

    # Components in first-seen order
    components: Dict[int, List[int]] = {}
    for i in range(len(ids)):
        components.setdefault(uf.find(i), []).append(i)

    groups = []
    for group_id, indices in enumerate(components.values(), 1):
        if len(indices) < min_group_size:
            continue

        group_vectors = vectors[indices]
        group_metas = [metas[i] for i in indices]

        rep = find_representative_idx(group_vectors)
        rep_sims = cosine_similarity(group_vectors[rep:rep + 1], group_vectors)[0]

        avg = average_pairwise_similarity(group_vectors)
        ratio = size_ratio(group_metas)

        groups.append(DuplicateGroup(
            id=group_id,
            members=[
                DuplicateMember(id=ids[i], metadata=metas[i], score=float(min(rep_sims[pos], 1.0)))
                for pos, i in enumerate(indices)
            ],
            kind=dominant_kind(m.kind for m in group_metas),
            avg_similarity=avg,
            size_ratio=ratio,
            duplicate_score=duplicate_score(avg, ratio),
        ))

    logger.debug(
        "%d candidates, %d components, %d groups at %.2f",
        len(ids), len(components), len(groups), min_similarity,
    )

    return sort_duplicate_groups(groups)


def _to_search_results(
    hits: List[SimilarityResult],
    metadata_store: MetadataStore,
) -> List[SearchResult]:
    results = []
    for hit in hits:
        meta = metadata_store.get(hit.id)
        if meta is None:
            continue
        results.append(SearchResult(
            id=hit.id,
            file_path=meta.file_path,
            start_line=meta.start_line,
            end_line=meta.end_line,
            name=meta.name,
            kind=meta.kind,
            score=hit.score,
        ))
    return results


def find_similar_to_query(
    vector_store: VectorIndex,
    metadata_store: MetadataStore,
    vector,
    top: int = 10,
    threshold: float = 0.5,
) -> List[SearchResult]:
    """Chunks most similar to a query vector."""
    hits = vector_store.query(vector, k=top, min_similarity=threshold)
    return _to_search_results(hits, metadata_store)


def find_similar_to_location(
    vector_store: VectorIndex,
    metadata_store: MetadataStore,
    file_path: str,
    line: int,
    top: int = 10,
    threshold: float = 0.5,
) -> List[SearchResult]:
    """
    Chunks most similar to the chunk at file_path:line.

    Returns an empty list if no chunk contains the line. The chunk itself
    is never part of the result.
    """
    found = metadata_store.get_at_location(file_path, line)
    if found is None:
        return []

    id, _ = found
    vector = vector_store.get(id)
    if vector is None:
        return []

    hits = vector_store.query(vector, k=top + 1, min_similarity=threshold)
    hits = [hit for hit in hits if hit.id != id][:top]
    return _to_search_results(hits, metadata_store)
