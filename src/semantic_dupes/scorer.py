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
Duplicate group scoring.

The duplicate score only orders groups; it never filters them. High
similarity counts most, and groups whose members differ a lot in size
(one member a stub of another) rank lower.
"""

from collections import Counter
from typing import Iterable, List, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .models import DuplicateGroup, StoredChunkMetadata


SIMILARITY_WEIGHT = 0.85
SIZE_RATIO_WEIGHT = 0.15


def average_pairwise_similarity(vectors: np.ndarray) -> float:
    """Calculate average pairwise cosine similarity within a group."""
    if len(vectors) < 2:
        return 0.0

    # Compute pairwise similarities
    sim_matrix = cosine_similarity(vectors)

    # Get upper triangle (excluding diagonal)
    n = len(vectors)
    upper_tri = sim_matrix[np.triu_indices(n, k=1)]

    return float(np.mean(upper_tri))


def find_representative_idx(vectors: np.ndarray) -> int:
    """Find the vector closest to the centroid (most representative)."""
    if len(vectors) == 1:
        return 0

    centroid = np.mean(vectors, axis=0, keepdims=True)

    similarities = cosine_similarity(centroid, vectors)[0]
    return int(np.argmax(similarities))


def size_ratio(members: Sequence[StoredChunkMetadata]) -> float:
    """Smallest over largest member line count (1.0 = same size)."""
    if not members:
        return 0.0
    sizes = [m.line_count for m in members]
    largest = max(sizes)
    return min(sizes) / largest if largest > 0 else 0.0


def duplicate_score(avg_similarity: float, ratio: float) -> float:
    return SIMILARITY_WEIGHT * avg_similarity + SIZE_RATIO_WEIGHT * ratio


def dominant_kind(kinds: Iterable[str]) -> str:
    """Most common kind; ties go to the kind seen first."""
    counts = Counter(kinds)
    if not counts:
        return "other"
    best = max(counts.values())
    return next(kind for kind in counts if counts[kind] == best)


def sort_duplicate_groups(groups: List[DuplicateGroup]) -> List[DuplicateGroup]:
    """Highest duplicate score first; equal scores in first-seen order."""
    return sorted(groups, key=lambda g: (-g.duplicate_score, g.id))
