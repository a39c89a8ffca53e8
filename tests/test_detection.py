"""
Tests for duplicate grouping, scoring and similarity lookups.
"""

import math

import numpy as np
import pytest

from semantic_dupes.clusterer import (
    UnionFind,
    find_duplicate_groups,
    find_similar_to_location,
    find_similar_to_query,
)
from semantic_dupes.incremental import IncrementalIndexer
from semantic_dupes.metadata_store import MetadataStore
from semantic_dupes.models import DuplicateGroup, StoredChunkMetadata
from semantic_dupes.scorer import (
    average_pairwise_similarity,
    dominant_kind,
    duplicate_score,
    find_representative_idx,
    size_ratio,
    sort_duplicate_groups,
)
from semantic_dupes.vector_store import VectorStore

from conftest import fake_vector


def at_angle(degrees):
    radians = math.radians(degrees)
    return np.array([math.cos(radians), math.sin(radians)], dtype=np.float32)


def build_stores(entries):
    """entries: (id, vector, kind, file_path, lines)"""
    vectors = VectorStore()
    metadata = MetadataStore()
    for id, vector, kind, file_path, lines in entries:
        vectors.upsert(id, vector)
        metadata.set(id, StoredChunkMetadata(
            file_path=file_path,
            start_line=1,
            end_line=lines,
            kind=kind,
            name=id,
            content_hash=f"hash-{id}",
        ))
    return vectors, metadata


def group_names(groups):
    return [[m.name for m in g.members] for g in groups]


@pytest.fixture
def indexed_cards(cards_project, config, fake_client):
    indexer = IncrementalIndexer(cards_project, config=config, client=fake_client)
    indexer.run()
    return indexer


@pytest.fixture
def indexed_email(email_project, config, fake_client):
    indexer = IncrementalIndexer(email_project, config=config, client=fake_client)
    indexer.run()
    return indexer


class TestCardDuplicates:
    """Three card components written differently are one group."""

    def test_cards_group_together(self, indexed_cards):
        groups = find_duplicate_groups(indexed_cards.vector_store, indexed_cards.metadata_store, min_similarity=0.8)

        assert len(groups) == 1
        group = groups[0]
        assert [m.name for m in group.members] == ["MemberCard", "ProfileCard", "UserCard"]
        assert group.kind == "component"
        assert group.files == ["MemberCard.tsx", "ProfileCard.tsx", "UserCard.tsx"]

    def test_group_scores(self, indexed_cards):
        group = find_duplicate_groups(indexed_cards.vector_store, indexed_cards.metadata_store, min_similarity=0.8)[0]

        assert 0.8 <= group.avg_similarity <= 1.0
        assert group.size_ratio == pytest.approx(9 / 11)
        assert group.duplicate_score == pytest.approx(0.85 * group.avg_similarity + 0.15 * group.size_ratio)
        assert all(0.8 <= m.score <= 1.0 for m in group.members)
        assert max(m.score for m in group.members) == pytest.approx(1.0, abs=1e-5)

    def test_unrelated_widget_stays_out(self, indexed_cards):
        groups = find_duplicate_groups(indexed_cards.vector_store, indexed_cards.metadata_store, min_similarity=0.8)
        names = {m.name for g in groups for m in g.members}

        assert "WeatherWidget" not in names

    def test_zero_threshold_joins_everything(self, indexed_cards):
        groups = find_duplicate_groups(indexed_cards.vector_store, indexed_cards.metadata_store, min_similarity=0.0)

        assert len(groups) == 1
        assert groups[0].size == 4

    def test_higher_thresholds_refine_groups(self, indexed_cards):
        vs, ms = indexed_cards.vector_store, indexed_cards.metadata_store
        thresholds = [0.0, 0.5, 0.8, 0.9, 0.95, 0.99, 1.0]
        partitions = [
            [set(m.id for m in g.members) for g in find_duplicate_groups(vs, ms, min_similarity=t)]
            for t in thresholds
        ]

        for lower, higher in zip(partitions, partitions[1:]):
            for group in higher:
                assert any(group <= candidate for candidate in lower)

    def test_kind_filter(self, indexed_cards):
        vs, ms = indexed_cards.vector_store, indexed_cards.metadata_store

        assert find_duplicate_groups(vs, ms, min_similarity=0.8, kind="hook") == []
        assert len(find_duplicate_groups(vs, ms, min_similarity=0.8, kind="component")) == 1

    def test_exclude_paths(self, indexed_cards):
        groups = find_duplicate_groups(
            indexed_cards.vector_store, indexed_cards.metadata_store,
            min_similarity=0.8, exclude_paths=["UserCard.tsx"],
        )
        assert group_names(groups) == [["MemberCard", "ProfileCard"]]

    def test_min_group_size(self, indexed_cards):
        vs, ms = indexed_cards.vector_store, indexed_cards.metadata_store

        assert find_duplicate_groups(vs, ms, min_similarity=0.8, min_group_size=4) == []
        # Values below 2 behave like 2
        assert len(find_duplicate_groups(vs, ms, min_similarity=0.8, min_group_size=0)) == 1


class TestEmailDuplicates:
    """Two email validators written differently."""

    def test_validators_group_together(self, indexed_email):
        groups = find_duplicate_groups(indexed_email.vector_store, indexed_email.metadata_store, min_similarity=0.75)

        assert len(groups) == 1
        assert groups[0].kind == "function"
        assert sorted(m.name for m in groups[0].members) == ["checkEmailFormat", "isValidEmail"]


class TestGrouping:
    """Connected components over synthetic vectors."""

    def test_groups_are_transitive(self):
        # A~B and B~C at 0.85, A and C only ~0.62 apart
        vs, ms = build_stores([
            ("a", at_angle(0), "function", "a.ts", 10),
            ("b", at_angle(25), "function", "b.ts", 10),
            ("c", at_angle(50), "function", "c.ts", 10),
        ])

        groups = find_duplicate_groups(vs, ms, min_similarity=0.85)

        assert group_names(groups) == [["a", "b", "c"]]
        assert groups[0].avg_similarity < 0.85

    def test_each_chunk_in_one_group(self):
        vs, ms = build_stores([
            ("a1", at_angle(0), "function", "a.ts", 10),
            ("b1", at_angle(90), "function", "b.ts", 10),
            ("a2", at_angle(2), "function", "c.ts", 10),
            ("b2", at_angle(88), "function", "d.ts", 10),
            ("loner", at_angle(45), "function", "e.ts", 10),
        ])

        groups = find_duplicate_groups(vs, ms, min_similarity=0.95)
        members = [m.id for g in groups for m in g.members]

        assert sorted(members) == ["a1", "a2", "b1", "b2"]
        assert len(members) == len(set(members))

    def test_order_is_deterministic(self):
        entries = [
            ("x1", at_angle(0), "hook", "x.ts", 10),
            ("y1", at_angle(90), "function", "y.ts", 5),
            ("x2", at_angle(1), "hook", "x2.ts", 10),
            ("y2", at_angle(91), "function", "y2.ts", 20),
        ]
        vs, ms = build_stores(entries)

        first = find_duplicate_groups(vs, ms, min_similarity=0.9)
        second = find_duplicate_groups(vs, ms, min_similarity=0.9)

        assert group_names(first) == group_names(second) == [["x1", "x2"], ["y1", "y2"]]
        # x group: same sizes scores higher; y group is second seen
        assert [g.id for g in first] == [1, 2]
        assert first[0].kind == "hook"

    def test_max_neighbors(self):
        vs, ms = build_stores([
            ("a", at_angle(0), "function", "a.ts", 10),
            ("b", at_angle(1), "function", "b.ts", 10),
            ("c", at_angle(2), "function", "c.ts", 10),
        ])

        groups = find_duplicate_groups(vs, ms, min_similarity=0.9, max_neighbors=1)

        # Links a-b, b-a/c, c-b still connect everything
        assert group_names(groups) == [["a", "b", "c"]]

    def test_neighbours_come_from_index_query(self):
        vs, ms = build_stores([
            ("a", at_angle(0), "function", "a.ts", 10),
            ("b", at_angle(1), "function", "b.ts", 10),
            ("c", at_angle(90), "function", "c.ts", 10),
        ])

        class RecordingIndex:
            """Delegates to the exact store but only ever returns the best hit."""

            def __init__(self, store):
                self.store = store
                self.queries = 0

            def __getattr__(self, name):
                return getattr(self.store, name)

            def query(self, vector, k=None, min_similarity=0.0):
                self.queries += 1
                return self.store.query(vector, k=1, min_similarity=min_similarity)

        index = RecordingIndex(vs)

        assert find_duplicate_groups(index, ms, min_similarity=0.9) == []
        assert index.queries == 3
        assert group_names(find_duplicate_groups(vs, ms, min_similarity=0.9)) == [["a", "b"]]

    def test_too_few_candidates(self):
        vs, ms = build_stores([("a", at_angle(0), "function", "a.ts", 10)])
        assert find_duplicate_groups(vs, ms) == []

    def test_union_find(self):
        uf = UnionFind(5)
        uf.union(3, 4)
        uf.union(4, 1)

        assert uf.find(3) == uf.find(1) == 1
        assert uf.find(0) == 0
        assert uf.find(2) == 2


class TestScorer:
    """Group metrics."""

    def test_average_pairwise_similarity(self):
        same = np.array([at_angle(0), at_angle(0)])
        orthogonal = np.array([at_angle(0), at_angle(90)])

        assert average_pairwise_similarity(same) == pytest.approx(1.0)
        assert average_pairwise_similarity(orthogonal) == pytest.approx(0.0, abs=1e-6)
        assert average_pairwise_similarity(same[:1]) == 0.0

    def test_representative_is_central(self):
        vectors = np.array([at_angle(0), at_angle(20), at_angle(40)])
        assert find_representative_idx(vectors) == 1

    def test_size_ratio(self):
        small = StoredChunkMetadata("a.ts", 1, 5, "function", "a", "h")
        large = StoredChunkMetadata("b.ts", 1, 20, "function", "b", "h")

        assert size_ratio([small, large]) == 0.25
        assert size_ratio([small, small]) == 1.0

    def test_duplicate_score(self):
        assert duplicate_score(1.0, 1.0) == pytest.approx(1.0)
        assert duplicate_score(0.9, 0.5) == pytest.approx(0.85 * 0.9 + 0.15 * 0.5)

    def test_dominant_kind(self):
        assert dominant_kind(["hook", "component", "component"]) == "component"
        assert dominant_kind(["function", "hook"]) == "function"

    def test_sort_groups(self):
        groups = [
            DuplicateGroup(id=1, members=[], kind="function", avg_similarity=0.9, duplicate_score=0.8),
            DuplicateGroup(id=2, members=[], kind="function", avg_similarity=0.9, duplicate_score=0.95),
            DuplicateGroup(id=3, members=[], kind="function", avg_similarity=0.9, duplicate_score=0.8),
        ]
        assert [g.id for g in sort_duplicate_groups(groups)] == [2, 1, 3]


class TestSimilarityLookups:
    """Nearest neighbours of a query or a location."""

    def test_query(self, indexed_cards):
        results = find_similar_to_query(
            indexed_cards.vector_store, indexed_cards.metadata_store,
            fake_vector("a card with an avatar"), top=10, threshold=0.5,
        )

        assert sorted(r.name for r in results) == ["MemberCard", "ProfileCard", "UserCard"]
        assert results == sorted(results, key=lambda r: (-r.score, r.id))

    def test_query_top(self, indexed_cards):
        results = find_similar_to_query(
            indexed_cards.vector_store, indexed_cards.metadata_store,
            fake_vector("card"), top=2, threshold=0.0,
        )
        assert len(results) == 2

    def test_location_excludes_itself(self, indexed_cards):
        results = find_similar_to_location(
            indexed_cards.vector_store, indexed_cards.metadata_store,
            "UserCard.tsx", 12, top=10, threshold=0.8,
        )

        assert sorted(r.name for r in results) == ["MemberCard", "ProfileCard"]
        assert all(r.file_path != "UserCard.tsx" for r in results)

    def test_location_without_chunk(self, indexed_cards):
        assert find_similar_to_location(
            indexed_cards.vector_store, indexed_cards.metadata_store, "UserCard.tsx", 2,
        ) == []
