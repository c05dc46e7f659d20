"""Tests for per-collection content clustering."""

import numpy as np
import pytest

from clusterintel.clustering.content import ContentClusterer, filter_dimensions
from clusterintel.clustering.naming import ClusterNamer
from clusterintel.errors import ExternalCollaboratorError
from clusterintel.models import MemberSnapshot, VectorPoint

from conftest import FakeTextGenerator, FakeVectorStore, blob, make_points


def _clusterer(seed=7, store=None, namer=None):
    return ContentClusterer(vector_store=store, namer=namer, rng=np.random.default_rng(seed))


def test_filter_dimensions_drops_mismatched_vectors():
    points = make_points([[1.0, 2.0], [3.0, 4.0], [1.0, 2.0, 3.0]])
    kept, dropped = filter_dimensions(points)
    assert len(kept) == 2
    assert dropped == 1


def test_too_few_vectors_gives_empty_list():
    points = make_points([[0.0, 1.0], [1.0, 0.0]])
    assert _clusterer().cluster(points, max_clusters=5, min_cluster_size=3) == []


def test_mismatched_dimensions_count_against_minimum():
    points = make_points([[0.0, 1.0], [1.0, 0.0], [1.0, 1.0, 1.0]])
    assert _clusterer().cluster(points, max_clusters=5, min_cluster_size=3) == []


def test_small_input_becomes_single_cluster_with_mean_centroid():
    points = make_points([[0.0, 0.0], [2.0, 0.0], [4.0, 0.0], [6.0, 0.0], [8.0, 0.0]])
    clusters = _clusterer().cluster(points, max_clusters=5, min_cluster_size=3)
    assert len(clusters) == 1
    assert clusters[0].size == 5
    assert clusters[0].centroid == [4.0, 0.0]


def test_ten_documents_of_768_dimensions():
    rng = np.random.default_rng(0)
    vectors = rng.normal(size=(10, 768))
    clusters = _clusterer(seed=11).cluster(make_points(vectors), max_clusters=5, min_cluster_size=3)
    assert 1 <= len(clusters) <= 3
    assert all(c.size >= 3 for c in clusters)
    assert sum(c.size for c in clusters) <= 10


def test_separated_blobs_are_found():
    rng = np.random.default_rng(5)
    vectors = np.vstack([blob([0, 0, 0], 6, rng), blob([5, 5, 5], 6, rng)])
    clusters = _clusterer().cluster(make_points(vectors), max_clusters=2, min_cluster_size=3)
    assert sorted(c.size for c in clusters) == [6, 6]
    for c in clusters:
        assert 0 < c.cohesion <= 1
        assert c.avg_distance_from_centroid < 1.0


def test_fixed_seed_gives_equal_membership_counts():
    vectors = np.random.default_rng(9).normal(size=(40, 16))
    points = make_points(vectors)
    first = _clusterer(seed=123).cluster(points, max_clusters=4, min_cluster_size=3)
    second = _clusterer(seed=123).cluster(points, max_clusters=4, min_cluster_size=3)
    assert sum(c.size for c in first) == sum(c.size for c in second)
    assert [c.size for c in first] == [c.size for c in second]


def test_names_come_from_generator():
    rng = np.random.default_rng(1)
    points = make_points(blob([1, 1], 4, rng), texts=["quarterly revenue"] * 4)
    namer = ClusterNamer(FakeTextGenerator('"Revenue Reports"'))
    clusters = _clusterer(namer=namer).cluster(points, max_clusters=3, min_cluster_size=3)
    assert clusters[0].name == "Revenue Reports"
    assert "revenue reports" in clusters[0].description


def test_names_fall_back_without_text():
    points = make_points([[0.0, 0.0], [0.1, 0.0], [0.0, 0.1]])
    clusters = _clusterer().cluster(points, max_clusters=3, min_cluster_size=3)
    assert clusters[0].name == "Topic Cluster 1"


def test_analyze_collection_reads_from_vector_store():
    rng = np.random.default_rng(2)
    vectors = np.vstack([blob([0, 0], 5, rng), blob([9, 9], 5, rng)])
    points = make_points(vectors) + [VectorPoint(id="odd", vector=(1.0, 2.0, 3.0))]
    store = FakeVectorStore({"notes": points})
    collection = MemberSnapshot(collection_id=4, name="Notes", vector_collection="notes")

    result = _clusterer(store=store).analyze_collection(collection, max_clusters=2, min_cluster_size=3)
    assert result.collection_id == 4
    assert result.total_documents == 10
    assert result.invalid_vectors_filtered == 1
    assert result.reason is None
    assert result.to_dict()["analysis_metadata"]["clustering_method"] == "kmeans"


def test_analyze_collection_insufficient_data():
    store = FakeVectorStore({"tiny": make_points([[0.0, 1.0]])})
    collection = MemberSnapshot(collection_id=1, name="Tiny", vector_collection="tiny")
    result = _clusterer(store=store).analyze_collection(collection, min_cluster_size=3)
    assert result.is_empty
    assert result.reason == "insufficient_data"


def test_unknown_collection_is_empty_not_error():
    collection = MemberSnapshot(collection_id=1, name="Missing", vector_collection="missing")
    result = _clusterer(store=FakeVectorStore()).analyze_collection(collection)
    assert result.reason == "insufficient_data"


def test_vector_store_failure_is_collaborator_error():
    collection = MemberSnapshot(collection_id=1, name="Broken", vector_collection="broken")
    with pytest.raises(ExternalCollaboratorError):
        _clusterer(store=FakeVectorStore(fail=True)).analyze_collection(collection)
