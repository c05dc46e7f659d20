"""Tests for the k-means primitives."""

import numpy as np

from clusterintel.clustering.kmeans import (
    assign,
    cohesion,
    kmeans_plus_plus,
    mean_distance_from_centroid,
    run_kmeans,
    squared_distances,
    update,
)


def test_squared_distances_matches_direct_computation():
    data = np.array([[0.0, 0.0], [3.0, 4.0]])
    centroids = np.array([[0.0, 0.0], [1.0, 1.0]])
    d2 = squared_distances(data, centroids)
    assert np.allclose(d2, [[0.0, 2.0], [25.0, 13.0]])


def test_kmeans_plus_plus_picks_distinct_points():
    data = np.array([[0.0, 0.0], [0.0, 0.1], [10.0, 10.0], [10.0, 10.1]])
    centroids = kmeans_plus_plus(data, 2, np.random.default_rng(0))
    assert centroids.shape == (2, 2)
    # With two tight, far-apart pairs the second seed lands in the other pair.
    assert abs(centroids[0][0] - centroids[1][0]) == 10.0


def test_kmeans_plus_plus_draws_one_candidate_per_step(monkeypatch):
    import sklearn.cluster

    calls = []
    real = sklearn.cluster.kmeans_plusplus

    def recording(*args, **kwargs):
        calls.append(kwargs)
        return real(*args, **kwargs)

    monkeypatch.setattr(sklearn.cluster, "kmeans_plusplus", recording)
    data = np.array([[0.0, 0.0], [1.0, 0.0], [5.0, 5.0], [6.0, 5.0]])
    kmeans_plus_plus(data, 2, np.random.default_rng(1))

    assert len(calls) == 1
    assert calls[0]["n_clusters"] == 2
    assert calls[0]["n_local_trials"] == 1


def test_update_keeps_centroid_of_empty_cluster():
    data = np.array([[0.0], [2.0]])
    labels = np.array([0, 0])
    centroids = np.array([[5.0], [7.0]])
    new = update(data, labels, centroids)
    assert new[0][0] == 1.0
    assert new[1][0] == 7.0


def test_run_kmeans_separates_blobs():
    rng = np.random.default_rng(42)
    a = rng.normal(loc=0.0, scale=0.1, size=(10, 3))
    b = rng.normal(loc=5.0, scale=0.1, size=(10, 3))
    data = np.vstack([a, b])
    result = run_kmeans(data, 2, np.random.default_rng(1))
    assert result.converged
    assert len(set(result.labels[:10])) == 1
    assert len(set(result.labels[10:])) == 1
    assert result.labels[0] != result.labels[10]
    assert np.array_equal(result.labels, assign(data, result.centroids))


def test_run_kmeans_respects_iteration_cap():
    data = np.random.default_rng(3).normal(size=(30, 4))
    result = run_kmeans(data, 3, np.random.default_rng(3), max_iterations=1)
    assert result.iterations == 1


def test_cohesion():
    assert cohesion(np.array([[1.0, 2.0]])) == 1.0
    # Two points at distance 1: 1 / (1 + 1)
    assert cohesion(np.array([[0.0, 0.0], [1.0, 0.0]])) == 0.5


def test_mean_distance_from_centroid():
    points = np.array([[0.0, 0.0], [2.0, 0.0]])
    assert mean_distance_from_centroid(points, np.array([1.0, 0.0])) == 1.0
    assert mean_distance_from_centroid(np.empty((0, 2)), np.array([0.0, 0.0])) == 0.0
