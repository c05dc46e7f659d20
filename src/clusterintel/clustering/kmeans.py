"""k-means with k-means++ seeding over dense embedding matrices."""

from dataclasses import dataclass

import numpy as np


@dataclass
class KMeansResult:
    labels: np.ndarray
    centroids: np.ndarray
    iterations: int
    converged: bool


def squared_distances(data: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Squared Euclidean distance of every row of ``data`` to every centroid."""
    from sklearn.metrics.pairwise import euclidean_distances

    return euclidean_distances(data, centroids, squared=True)


def kmeans_plus_plus(data: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """Pick ``k`` initial centroids from the rows of ``data``.

    Plain k-means++: each further centroid is one draw weighted by squared
    distance to the nearest chosen centroid. The int seed sklearn expects is
    drawn from ``rng``.
    """
    from sklearn.cluster import kmeans_plusplus

    seed = int(rng.integers(2**32 - 1))
    centroids, _ = kmeans_plusplus(data, n_clusters=k, random_state=seed, n_local_trials=1)
    return np.asarray(centroids, dtype=float)


def assign(data: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Index of the nearest centroid for every row."""
    return np.argmin(squared_distances(data, centroids), axis=1)


def update(data: np.ndarray, labels: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Recompute centroids as member means. Empty clusters keep their centroid."""
    new = centroids.copy()
    for j in range(centroids.shape[0]):
        members = data[labels == j]
        if len(members):
            new[j] = members.mean(axis=0)
    return new


def run_kmeans(
    data: np.ndarray,
    k: int,
    rng: np.random.Generator,
    max_iterations: int = 50,
    tolerance: float = 1e-3,
) -> KMeansResult:
    """Lloyd iterations until every centroid moves less than ``tolerance``.

    Tolerance is absolute centroid movement, unlike the variance-scaled
    ``tol`` of sklearn.cluster.KMeans.
    """
    centroids = kmeans_plus_plus(data, k, rng)
    converged = False
    iterations = 0
    while iterations < max_iterations:
        labels = assign(data, centroids)
        new_centroids = update(data, labels, centroids)
        shift = np.linalg.norm(new_centroids - centroids, axis=1)
        centroids = new_centroids
        iterations += 1
        if np.all(shift < tolerance):
            converged = True
            break
    return KMeansResult(
        labels=assign(data, centroids),
        centroids=centroids,
        iterations=iterations,
        converged=converged,
    )


def cohesion(points: np.ndarray) -> float:
    """Inverse mean pairwise distance, ``1 / (mean + 1)``. 1.0 below two points."""
    from sklearn.metrics.pairwise import euclidean_distances

    n = points.shape[0]
    if n < 2:
        return 1.0
    d = euclidean_distances(points)
    upper = d[np.triu_indices(n, k=1)]
    return float(1.0 / (upper.mean() + 1.0))


def mean_distance_from_centroid(points: np.ndarray, centroid: np.ndarray) -> float:
    if points.shape[0] == 0:
        return 0.0
    return float(np.linalg.norm(points - centroid, axis=1).mean())
