"""k-means clustering of the document vectors inside one collection."""

import logging
from datetime import datetime, timezone
from typing import Any

import numpy as np

from ..config import DEFAULT_CONFIG
from ..errors import ExternalCollaboratorError
from ..models import ClusteringResult, ContentCluster, MemberSnapshot, VectorPoint
from ..storage import VectorStoreBase
from ..timeouts import call_with_timeout
from .kmeans import cohesion, mean_distance_from_centroid, run_kmeans
from .naming import ClusterNamer

logger = logging.getLogger(__name__)


def filter_dimensions(points: list[VectorPoint]) -> tuple[list[VectorPoint], int]:
    """Keep points matching the first point's dimension; return (kept, dropped)."""
    points = [p for p in points if p.vector]
    if not points:
        return [], 0
    dim = len(points[0].vector)
    kept = [p for p in points if len(p.vector) == dim]
    return kept, len(points) - len(kept)


class ContentClusterer:
    """Groups a collection's documents by embedding and names the groups."""

    def __init__(
        self,
        vector_store: VectorStoreBase | None = None,
        namer: ClusterNamer | None = None,
        rng: np.random.Generator | None = None,
        config: dict[str, Any] | None = None,
    ):
        cfg = (config or DEFAULT_CONFIG).get("clustering", {})
        timeouts = (config or DEFAULT_CONFIG).get("timeouts", {})
        self.vector_store = vector_store
        self.namer = namer or ClusterNamer()
        self.rng = rng if rng is not None else np.random.default_rng(cfg.get("seed"))
        self.max_iterations = cfg.get("max_iterations", 50)
        self.tolerance = cfg.get("convergence_threshold", 1e-3)
        self.page_size = cfg.get("page_size", 1000)
        self.default_max_clusters = cfg.get("max_clusters", 5)
        self.default_min_cluster_size = cfg.get("min_cluster_size", 3)
        self.vector_timeout = timeouts.get("vector_store")

    def fetch_points(self, vector_collection: str) -> list[VectorPoint]:
        """All points of a vector-store collection.

        Raises ExternalCollaboratorError when the store fails or times out.
        """
        if self.vector_store is None:
            raise ExternalCollaboratorError("No vector store configured")
        try:
            return call_with_timeout(
                lambda: list(self.vector_store.iter_points(vector_collection, page_size=self.page_size)),
                self.vector_timeout,
            )
        except ExternalCollaboratorError:
            raise
        except Exception as e:
            raise ExternalCollaboratorError(f"Vector store scroll failed for '{vector_collection}': {e}") from e

    def cluster(
        self,
        points: list[VectorPoint],
        max_clusters: int | None = None,
        min_cluster_size: int | None = None,
    ) -> list[ContentCluster]:
        """Cluster points and name the surviving groups.

        Returns an empty list when fewer than ``min_cluster_size`` usable
        vectors remain. Groups smaller than ``min_cluster_size`` after
        convergence are dropped, not redistributed.
        """
        max_clusters = max_clusters or self.default_max_clusters
        min_cluster_size = max(1, min_cluster_size or self.default_min_cluster_size)

        valid, dropped = filter_dimensions(points)
        if dropped:
            logger.warning(f"Filtered {dropped} vector(s) with inconsistent dimensions")
        if len(valid) < min_cluster_size:
            logger.info(f"Insufficient vectors for clustering ({len(valid)} < {min_cluster_size})")
            return []

        data = np.array([p.vector for p in valid], dtype=float)
        k = min(max_clusters, len(valid) // min_cluster_size)

        groups: list[tuple[np.ndarray, list[int]]] = []
        if k < 2:
            groups.append((data.mean(axis=0), list(range(len(valid)))))
        else:
            result = run_kmeans(data, k, self.rng, self.max_iterations, self.tolerance)
            if not result.converged:
                logger.debug(f"k-means stopped at iteration cap ({self.max_iterations})")
            for j in range(k):
                idx = np.flatnonzero(result.labels == j).tolist()
                if len(idx) >= min_cluster_size:
                    groups.append((result.centroids[j], idx))
                elif idx:
                    logger.debug(f"Dropping undersized group of {len(idx)} point(s)")

        clusters = []
        for i, (centroid, idx) in enumerate(groups):
            member_data = data[idx]
            members = [valid[n] for n in idx]
            cluster = ContentCluster(
                index=i,
                centroid=centroid.tolist(),
                members=members,
                cohesion=cohesion(member_data),
                avg_distance_from_centroid=mean_distance_from_centroid(member_data, centroid),
            )
            cluster.name = self.namer.name_cluster([p.text for p in members], i)
            noun = "document" if cluster.size == 1 else "documents"
            cluster.description = f"A cluster of {cluster.size} {noun} focused on {cluster.name.lower()} content"
            clusters.append(cluster)
        return clusters

    def analyze_collection(
        self,
        collection: MemberSnapshot,
        max_clusters: int | None = None,
        min_cluster_size: int | None = None,
    ) -> ClusteringResult:
        """Fetch a collection's vectors and cluster them."""
        max_clusters = max_clusters or self.default_max_clusters
        min_cluster_size = min_cluster_size or self.default_min_cluster_size

        points = self.fetch_points(collection.vector_collection) if collection.vector_collection else []
        logger.info(f"Retrieved {len(points)} vector(s) for collection {collection.collection_id}")

        valid, dropped = filter_dimensions(points)
        clusters = self.cluster(valid, max_clusters, min_cluster_size)
        return ClusteringResult(
            collection_id=collection.collection_id,
            total_documents=len(valid),
            clusters=clusters,
            invalid_vectors_filtered=dropped,
            reason=None if clusters else "insufficient_data",
            metadata={
                "clustering_method": "kmeans",
                "max_clusters": max_clusters,
                "min_cluster_size": min_cluster_size,
                "analyzed_at": datetime.now(timezone.utc).isoformat(),
            },
        )
