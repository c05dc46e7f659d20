"""Advisory analytics across clusters: overlaps, bridges, duplicates, trends.

Nothing in here mutates the cluster graph.
"""

import logging
from datetime import datetime, timedelta, timezone
from itertools import combinations
from typing import Any, Callable

import numpy as np

from ..config import DEFAULT_CONFIG
from ..errors import ExternalCollaboratorError
from ..models import ActionItem, BridgeDocument, ClusterOverlap, ClusterSnapshot, DuplicateDocument, VectorPoint
from ..storage import VectorStoreBase
from ..timeouts import call_with_timeout
from ..topology.similarity import cluster_similarity, cosine_similarity

logger = logging.getLogger(__name__)


def classify_overlap(similarity: float) -> str:
    if similarity >= 0.8:
        return "high_overlap"
    if similarity >= 0.6:
        return "moderate_overlap"
    if similarity >= 0.4:
        return "low_overlap"
    return "minimal_overlap"


def overlap_recommendation(a: str, b: str, similarity: float) -> str | None:
    if similarity >= 0.8:
        return f'Consider merging "{a}" and "{b}"; they have very similar content.'
    if similarity >= 0.6:
        return f'Review the organization of "{a}" and "{b}"; there may be opportunities to reorganize.'
    if similarity >= 0.4:
        return f'Some content overlap detected between "{a}" and "{b}"; monitor for potential consolidation.'
    return None


def harmonic_mean(values: list[float]) -> float:
    if not values or any(v <= 0 for v in values):
        return 0.0
    return len(values) / sum(1.0 / v for v in values)


def activity_level(recent_documents: int, days: int) -> str:
    per_day = recent_documents / days if days else 0.0
    if per_day >= 1:
        return "very_active"
    if per_day >= 0.5:
        return "active"
    if per_day >= 0.1:
        return "moderate"
    if recent_documents > 0:
        return "low"
    return "inactive"


def trend_direction(recent_documents: int, total_documents: int) -> str:
    if total_documents == 0:
        return "new"
    ratio = recent_documents / total_documents
    if ratio >= 0.3:
        return "growing"
    if ratio >= 0.1:
        return "stable"
    return "declining"


class CrossClusterAnalyzer:
    """Compares clusters with each other.

    Cluster overlap uses member-name token similarity. Bridge detection uses
    cosine similarity between document vectors and cluster centroids;
    duplicate detection compares document vectors with each other.
    """

    def __init__(
        self,
        vector_store: VectorStoreBase | None = None,
        config: dict[str, Any] | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        cfg = config or DEFAULT_CONFIG
        analytics = cfg.get("analytics", {})
        self.vector_store = vector_store
        self.bridge_threshold = analytics.get("bridge_threshold", 0.7)
        self.bridge_limit = analytics.get("bridge_limit", 20)
        self.overlap_min = analytics.get("overlap_min", 0.3)
        self.duplicate_threshold = analytics.get("duplicate_threshold", 0.8)
        self.page_size = cfg.get("clustering", {}).get("page_size", 1000)
        self.vector_timeout = cfg.get("timeouts", {}).get("vector_store")
        self.now = now or (lambda: datetime.now(timezone.utc))

    def compute_overlaps(self, clusters: list[ClusterSnapshot]) -> list[ClusterOverlap]:
        """Cluster pairs whose similarity exceeds the overlap floor, strongest first."""
        overlaps = []
        for a, b in combinations(clusters, 2):
            similarity = round(cluster_similarity(a, b), 4)
            if similarity > self.overlap_min:
                overlaps.append(ClusterOverlap(
                    cluster_a=a,
                    cluster_b=b,
                    similarity=similarity,
                    overlap_type=classify_overlap(similarity),
                    recommendation=overlap_recommendation(a.name, b.name, similarity),
                ))
        overlaps.sort(key=lambda o: o.similarity, reverse=True)
        return overlaps

    @staticmethod
    def overlap_summary(clusters: list[ClusterSnapshot], overlaps: list[ClusterOverlap]) -> dict[str, Any]:
        high = sum(1 for o in overlaps if o.similarity >= 0.8)
        moderate = sum(1 for o in overlaps if 0.6 <= o.similarity < 0.8)
        recommendations = []
        if high:
            recommendations.append(f"Consider merging {high} highly similar cluster pair(s).")
        if moderate:
            recommendations.append(f"Review organization of {moderate} moderately overlapping cluster pair(s).")
        summary: dict[str, Any] = {
            "total_clusters": len(clusters),
            "significant_overlaps": len(overlaps),
            "high_overlaps": high,
            "recommendations": recommendations,
        }
        if len(clusters) < 2:
            summary["message"] = "Need at least 2 clusters for overlap analysis"
        return summary

    def _fetch(self, vector_collection: str) -> list[VectorPoint]:
        return call_with_timeout(
            lambda: list(self.vector_store.iter_points(vector_collection, page_size=self.page_size)),
            self.vector_timeout,
        )

    def _cluster_points(self, clusters: list[ClusterSnapshot]) -> dict[int, list[tuple[int, VectorPoint]]]:
        """(collection_id, point) pairs per cluster, restricted to one dimension."""
        dim = None
        by_cluster: dict[int, list[tuple[int, VectorPoint]]] = {}
        for cluster in clusters:
            points = []
            for member in cluster.members:
                if not member.vector_collection:
                    continue
                try:
                    fetched = self._fetch(member.vector_collection)
                except ExternalCollaboratorError as e:
                    logger.warning(f"Skipping collection {member.collection_id} in cross-cluster analysis: {e}")
                    continue
                except Exception as e:
                    logger.warning(f"Vector store failed for collection {member.collection_id}: {e}")
                    continue
                for point in fetched:
                    if not point.vector:
                        continue
                    if dim is None:
                        dim = len(point.vector)
                    if len(point.vector) == dim:
                        points.append((member.collection_id, point))
            if points:
                by_cluster[cluster.cluster_id] = points
        return by_cluster

    def find_bridge_documents(
        self,
        clusters: list[ClusterSnapshot],
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[BridgeDocument]:
        """Documents within ``threshold`` cosine similarity of two or more cluster centroids."""
        threshold = self.bridge_threshold if threshold is None else threshold
        limit = limit or self.bridge_limit
        if self.vector_store is None or len(clusters) < 2:
            return []

        by_cluster = self._cluster_points(clusters)
        if len(by_cluster) < 2:
            return []

        names = {c.cluster_id: c.name for c in clusters}
        ids = list(by_cluster)
        centroids = np.array([
            np.mean([p.vector for _, p in by_cluster[cid]], axis=0) for cid in ids
        ])

        bridges = []
        for home_id, points in by_cluster.items():
            for collection_id, point in points:
                vector = np.asarray(point.vector, dtype=float)
                close = []
                for cid, centroid in zip(ids, centroids):
                    sim = cosine_similarity(vector, centroid)
                    if sim >= threshold:
                        close.append((cid, sim))
                if len(close) < 2:
                    continue
                close.sort(key=lambda pair: pair[1], reverse=True)
                sims = [round(s, 4) for _, s in close]
                bridges.append(BridgeDocument(
                    document_id=point.id,
                    filename=point.filename,
                    collection_id=collection_id,
                    home_cluster_id=home_id,
                    cluster_ids=[cid for cid, _ in close],
                    cluster_names=[names[cid] for cid, _ in close],
                    similarities=sims,
                    bridge_score=round(harmonic_mean([s for _, s in close]), 4),
                ))

        bridges.sort(key=lambda b: b.bridge_score, reverse=True)
        logger.info(f"Found {len(bridges)} bridge document(s) across {len(by_cluster)} cluster(s)")
        return bridges[:limit]

    def find_duplicate_documents(
        self,
        clusters: list[ClusterSnapshot],
        threshold: float | None = None,
    ) -> list[DuplicateDocument]:
        """Document pairs from different clusters with cosine similarity >= ``threshold``."""
        from sklearn.metrics.pairwise import cosine_similarity as pairwise_cosine

        threshold = self.duplicate_threshold if threshold is None else threshold
        if self.vector_store is None or len(clusters) < 2:
            return []

        by_cluster = self._cluster_points(clusters)
        names = {c.cluster_id: c.name for c in clusters}
        duplicates = []
        for source_id, target_id in combinations(list(by_cluster), 2):
            source, target = by_cluster[source_id], by_cluster[target_id]
            sims = pairwise_cosine(
                np.array([p.vector for _, p in source], dtype=float),
                np.array([p.vector for _, p in target], dtype=float),
            )
            for i, j in zip(*np.nonzero(sims >= threshold)):
                (source_collection, source_point), (target_collection, target_point) = source[i], target[j]
                duplicates.append(DuplicateDocument(
                    source_document_id=source_point.id,
                    source_filename=source_point.filename,
                    source_collection_id=source_collection,
                    source_cluster_id=source_id,
                    source_cluster_name=names[source_id],
                    target_document_id=target_point.id,
                    target_filename=target_point.filename,
                    target_collection_id=target_collection,
                    target_cluster_id=target_id,
                    target_cluster_name=names[target_id],
                    similarity=round(float(sims[i, j]), 4),
                ))

        duplicates.sort(key=lambda d: d.similarity, reverse=True)
        logger.info(f"Found {len(duplicates)} duplicate document pair(s) across {len(by_cluster)} cluster(s)")
        return duplicates

    @staticmethod
    def duplication_summary(clusters: list[ClusterSnapshot], duplicates: list[DuplicateDocument]) -> dict[str, Any]:
        exact = sum(1 for d in duplicates if d.similarity >= 0.95)
        similar = sum(1 for d in duplicates if 0.8 <= d.similarity < 0.95)
        recommendations = []
        if exact:
            recommendations.append(f"Remove {exact} exact duplicate(s) to reduce redundancy.")
        if similar:
            recommendations.append(f"Review {similar} highly similar document(s) for potential consolidation.")
        return {
            "total_clusters": len(clusters),
            "duplications_found": len(duplicates),
            "high_similarity": sum(1 for d in duplicates if d.similarity >= 0.9),
            "recommendations": recommendations,
        }

    def recommend_actions(self, overlaps: list[ClusterOverlap], bridges: list[BridgeDocument]) -> list[ActionItem]:
        """Action items for clusters that overlap strongly or leak bridge documents."""
        items: dict[tuple[str, int], ActionItem] = {}
        for overlap in overlaps:
            if overlap.similarity < 0.6:
                continue
            priority = "medium" if overlap.similarity >= 0.8 else "low"
            for this, other in ((overlap.cluster_a, overlap.cluster_b), (overlap.cluster_b, overlap.cluster_a)):
                key = ("merge_or_expand", this.cluster_id)
                if key not in items:
                    items[key] = ActionItem(
                        "merge_or_expand", this.cluster_id, this.name,
                        f'Consider merging with "{other.name}"', priority,
                    )

        leaks: dict[int, int] = {}
        home_names: dict[int, str] = {}
        for bridge in bridges:
            leaks[bridge.home_cluster_id] = leaks.get(bridge.home_cluster_id, 0) + 1
            if bridge.home_cluster_id in bridge.cluster_ids:
                home_names[bridge.home_cluster_id] = bridge.cluster_names[bridge.cluster_ids.index(bridge.home_cluster_id)]
        for cluster_id, count in sorted(leaks.items()):
            items[("improve_health", cluster_id)] = ActionItem(
                "improve_health", cluster_id, home_names.get(cluster_id, ""),
                f"{count} document(s) sit close to other clusters; review cluster boundaries",
                "medium" if count >= 3 else "low",
            )
        return list(items.values())

    def find_collaboration_opportunities(
        self,
        overlaps: list[ClusterOverlap],
        bridges: list[BridgeDocument],
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Cluster pairs linked by several bridge documents or strong overlap."""
        pairs: dict[tuple[int, int], dict[str, Any]] = {}
        for bridge in bridges:
            named = dict(zip(bridge.cluster_ids, bridge.cluster_names))
            for a, b in combinations(sorted(bridge.cluster_ids), 2):
                entry = pairs.setdefault((a, b), {"names": (named[a], named[b]), "scores": []})
                entry["scores"].append(bridge.bridge_score)

        opportunities = []
        for (a, b), entry in pairs.items():
            scores = entry["scores"]
            if len(scores) < 2:
                continue
            avg = sum(scores) / len(scores)
            name_a, name_b = entry["names"]
            opportunities.append({
                "type": "cross_cluster_collaboration",
                "cluster_ids": [a, b],
                "clusters": [name_a, name_b],
                "score": round(min(0.95, avg + 0.1 * len(scores)), 4),
                "description": f'Strong content connections between "{name_a}" and "{name_b}"',
                "details": f"{len(scores)} bridge document(s) with average similarity of {avg * 100:.1f}%",
                "action_suggestion": "Consider joint projects or knowledge sharing between these clusters.",
            })

        for overlap in overlaps:
            if overlap.similarity < 0.6:
                continue
            a, b = overlap.cluster_a, overlap.cluster_b
            opportunities.append({
                "type": "cluster_merge_opportunity",
                "cluster_ids": sorted([a.cluster_id, b.cluster_id]),
                "clusters": [a.name, b.name],
                "score": overlap.similarity,
                "description": f'Potential collaboration between "{a.name}" and "{b.name}"',
                "details": f"{overlap.similarity * 100:.1f}% content similarity",
                "action_suggestion": (
                    "Consider merging these clusters." if overlap.similarity >= 0.8
                    else "Consider joint initiatives or cross-pollination."
                ),
            })

        seen = set()
        unique = []
        for opp in opportunities:
            key = tuple(opp["cluster_ids"])
            if key in seen:
                continue
            seen.add(key)
            unique.append(opp)
        unique.sort(key=lambda o: o["score"], reverse=True)
        return unique[:limit]

    def cluster_trends(
        self,
        clusters: list[ClusterSnapshot],
        document_dates: dict[int, list[datetime]],
        days: int = 30,
    ) -> list[dict[str, Any]]:
        """Activity level and direction per cluster from document creation times.

        ``document_dates`` maps a collection id to the creation times of its
        documents.
        """
        cutoff = self.now() - timedelta(days=days)
        trends = []
        for cluster in clusters:
            dates = []
            for member in cluster.members:
                for created in document_dates.get(member.collection_id, []):
                    dates.append(created if created.tzinfo else created.replace(tzinfo=timezone.utc))
            recent = sum(1 for d in dates if d >= cutoff)
            trends.append({
                "cluster_id": cluster.cluster_id,
                "cluster_name": cluster.name,
                "collection_count": cluster.size,
                "document_count": len(dates),
                "recent_documents": recent,
                "last_activity": max(dates).isoformat() if dates else None,
                "activity_level": activity_level(recent, days),
                "trend": trend_direction(recent, len(dates)),
            })
        trends.sort(key=lambda t: (t["recent_documents"], t["last_activity"] or ""), reverse=True)
        return trends
