"""Cluster placement suggestions for collections, and their lifecycle."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..clustering.naming import ClusterNamer
from ..config import DEFAULT_CONFIG
from ..db import ClusterStore, ClusterSuggestion
from ..db.tables import utcnow
from ..errors import ClusterIntelError, ValidationError
from ..models import ClusterSnapshot, MemberSnapshot, Suggestion
from ..topology import ClusterTopologyManager
from ..topology.similarity import max_name_similarity, name_similarity

logger = logging.getLogger(__name__)

CREATE_NEW_CONFIDENCE = 0.75
FIRST_CLUSTER_CONFIDENCE = 0.9
STRONG_MATCH = 0.8


def confidence_label(similarity: float) -> str:
    if similarity >= 0.9:
        return "very high"
    if similarity >= 0.8:
        return "high"
    if similarity >= 0.7:
        return "moderate"
    return "low"


def relationship_strength(similarity: float) -> str:
    if similarity >= 0.8:
        return "strong"
    if similarity >= 0.7:
        return "moderate"
    return "weak"


def fit_status(score: float) -> tuple[str, str, list[str]]:
    if score >= 0.8:
        return "excellent_fit", "This collection aligns very well with the cluster theme.", []
    if score >= 0.6:
        return ("good_fit", "This collection fits reasonably well but could potentially belong elsewhere.",
                ["Consider reviewing cluster assignments periodically."])
    if score >= 0.4:
        return ("poor_fit", "This collection may not belong in this cluster.",
                ["Consider moving to a different cluster or creating a new one."])
    return ("misplaced", "This collection appears to be misplaced in this cluster.",
            ["Strongly consider relocating this collection."])


class SuggestionEngine:
    """Proposes clusters for a collection and applies accepted proposals."""

    def __init__(
        self,
        store: ClusterStore,
        manager: ClusterTopologyManager,
        namer: ClusterNamer | None = None,
        config: dict[str, Any] | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        cfg = (config or DEFAULT_CONFIG).get("suggestions", {})
        self.store = store
        self.manager = manager
        self.namer = namer or ClusterNamer()
        self.threshold = cfg.get("threshold", 0.7)
        self.max_suggestions = cfg.get("max_suggestions", 5)
        self.ttl = timedelta(days=cfg.get("ttl_days", 30))
        self.now = now or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def cluster_fit(collection: MemberSnapshot, cluster: ClusterSnapshot) -> float:
        """Best member-name similarity, damped for larger clusters."""
        names = [m.name for m in cluster.members if m.collection_id != collection.collection_id]
        size_weight = max(0.5, 1 - 0.1 * len(cluster.members))
        return max_name_similarity(collection.name, names) * size_weight

    def rank_clusters(
        self,
        collection: MemberSnapshot,
        clusters: list[ClusterSnapshot],
        threshold: float,
    ) -> list[Suggestion]:
        ranked = []
        for cluster in clusters:
            if cluster.cluster_id == collection.cluster_id:
                continue
            similarity = self.cluster_fit(collection, cluster)
            if similarity >= threshold:
                ranked.append(Suggestion(
                    type="move_to_existing",
                    confidence=round(similarity, 4),
                    reasoning=(
                        f"This collection shows {confidence_label(similarity)} similarity "
                        f'({similarity * 100:.1f}%) to the "{cluster.name}" cluster theme.'
                    ),
                    cluster_id=cluster.cluster_id,
                    cluster_name=cluster.name,
                ))
        ranked.sort(key=lambda s: s.confidence, reverse=True)
        return ranked

    def build_suggestions(
        self,
        collection: MemberSnapshot,
        clusters: list[ClusterSnapshot],
        threshold: float | None = None,
        max_suggestions: int | None = None,
    ) -> list[Suggestion]:
        """Ranked suggestions without persisting them."""
        threshold = self.threshold if threshold is None else threshold
        max_suggestions = max_suggestions or self.max_suggestions

        if not clusters:
            return [Suggestion(
                type="create_new",
                confidence=FIRST_CLUSTER_CONFIDENCE,
                reasoning="No existing clusters found. Consider creating your first thematic cluster.",
                suggested_name=self.namer.name_for_collection(collection.name, collection.description),
            )]

        suggestions = self.rank_clusters(collection, clusters, threshold)[:max_suggestions]
        if not suggestions or suggestions[0].confidence < STRONG_MATCH:
            suggestions.insert(0, Suggestion(
                type="create_new",
                confidence=CREATE_NEW_CONFIDENCE,
                reasoning="This collection appears to cover a unique topic that might benefit from its own cluster.",
                suggested_name=self.namer.name_for_collection(collection.name, collection.description),
            ))
        return suggestions

    def suggest_clusters_for_collection(
        self,
        collection_id: int,
        user_id: int,
        threshold: float | None = None,
        max_suggestions: int | None = None,
    ) -> list[ClusterSuggestion]:
        """Rank the user's clusters for a collection and store the result as pending suggestions."""
        collection = self.store.get_collection(collection_id, user_id)
        clusters = self.store.snapshot(user_id)
        suggestions = self.build_suggestions(collection, clusters, threshold, max_suggestions)

        rows = self.store.add_suggestions(user_id, collection_id, suggestions, expires_at=self.now() + self.ttl)
        self.manager.record_event(
            user_id,
            "auto_suggestion",
            target_cluster_ids=[s.cluster_id for s in suggestions if s.cluster_id],
            affected_collections=[collection_id],
            trigger_reason="Cluster suggestions generated",
            metadata={"suggestion_count": len(rows), "types": [s.type for s in suggestions]},
        )
        logger.info(f"Stored {len(rows)} suggestion(s) for collection {collection_id}")
        return rows

    def accept_suggestion(self, suggestion_id: int, user_id: int) -> dict[str, Any]:
        """Apply a pending suggestion and mark it accepted.

        Creating the suggested cluster, moving the collection and the status
        change commit together or not at all.
        """
        trigger_reason = "Accepted cluster suggestion"
        with self.manager.user_lock(user_id):
            row = self.store.get_suggestion(suggestion_id, user_id)
            if row.status != "pending":
                raise ValidationError(f"Suggestion {suggestion_id} is {row.status}, not pending")
            if not (
                row.suggestion_type == "create_new"
                or (row.suggestion_type == "move_to_existing" and row.suggested_cluster_id is not None)
            ):
                raise ValidationError(
                    f"Suggestion type {row.suggestion_type!r} cannot be applied to a single collection"
                )

            metadata: dict[str, Any] = {"suggestion_id": suggestion_id}
            try:
                with self.store.transaction() as session:
                    pending = self.store.load_suggestion(session, suggestion_id, user_id)
                    collection = self.store.load_collection(session, row.collection_id, user_id)
                    previous = collection.cluster_id
                    if row.suggestion_type == "create_new":
                        name = self.store.unique_name(session, user_id, row.suggested_name or "New Cluster")
                        target_id = self.store.new_cluster(
                            session, user_id, name,
                            description=row.reasoning,
                            settings={"created_from_suggestion": suggestion_id},
                        ).id
                    else:
                        target_id = self.store.load_cluster(session, row.suggested_cluster_id, user_id).id
                    self.store.move_members(session, [row.collection_id], target_id)
                    pending.status = "accepted"
                    pending.updated_at = utcnow()
                    session.add(pending)
            except ClusterIntelError as e:
                self.manager.record_event(
                    user_id, "manual_move",
                    target_cluster_ids=[row.suggested_cluster_id] if row.suggested_cluster_id else [],
                    affected_collections=[row.collection_id], trigger_reason=trigger_reason,
                    success=False, error_message=str(e), metadata=metadata,
                )
                raise

            if row.suggestion_type == "create_new":
                metadata["created_cluster_id"] = target_id
            self.manager.record_event(
                user_id,
                "manual_move",
                source_cluster_ids=[previous] if previous else [],
                target_cluster_ids=[target_id],
                affected_collections=[row.collection_id],
                trigger_reason=trigger_reason,
                metadata=metadata,
            )
        logger.info(f"Accepted suggestion {suggestion_id}: collection {row.collection_id} -> cluster {target_id}")
        return {
            "suggestion_id": suggestion_id,
            "status": "accepted",
            "collection_id": row.collection_id,
            "from_cluster_id": previous,
            "to_cluster_id": target_id,
        }

    def dismiss_suggestion(self, suggestion_id: int, user_id: int) -> dict[str, Any]:
        with self.manager.user_lock(user_id):
            row = self.store.get_suggestion(suggestion_id, user_id)
            if row.status != "pending":
                raise ValidationError(f"Suggestion {suggestion_id} is {row.status}, not pending")
            self.store.set_suggestion_status(suggestion_id, user_id, "dismissed")
        return {"suggestion_id": suggestion_id, "status": "dismissed"}

    def expire_suggestions(self, now: datetime | None = None) -> int:
        expired = self.store.expire_suggestions(now or self.now())
        if expired:
            logger.info(f"Expired {expired} suggestion(s)")
        return expired

    def find_related_collections(
        self,
        collection_id: int,
        user_id: int,
        threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        """Other collections of the user whose names are at least ``threshold`` similar, best first."""
        threshold = self.threshold if threshold is None else threshold
        source = self.store.get_collection(collection_id, user_id)
        related = []
        for other in self.store.list_collections(user_id):
            if other.collection_id == collection_id:
                continue
            similarity = name_similarity(source.name, other.name)
            if similarity < threshold:
                continue
            related.append({
                "collection_id": other.collection_id,
                "name": other.name,
                "cluster_id": other.cluster_id,
                "similarity": round(similarity, 4),
                "reasoning": (
                    f'"{other.name}" shows {relationship_strength(similarity)} topical similarity '
                    f'({similarity * 100:.1f}%) to "{source.name}".'
                ),
            })
        related.sort(key=lambda r: r["similarity"], reverse=True)
        return related

    def analyze_cluster_fit(self, collection_id: int, user_id: int) -> dict[str, Any]:
        """How well a collection fits the cluster it currently belongs to."""
        collection = self.store.get_collection(collection_id, user_id)
        if collection.cluster_id is None:
            raise ValidationError(f"Collection {collection_id} is not in a cluster")
        members = self.store.get_cluster_members(collection.cluster_id, user_id)
        mates = [m for m in members if m.collection_id != collection_id]

        if not mates:
            return {
                "collection_id": collection_id,
                "cluster_id": collection.cluster_id,
                "fit_score": 1.0,
                "status": "excellent_fit",
                "reasoning": "This is the only collection in the cluster, so it defines the cluster theme.",
                "recommendations": [],
                "metrics": {"cluster_size": len(members)},
            }

        score = sum(name_similarity(collection.name, m.name) for m in mates) / len(mates)
        status, reasoning, recommendations = fit_status(score)
        if status == "misplaced":
            others = [c for c in self.store.snapshot(user_id) if c.cluster_id != collection.cluster_id]
            alternatives = self.rank_clusters(collection, others, threshold=0.0)[:2]
            names = ", ".join(s.cluster_name for s in alternatives if s.confidence > 0) or "New cluster"
            recommendations.append(f"Alternative clusters: {names}")

        return {
            "collection_id": collection_id,
            "cluster_id": collection.cluster_id,
            "fit_score": round(score, 4),
            "status": status,
            "reasoning": reasoning,
            "recommendations": recommendations,
            "metrics": {"name_similarity": round(score, 4), "cluster_size": len(members)},
        }
