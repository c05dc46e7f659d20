"""Upward API: every method returns a success/data or success/error envelope.

``PersistenceError`` is the one failure that propagates instead of becoming an
error envelope, since the caller cannot assume the database is consistent.
"""

import functools
import logging
from datetime import datetime
from typing import Any, Callable

import numpy as np
from sqlmodel import select

from .analytics import CrossClusterAnalyzer
from .clustering.content import ContentClusterer
from .clustering.naming import ClusterNamer
from .config import DEFAULT_CONFIG
from .db import Cluster, ClusterEvent, ClusterStore, ClusterSuggestion
from .errors import ClusterIntelError, ExternalCollaboratorError, PersistenceError
from .generation import TextGenerator, get_text_generator
from .health import ClusterHealthAnalyzer
from .intelligence import SuggestionEngine
from .storage import VectorStoreBase, get_vector_store
from .topology import ClusterTopologyManager

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def cluster_to_dict(cluster: Cluster) -> dict[str, Any]:
    return {
        "id": cluster.id,
        "name": cluster.name,
        "description": cluster.description,
        "cluster_type": cluster.cluster_type,
        "settings": cluster.settings or {},
        "health_metrics": cluster.health_metrics or {},
        "last_analysis_at": _iso(cluster.last_analysis_at),
        "auto_management_enabled": cluster.auto_management_enabled,
        "created_at": _iso(cluster.created_at),
        "updated_at": _iso(cluster.updated_at),
    }


def suggestion_to_dict(row: ClusterSuggestion) -> dict[str, Any]:
    return {
        "id": row.id,
        "collection_id": row.collection_id,
        "type": row.suggestion_type,
        "cluster_id": row.suggested_cluster_id,
        "suggested_name": row.suggested_name,
        "confidence": row.confidence_score,
        "reasoning": row.reasoning,
        "status": row.status,
        "expires_at": _iso(row.expires_at),
    }


def event_to_dict(event: ClusterEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "event_type": event.event_type,
        "source_cluster_ids": event.source_cluster_ids,
        "target_cluster_ids": event.target_cluster_ids,
        "affected_collections": event.affected_collections,
        "trigger_reason": event.trigger_reason,
        "success": event.success,
        "error_message": event.error_message,
        "metadata": event.extra,
        "created_at": _iso(event.created_at),
    }


def envelope(fn: Callable[..., Any]) -> Callable[..., dict[str, Any]]:
    """Wrap a method's return value (or domain error) in a result envelope."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            return {"success": True, "data": fn(*args, **kwargs)}
        except PersistenceError:
            raise
        except ClusterIntelError as e:
            logger.info(f"{fn.__name__} failed: {e}")
            return {"success": False, "error": str(e), "code": e.code}
        except ValueError as e:
            return {"success": False, "error": str(e), "code": "invalid"}

    return wrapper


class ClusterService:
    """Facade wiring the store, the analyzers and the topology manager together."""

    def __init__(
        self,
        store: ClusterStore,
        vector_store: VectorStoreBase | None = None,
        generator: TextGenerator | None = None,
        config: dict[str, Any] | None = None,
        rng: np.random.Generator | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.store = store
        self.vector_store = vector_store
        timeouts = self.config.get("timeouts", {})
        self.namer = ClusterNamer(generator, timeout=timeouts.get("text_generator"))
        self.clusterer = ContentClusterer(vector_store, self.namer, rng=rng, config=self.config)
        self.health = ClusterHealthAnalyzer(self.config, now=now)
        self.topology = ClusterTopologyManager(store, self.config)
        self.analytics = CrossClusterAnalyzer(vector_store, self.config, now=now)
        self.suggestions = SuggestionEngine(store, self.topology, self.namer, self.config, now=now)

    @envelope
    def create_cluster(
        self,
        user_id: int,
        name: str,
        description: str | None = None,
        cluster_type: str = "logical",
        settings: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return cluster_to_dict(self.store.create_cluster(user_id, name, description, cluster_type, settings))

    @envelope
    def get_user_clusters(self, user_id: int, limit: int | None = None, offset: int = 0) -> list[dict[str, Any]]:
        clusters = self.store.list_clusters(user_id, limit=limit, offset=offset)
        sizes = {s.cluster_id: s.size for s in self.store.snapshot(user_id, [c.id for c in clusters])}
        return [{**cluster_to_dict(c), "collection_count": sizes.get(c.id, 0)} for c in clusters]

    def _cluster_detail(self, cluster_id: int, user_id: int) -> dict[str, Any]:
        cluster = self.store.get_cluster(cluster_id, user_id)
        members = self.store.get_cluster_members(cluster_id, user_id)
        return {
            **cluster_to_dict(cluster),
            "collections": [
                {"id": m.collection_id, "name": m.name, "document_count": m.document_count} for m in members
            ],
        }

    @envelope
    def get_cluster(self, cluster_id: int, user_id: int) -> dict[str, Any]:
        return self._cluster_detail(cluster_id, user_id)

    @envelope
    def update_cluster(self, cluster_id: int, user_id: int, **updates: Any) -> dict[str, Any]:
        self.store.update_cluster(cluster_id, user_id, **updates)
        return self._cluster_detail(cluster_id, user_id)

    @envelope
    def delete_cluster(self, cluster_id: int, user_id: int) -> dict[str, Any]:
        with self.topology.user_lock(user_id):
            released = self.store.delete_cluster(cluster_id, user_id)
        return {"message": "Cluster deleted successfully", "released_collections": released}

    @envelope
    def add_collection_to_cluster(self, cluster_id: int, collection_id: int, user_id: int) -> dict[str, Any]:
        move = self.topology.move_collection(collection_id, cluster_id, user_id,
                                             trigger_reason="Collection added to cluster")
        return {"message": "Collection added to cluster successfully", **move}

    @envelope
    def remove_collection_from_cluster(self, collection_id: int, user_id: int) -> dict[str, Any]:
        move = self.topology.move_collection(collection_id, None, user_id,
                                             trigger_reason="Collection removed from cluster")
        return {"message": "Collection removed from cluster successfully", **move}

    @envelope
    def get_cluster_stats(self, cluster_id: int, user_id: int) -> dict[str, Any]:
        stats = self.store.cluster_stats(cluster_id, user_id)
        return {**stats, "last_updated": _iso(stats["last_updated"])}

    @envelope
    def get_content_based_clusters(
        self,
        collection_id: int,
        user_id: int,
        max_clusters: int | None = None,
        min_cluster_size: int | None = None,
    ) -> dict[str, Any]:
        collection = self.store.get_collection(collection_id, user_id)
        return self.clusterer.analyze_collection(collection, max_clusters, min_cluster_size).to_dict()

    def _auto_generate(self, collection_id: int, user_id: int) -> dict[str, Any]:
        with self.topology.user_lock(user_id):
            return self._cluster_collection(collection_id, user_id)

    def _cluster_collection(self, collection_id: int, user_id: int) -> dict[str, Any]:
        trigger_reason = "Auto-generated cluster for collection"
        collection = self.store.get_collection(collection_id, user_id)
        if collection.cluster_id is not None:
            return {"main_cluster": self._cluster_detail(collection.cluster_id, user_id), "created": []}

        analysis = None
        try:
            analysis = self.clusterer.analyze_collection(collection)
        except ExternalCollaboratorError as e:
            logger.warning(f"Content analysis failed, falling back to simple cluster generation: {e}")

        try:
            with self.store.transaction() as session:
                created = []
                if analysis is not None and analysis.clusters:
                    taken: set[str] = set()
                    for content_cluster in analysis.clusters:
                        base = f"{collection.name} - {content_cluster.name}"
                        name = self.store.unique_name(session, user_id, base, taken)
                        taken.add(name)
                        created.append(self.store.new_cluster(
                            session, user_id, name,
                            description=content_cluster.description,
                            cluster_type="content_based",
                            settings={
                                "auto_generated": True,
                                "source_collection_id": collection_id,
                                "created_from": "content_analysis",
                                "cluster_size": content_cluster.size,
                                "cohesion_score": content_cluster.cohesion,
                                "documents": [d["filename"] for d in content_cluster.documents()],
                            },
                        ))
                    main = created[0]
                else:
                    name = f"{collection.name}-cluster"
                    main = session.exec(
                        select(Cluster).where(Cluster.user_id == user_id, Cluster.name == name)
                    ).first()
                    if main is None:
                        main = self.store.new_cluster(
                            session, user_id, name,
                            description=f"Auto-generated cluster for collection: {collection.name}",
                            settings={"auto_generated": True, "source_collection_id": collection_id,
                                      "created_from": "collection_view"},
                        )
                        created.append(main)
                self.store.move_members(session, [collection_id], main.id)
                main_id = main.id
                created_ids = [c.id for c in created]
        except ClusterIntelError as e:
            self.topology.record_event(user_id, "manual_move", affected_collections=[collection_id],
                                       trigger_reason=trigger_reason, success=False, error_message=str(e))
            raise

        self.topology.record_event(
            user_id, "manual_move", target_cluster_ids=[main_id], affected_collections=[collection_id],
            trigger_reason=trigger_reason,
            metadata={"created_cluster_ids": created_ids},
        )
        return {
            "main_cluster": self._cluster_detail(main_id, user_id),
            "created": created_ids,
            "content_analysis": analysis.to_dict() if analysis is not None else None,
        }

    @envelope
    def auto_generate_cluster_for_collection(self, collection_id: int, user_id: int) -> dict[str, Any]:
        return self._auto_generate(collection_id, user_id)

    @envelope
    def get_or_create_collection_cluster(self, collection_id: int, user_id: int) -> dict[str, Any]:
        collection = self.store.get_collection(collection_id, user_id)
        if collection.cluster_id is not None:
            return self._cluster_detail(collection.cluster_id, user_id)
        return self._auto_generate(collection_id, user_id)["main_cluster"]

    @envelope
    def analyze_cluster_health(self, user_id: int, save: bool = True) -> dict[str, Any]:
        clusters = self.store.snapshot(user_id)
        report = self.health.analyze_all(clusters)
        if save:
            for cluster_report in report.clusters:
                self.store.save_health_snapshot(cluster_report.cluster_id, user_id, {
                    "health_score": cluster_report.health_score,
                    "status": cluster_report.status,
                    "issues": cluster_report.issues,
                })
        self.topology.record_event(
            user_id, "health_check", source_cluster_ids=[c.cluster_id for c in clusters],
            trigger_reason="Cluster health analysis",
            metadata={"health_score": report.health_score, "status_counts": report.status_counts},
        )
        return report.to_dict()

    @envelope
    def split_cluster(self, cluster_id: int, user_id: int, **options: Any) -> dict[str, Any]:
        return self.topology.split(cluster_id, user_id, **options).to_dict()

    @envelope
    def merge_clusters(
        self,
        cluster_ids: list[int],
        user_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        return self.topology.merge(cluster_ids, user_id, name=name, description=description).to_dict()

    @envelope
    def rebalance_clusters(self, user_id: int, **options: Any) -> dict[str, Any]:
        return self.topology.rebalance(user_id, **options).to_dict()

    @envelope
    def get_cluster_suggestions(self, collection_id: int, user_id: int, **options: Any) -> list[dict[str, Any]]:
        rows = self.suggestions.suggest_clusters_for_collection(collection_id, user_id, **options)
        return [suggestion_to_dict(r) for r in rows]

    @envelope
    def accept_suggestion(self, suggestion_id: int, user_id: int) -> dict[str, Any]:
        return self.suggestions.accept_suggestion(suggestion_id, user_id)

    @envelope
    def dismiss_suggestion(self, suggestion_id: int, user_id: int) -> dict[str, Any]:
        return self.suggestions.dismiss_suggestion(suggestion_id, user_id)

    @envelope
    def analyze_cluster_fit(self, collection_id: int, user_id: int) -> dict[str, Any]:
        return self.suggestions.analyze_cluster_fit(collection_id, user_id)

    @envelope
    def find_related_collections(self, collection_id: int, user_id: int,
                                 threshold: float | None = None) -> list[dict[str, Any]]:
        return self.suggestions.find_related_collections(collection_id, user_id, threshold)

    @envelope
    def get_cluster_overlaps(self, user_id: int) -> dict[str, Any]:
        clusters = self.store.snapshot(user_id)
        overlaps = self.analytics.compute_overlaps(clusters)
        return {
            "overlaps": [o.to_dict() for o in overlaps],
            "summary": self.analytics.overlap_summary(clusters, overlaps),
        }

    @envelope
    def get_bridge_documents(self, user_id: int, threshold: float | None = None,
                             limit: int | None = None) -> dict[str, Any]:
        clusters = self.store.snapshot(user_id)
        bridges = self.analytics.find_bridge_documents(clusters, threshold, limit)
        overlaps = self.analytics.compute_overlaps(clusters)
        return {
            "bridge_documents": [b.to_dict() for b in bridges],
            "action_items": [a.to_dict() for a in self.analytics.recommend_actions(overlaps, bridges)],
        }

    @envelope
    def get_cross_cluster_duplicates(self, user_id: int, threshold: float | None = None) -> dict[str, Any]:
        clusters = self.store.snapshot(user_id)
        duplicates = self.analytics.find_duplicate_documents(clusters, threshold)
        return {
            "duplications": [d.to_dict() for d in duplicates],
            "summary": self.analytics.duplication_summary(clusters, duplicates),
        }

    @envelope
    def get_collaboration_opportunities(self, user_id: int) -> dict[str, Any]:
        clusters = self.store.snapshot(user_id)
        overlaps = self.analytics.compute_overlaps(clusters)
        bridges = self.analytics.find_bridge_documents(clusters)
        opportunities = self.analytics.find_collaboration_opportunities(overlaps, bridges)
        categories: dict[str, int] = {}
        for opp in opportunities:
            categories[opp["type"]] = categories.get(opp["type"], 0) + 1
        return {
            "opportunities": opportunities,
            "summary": {
                "total_opportunities": len(opportunities),
                "high_potential": sum(1 for o in opportunities if o["score"] >= 0.8),
                "categories": categories,
            },
        }

    @envelope
    def get_cluster_trends(self, user_id: int, days: int = 30) -> dict[str, Any]:
        clusters = self.store.snapshot(user_id)
        collection_ids = [m.collection_id for c in clusters for m in c.members]
        dates: dict[int, list[datetime]] = {}
        for doc in self.store.list_documents(collection_ids):
            dates.setdefault(doc.collection_id, []).append(doc.created_at)
        trends = self.analytics.cluster_trends(clusters, dates, days)
        return {
            "trends": trends,
            "summary": {
                "analysis_period": days,
                "total_clusters": len(trends),
                "active_clusters": sum(1 for t in trends if t["recent_documents"] > 0),
                "fastest_growing": trends[0]["cluster_name"] if trends else None,
            },
        }

    @envelope
    def get_cluster_events(self, user_id: int, event_type: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        return [event_to_dict(e) for e in self.store.list_events(user_id, event_type, limit)]


def build_service(config: dict[str, Any]) -> ClusterService:
    """Service wired to the configured database, vector store and text generator."""
    store = ClusterStore.from_config(config)
    vector_store = get_vector_store(config)
    generator = get_text_generator(config)
    seed = config.get("clustering", {}).get("seed")
    return ClusterService(store, vector_store, generator, config, rng=np.random.default_rng(seed))
