"""Transactional split, merge and rebalance of the cluster graph.

Every public operation writes exactly one ClusterEvent after its own
transaction has committed or rolled back. A failed event write is logged and
never aborts the operation it describes.
"""

import logging
import math
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from ..config import DEFAULT_CONFIG
from ..db import Cluster, ClusterStore, Collection
from ..errors import ClusterIntelError, DuplicateClusterNameError, NotFoundError, PersistenceError
from ..models import (
    ClusterSnapshot,
    CollectionMove,
    MergeResult,
    RebalanceAnalysis,
    RebalanceResult,
    SplitResult,
)
from .similarity import (
    cluster_similarity,
    common_words_name,
    group_by_name_similarity,
    group_transitively,
    max_name_similarity,
    pairwise_cluster_similarities,
)

logger = logging.getLogger(__name__)


class ClusterTopologyManager:
    """Mutates cluster membership for one store.

    Operations for the same user are serialized with a re-entrant lock, so
    ``rebalance`` can call ``split`` and ``merge`` while holding it.
    """

    def __init__(self, store: ClusterStore, config: dict[str, Any] | None = None):
        cfg = (config or DEFAULT_CONFIG).get("topology", {})
        self.store = store
        self.split_threshold = cfg.get("split_similarity_threshold", 0.3)
        self.merge_min_average = cfg.get("merge_min_average", 0.4)
        self.merge_min_pairwise = cfg.get("merge_min_pairwise", 0.2)
        self.max_cluster_size = cfg.get("max_cluster_size", 8)
        self.min_cluster_size = cfg.get("min_cluster_size", 2)
        self.similarity_threshold = cfg.get("similarity_threshold", 0.6)
        # user id -> [lock, holders and waiters]; dropped when nobody uses it
        self._locks: dict[int, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def user_lock(self, user_id: int) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(user_id, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[user_id]

    def record_event(self, user_id: int, event_type: str, **fields: Any) -> None:
        try:
            self.store.append_event(user_id, event_type, **fields)
        except Exception as e:
            logger.error(f"Failed to record {event_type} event for user {user_id}: {e}")

    def split(
        self,
        cluster_id: int,
        user_id: int,
        max_clusters_after_split: int = 3,
        min_collections_per_cluster: int = 2,
        preserve_original: bool = False,
        trigger_reason: str = "Manual cluster split",
    ) -> SplitResult:
        """Split a cluster into groups of similarly named collections.

        Raises NotFoundError for a missing or foreign cluster. Refusals come
        back as ``SplitResult(success=False, reason=...)``.
        """
        with self.user_lock(user_id):
            try:
                cluster = self.store.get_cluster(cluster_id, user_id)
                members = self.store.get_cluster_members(cluster_id, user_id)
            except NotFoundError as e:
                self.record_event(user_id, "split", source_cluster_ids=[cluster_id],
                                trigger_reason=trigger_reason, success=False, error_message=str(e))
                raise

            member_ids = [m.collection_id for m in members]
            needed = 2 * min_collections_per_cluster
            if len(members) < needed:
                result = SplitResult(
                    success=False,
                    cluster_id=cluster_id,
                    reason="insufficient_members",
                    message=f"Cluster has {len(members)} collection(s); at least {needed} are needed to split",
                    suggestions=["Add more collections before considering a split"],
                )
                self._log_split_refusal(user_id, cluster_id, member_ids, trigger_reason, result)
                return result

            groups, leftovers = group_by_name_similarity(members, max_clusters_after_split, self.split_threshold)
            if len(groups) < 2:
                result = SplitResult(
                    success=False,
                    cluster_id=cluster_id,
                    reason="too_similar",
                    message="Collections are too similar for splitting",
                    suggestions=["Collections appear to belong together; a split may not be beneficial"],
                )
                self._log_split_refusal(user_id, cluster_id, member_ids, trigger_reason, result)
                return result

            keep_original = preserve_original and bool(leftovers)
            if leftovers and not keep_original:
                min(groups, key=len).extend(leftovers)

            try:
                with self.store.transaction() as session:
                    original = self.store.load_cluster(session, cluster_id, user_id)
                    split_date = datetime.now(timezone.utc)
                    taken: set[str] = set()
                    new_clusters = []
                    for i, group in enumerate(groups):
                        base = common_words_name([m.name for m in group]) or f"Content Group {i + 1}"
                        name = self.store.unique_name(session, user_id, base, taken)
                        taken.add(name)
                        created = self.store.new_cluster(
                            session,
                            user_id,
                            name,
                            description=f"Split cluster containing {len(group)} related collections",
                            cluster_type="content_based",
                            settings={
                                "split_from": cluster_id,
                                "split_date": split_date.isoformat(),
                                "auto_generated": True,
                                "split_method": "name_similarity",
                            },
                        )
                        self.store.move_members(session, [m.collection_id for m in group], created.id)
                        new_clusters.append({
                            "id": created.id,
                            "name": created.name,
                            "collection_count": len(group),
                            "collections": [{"id": m.collection_id, "name": m.name} for m in group],
                        })

                    if keep_original:
                        original.description = f"{original.description or cluster.name} (Split on {split_date.date()})"
                        original.updated_at = split_date
                        session.add(original)
                    else:
                        self.store.remove_cluster(session, original)
            except ClusterIntelError as e:
                self.record_event(user_id, "split", source_cluster_ids=[cluster_id], affected_collections=member_ids,
                                trigger_reason=trigger_reason, success=False, error_message=str(e))
                raise

            retained = [m.collection_id for m in leftovers] if keep_original else []
            self.record_event(
                user_id,
                "split",
                source_cluster_ids=[cluster_id],
                target_cluster_ids=[c["id"] for c in new_clusters],
                affected_collections=member_ids,
                trigger_reason=trigger_reason,
                metadata={"new_clusters_count": len(new_clusters), "original_retained": keep_original},
            )
            logger.info(f"Split cluster {cluster_id} into {len(new_clusters)} cluster(s)")
            return SplitResult(
                success=True,
                cluster_id=cluster_id,
                message=f"Content analysis suggests {len(new_clusters)} distinct themes",
                new_clusters=new_clusters,
                original_retained=keep_original,
                retained_collection_ids=retained,
            )

    def _log_split_refusal(self, user_id, cluster_id, member_ids, trigger_reason, result: SplitResult) -> None:
        self.record_event(
            user_id,
            "split",
            source_cluster_ids=[cluster_id],
            affected_collections=member_ids,
            trigger_reason=trigger_reason,
            success=False,
            error_message=result.message,
            metadata={"reason": result.reason},
        )

    def merge(
        self,
        cluster_ids: list[int],
        user_id: int,
        name: str | None = None,
        description: str | None = None,
        trigger_reason: str = "Cluster merge operation",
    ) -> MergeResult:
        """Merge clusters whose collections have compatible names.

        The compatibility gate is the average and minimum pairwise cluster
        similarity. Refusals come back as ``MergeResult(success=False, ...)``.
        """
        cluster_ids = list(dict.fromkeys(cluster_ids))
        with self.user_lock(user_id):
            if len(cluster_ids) < 2:
                result = MergeResult(
                    success=False,
                    source_cluster_ids=cluster_ids,
                    reason="insufficient_clusters",
                    message="Need at least 2 clusters to merge",
                )
                self.record_event(user_id, "merge", source_cluster_ids=cluster_ids, trigger_reason=trigger_reason,
                                success=False, error_message=result.message)
                return result

            try:
                snapshots = [self._snapshot_one(cid, user_id) for cid in cluster_ids]
            except NotFoundError as e:
                self.record_event(user_id, "merge", source_cluster_ids=cluster_ids, trigger_reason=trigger_reason,
                                success=False, error_message=str(e))
                raise

            member_ids = [m.collection_id for s in snapshots for m in s.members]
            similarities = pairwise_cluster_similarities(snapshots)
            average = sum(similarities) / len(similarities)
            minimum = min(similarities)

            if average < self.merge_min_average or minimum < self.merge_min_pairwise:
                result = MergeResult(
                    success=False,
                    source_cluster_ids=cluster_ids,
                    reason="incompatible",
                    message="Clusters have too dissimilar content for merging",
                    compatibility=round(average, 4),
                    min_similarity=round(minimum, 4),
                    suggestions=[
                        "Consider reorganizing content before merging",
                        "Create bridge collections to connect themes",
                    ],
                )
                self.record_event(
                    user_id, "merge", source_cluster_ids=cluster_ids, affected_collections=member_ids,
                    trigger_reason=trigger_reason, success=False, error_message=result.message,
                    metadata={"compatibility": result.compatibility, "min_similarity": result.min_similarity},
                )
                return result

            source_names = {s.name for s in snapshots}
            merged_description = description or (
                f"Merged cluster combining content from: {', '.join(s.name for s in snapshots)}. "
                f"Contains {len(member_ids)} collections covering related topics."
            )
            try:
                with self.store.transaction() as session:
                    if name and name not in source_names and name in self.store.names_in_use(session, user_id):
                        raise DuplicateClusterNameError(f"Cluster name already exists: {name}")
                    for cid in cluster_ids:
                        self.store.remove_cluster(session, self.store.load_cluster(session, cid, user_id))
                    merged_name = name or self.store.unique_name(session, user_id, self._merged_name(snapshots))
                    merged = self.store.new_cluster(
                        session,
                        user_id,
                        merged_name,
                        description=merged_description,
                        cluster_type="merged",
                        settings={
                            "merged_from": cluster_ids,
                            "merge_date": datetime.now(timezone.utc).isoformat(),
                            "merge_compatibility": round(average, 4),
                            "auto_generated": name is None,
                        },
                    )
                    self.store.move_members(session, member_ids, merged.id)
            except ClusterIntelError as e:
                self.record_event(user_id, "merge", source_cluster_ids=cluster_ids, affected_collections=member_ids,
                                trigger_reason=trigger_reason, success=False, error_message=str(e))
                raise

            self.record_event(
                user_id,
                "merge",
                source_cluster_ids=cluster_ids,
                target_cluster_ids=[merged.id],
                affected_collections=member_ids,
                trigger_reason=trigger_reason,
                metadata={"merged_clusters_count": len(cluster_ids), "compatibility": round(average, 4)},
            )
            logger.info(f"Merged clusters {cluster_ids} into cluster {merged.id}")
            return MergeResult(
                success=True,
                source_cluster_ids=cluster_ids,
                message="Clusters have compatible content themes",
                merged_cluster={
                    "id": merged.id,
                    "name": merged.name,
                    "description": merged.description,
                    "collection_count": len(member_ids),
                },
                compatibility=round(average, 4),
                min_similarity=round(minimum, 4),
            )

    def _snapshot_one(self, cluster_id: int, user_id: int) -> ClusterSnapshot:
        cluster = self.store.get_cluster(cluster_id, user_id)
        members = self.store.get_cluster_members(cluster_id, user_id)
        return ClusterSnapshot(cluster.id, cluster.name, members, cluster.description or "")

    @staticmethod
    def _merged_name(snapshots: list[ClusterSnapshot]) -> str:
        name = common_words_name([s.name for s in snapshots])
        if name:
            return name
        first_word = snapshots[0].name.split()[0] if snapshots[0].name.split() else "Content"
        return f"Merged {first_word} Cluster"

    def analyze_rebalance(
        self,
        clusters: list[ClusterSnapshot],
        max_cluster_size: int,
        min_cluster_size: int,
        similarity_threshold: float,
    ) -> RebalanceAnalysis:
        """Find oversized and undersized clusters and misplaced collections."""
        oversized = [c for c in clusters if c.size > max_cluster_size]
        undersized = [c for c in clusters if 0 < c.size < min_cluster_size]

        moves = []
        for cluster in clusters:
            for member in cluster.members:
                mates = [m.name for m in cluster.members if m.collection_id != member.collection_id]
                own = max_name_similarity(member.name, mates)
                best: tuple[float, ClusterSnapshot] | None = None
                for other in clusters:
                    if other.cluster_id == cluster.cluster_id or not other.members:
                        continue
                    sim = max_name_similarity(member.name, [m.name for m in other.members])
                    if sim >= similarity_threshold and (best is None or sim > best[0]):
                        best = (sim, other)
                if best and best[0] > own:
                    sim, target = best
                    moves.append(CollectionMove(
                        collection_id=member.collection_id,
                        collection_name=member.name,
                        from_cluster_id=cluster.cluster_id,
                        from_cluster_name=cluster.name,
                        target_cluster_id=target.cluster_id,
                        target_cluster_name=target.name,
                        similarity=round(sim, 4),
                        reason=f"Better content fit ({sim * 100:.1f}% similarity)",
                    ))
        return RebalanceAnalysis(oversized=oversized, undersized=undersized, moves=moves)

    def rebalance(
        self,
        user_id: int,
        max_cluster_size: int | None = None,
        min_cluster_size: int | None = None,
        similarity_threshold: float | None = None,
        dry_run: bool = False,
    ) -> RebalanceResult:
        """Split oversized clusters, merge similar undersized ones, move misplaced collections.

        With ``dry_run`` only the analysis is returned. Nested splits and
        merges record their own events; the rebalance itself records one
        aggregate event.
        """
        max_size = max_cluster_size or self.max_cluster_size
        min_size = min_cluster_size or self.min_cluster_size
        threshold = self.similarity_threshold if similarity_threshold is None else similarity_threshold
        params = {"max_cluster_size": max_size, "min_cluster_size": min_size,
                  "similarity_threshold": threshold, "dry_run": dry_run}

        with self.user_lock(user_id):
            clusters = self.store.snapshot(user_id)
            cluster_ids = [c.cluster_id for c in clusters]
            collection_ids = [m.collection_id for c in clusters for m in c.members]

            if len(clusters) < 2:
                result = RebalanceResult(
                    success=False,
                    dry_run=dry_run,
                    reason="insufficient_clusters",
                    message="Need at least 2 clusters for rebalancing",
                )
                self.record_event(user_id, "rebalance", source_cluster_ids=cluster_ids,
                                trigger_reason="Automated cluster rebalancing", success=False,
                                error_message=result.message, metadata=params)
                return result

            analysis = self.analyze_rebalance(clusters, max_size, min_size, threshold)
            if not analysis.needs_rebalancing or dry_run:
                message = "Clusters are already well-balanced" if not analysis.needs_rebalancing else "Dry run"
                self.record_event(
                    user_id, "rebalance", source_cluster_ids=cluster_ids, affected_collections=collection_ids,
                    trigger_reason="Automated cluster rebalancing",
                    metadata={**params, "changes_count": 0, "needs_rebalancing": analysis.needs_rebalancing},
                )
                return RebalanceResult(success=True, dry_run=dry_run, analysis=analysis, message=message)

            changes: list[dict[str, Any]] = []
            targets: list[int] = []
            try:
                self._apply_splits(user_id, analysis, max_size, min_size, changes, targets)
                self._apply_merges(user_id, analysis, threshold, changes, targets)
                self._apply_moves(user_id, analysis, changes, targets)
            except PersistenceError as e:
                self.record_event(
                    user_id, "rebalance", source_cluster_ids=cluster_ids, target_cluster_ids=targets,
                    affected_collections=collection_ids, trigger_reason="Automated cluster rebalancing",
                    success=False, error_message=str(e), metadata={**params, "changes_count": len(changes)},
                )
                raise

            self.record_event(
                user_id,
                "rebalance",
                source_cluster_ids=cluster_ids,
                target_cluster_ids=targets,
                affected_collections=collection_ids,
                trigger_reason="Automated cluster rebalancing",
                metadata={**params, "changes_count": len(changes), "clusters_before_rebalance": len(clusters)},
            )
            logger.info(f"Rebalanced clusters for user {user_id}: {len(changes)} change(s)")
            return RebalanceResult(
                success=True,
                dry_run=False,
                analysis=analysis,
                message=f"Applied {len(changes)} change(s)",
                changes=changes,
            )

    def _apply_splits(self, user_id, analysis, max_size, min_size, changes, targets) -> None:
        for cluster in analysis.oversized:
            groups = max(2, math.ceil(cluster.size / max_size))
            try:
                result = self.split(cluster.cluster_id, user_id, max_clusters_after_split=groups,
                                    min_collections_per_cluster=min_size,
                                    trigger_reason="Rebalance: cluster too large")
            except PersistenceError:
                raise
            except ClusterIntelError as e:
                logger.warning(f"Failed to split cluster {cluster.cluster_id}: {e}")
                continue
            if result.success:
                targets.extend(c["id"] for c in result.new_clusters)
                changes.append({
                    "type": "split",
                    "cluster_id": cluster.cluster_id,
                    "cluster_name": cluster.name,
                    "new_cluster_ids": [c["id"] for c in result.new_clusters],
                    "reason": f"Cluster too large ({cluster.size} collections)",
                })

    def _apply_merges(self, user_id, analysis, threshold, changes, targets) -> None:
        groups = group_transitively(analysis.undersized, lambda a, b: cluster_similarity(a, b) >= threshold)
        for group in groups:
            ids = [c.cluster_id for c in group]
            try:
                result = self.merge(ids, user_id, trigger_reason="Rebalance: undersized clusters with similar content")
            except PersistenceError:
                raise
            except ClusterIntelError as e:
                logger.warning(f"Failed to merge clusters {ids}: {e}")
                continue
            if result.success:
                targets.append(result.merged_cluster["id"])
                changes.append({
                    "type": "merge",
                    "cluster_ids": ids,
                    "cluster_names": [c.name for c in group],
                    "merged_cluster_id": result.merged_cluster["id"],
                    "reason": "Undersized clusters with similar content",
                })

    def _apply_moves(self, user_id, analysis, changes, targets) -> None:
        if not analysis.moves:
            return
        with self.store.transaction() as session:
            for move in analysis.moves:
                collection = session.get(Collection, move.collection_id)
                target = session.get(Cluster, move.target_cluster_id)
                if (
                    collection is None
                    or collection.cluster_id != move.from_cluster_id
                    or target is None
                    or target.user_id != user_id
                ):
                    logger.debug(f"Skipping stale move of collection {move.collection_id}")
                    continue
                self.store.move_members(session, [move.collection_id], move.target_cluster_id)
                targets.append(move.target_cluster_id)
                changes.append({
                    "type": "move",
                    "collection_id": move.collection_id,
                    "collection_name": move.collection_name,
                    "from_cluster": move.from_cluster_name,
                    "to_cluster": move.target_cluster_name,
                    "reason": move.reason,
                })

    def move_collection(
        self,
        collection_id: int,
        cluster_id: int | None,
        user_id: int,
        trigger_reason: str = "Manual collection move",
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Point a collection at another cluster (or none)."""
        with self.user_lock(user_id):
            try:
                previous = self.store.assign_collection(collection_id, cluster_id, user_id)
            except (NotFoundError, PersistenceError) as e:
                self.record_event(user_id, "manual_move", target_cluster_ids=[cluster_id] if cluster_id else [],
                                affected_collections=[collection_id], trigger_reason=trigger_reason,
                                success=False, error_message=str(e), metadata=metadata)
                raise
            self.record_event(
                user_id,
                "manual_move",
                source_cluster_ids=[previous] if previous else [],
                target_cluster_ids=[cluster_id] if cluster_id else [],
                affected_collections=[collection_id],
                trigger_reason=trigger_reason,
                metadata=metadata,
            )
            return {"collection_id": collection_id, "from_cluster_id": previous, "to_cluster_id": cluster_id}
