"""Rule-based cluster health scoring from membership and activity metadata."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from ..config import DEFAULT_CONFIG
from ..models import ActionItem, ClusterSnapshot, GlobalHealthReport, HealthMetrics, HealthReport, MemberSnapshot

logger = logging.getLogger(__name__)

SIZE_WEIGHT = 0.4
CONTENT_WEIGHT = 0.3
ACTIVITY_WEIGHT = 0.3

STATUSES = ("healthy", "fair", "poor", "critical")


def size_health(count: int) -> float:
    if count == 0:
        return 0.0
    if count == 1:
        return 0.3
    if count <= 8:
        return 1.0
    if count <= 12:
        return 0.7
    return 0.4


def status_for(score: float) -> str:
    if score >= 0.8:
        return "healthy"
    if score >= 0.6:
        return "fair"
    if score >= 0.4:
        return "poor"
    return "critical"


class ClusterHealthAnalyzer:
    """Scores clusters without touching the vector store.

    ``now`` is a zero-argument callable returning an aware datetime; pass a
    fixed clock to make activity scoring reproducible.
    """

    def __init__(self, config: dict[str, Any] | None = None, now: Callable[[], datetime] | None = None):
        cfg = (config or DEFAULT_CONFIG).get("health", {})
        self.activity_window = timedelta(days=cfg.get("activity_window_days", 30))
        self.oversized_threshold = cfg.get("oversized_threshold", 10)
        self.now = now or (lambda: datetime.now(timezone.utc))

    def _is_recent(self, member: MemberSnapshot, cutoff: datetime) -> bool:
        updated = member.updated_at
        if updated is None:
            return False
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return updated > cutoff

    def analyze_cluster(self, cluster: ClusterSnapshot, members: list[MemberSnapshot] | None = None) -> HealthReport:
        members = cluster.members if members is None else members
        count = len(members)
        has_documents = any(m.document_count > 0 for m in members)
        cutoff = self.now() - self.activity_window
        recent = sum(1 for m in members if self._is_recent(m, cutoff))

        if count:
            size = size_health(count)
            content = 0.8 if has_documents else 0.2
            activity = min(1.0, recent / count + 0.3)
        else:
            size = content = activity = 0.0

        score = round(SIZE_WEIGHT * size + CONTENT_WEIGHT * content + ACTIVITY_WEIGHT * activity, 2)

        issues = []
        recommendations = []
        if count == 0:
            issues.append("Empty cluster")
            recommendations.append("Add collections or consider removing this cluster")
        elif count == 1:
            issues.append("Only one collection")
            recommendations.append("Add related collections or merge with similar cluster")
        elif count > self.oversized_threshold:
            issues.append("Too many collections")
            recommendations.append("Consider splitting into smaller, more focused clusters")

        if not has_documents:
            issues.append("No documents in collections")
            recommendations.append("Add documents to collections or remove empty collections")

        if count and recent == 0:
            issues.append("No recent activity")
            recommendations.append("Review if this cluster is still relevant")

        return HealthReport(
            cluster_id=cluster.cluster_id,
            cluster_name=cluster.name,
            health_score=score,
            status=status_for(score),
            metrics=HealthMetrics(
                collection_count=count,
                documents_present=has_documents,
                recent_activity=recent,
                size_health=size,
                content_health=content,
                activity_health=activity,
            ),
            issues=issues,
            recommendations=recommendations,
        )

    def analyze_all(self, clusters: list[ClusterSnapshot]) -> GlobalHealthReport:
        if not clusters:
            return GlobalHealthReport(
                health_score=1.0,
                clusters=[],
                status_counts={s: 0 for s in STATUSES},
                recommendations=["Create your first cluster to start organizing collections"],
                action_items=[],
                summary={"total_clusters": 0, "needs_attention": 0, "oversized": 0, "undersized": 0},
            )

        reports = [self.analyze_cluster(c) for c in clusters]
        average = round(sum(r.health_score for r in reports) / len(reports), 2)

        counts = {s: 0 for s in STATUSES}
        for report in reports:
            counts[report.status] += 1

        unhealthy = [r for r in reports if r.health_score < 0.6]
        oversized = [r for r in reports if r.metrics.collection_count > self.oversized_threshold]
        singletons = [r for r in reports if r.metrics.collection_count == 1]

        action_items = (
            [ActionItem("improve_health", r.cluster_id, r.cluster_name, "Review cluster organization", "high")
             for r in unhealthy]
            + [ActionItem("split_cluster", r.cluster_id, r.cluster_name,
                          "Consider splitting into smaller clusters", "medium")
               for r in oversized]
            + [ActionItem("merge_or_expand", r.cluster_id, r.cluster_name,
                          "Consider merging with similar cluster or adding related collections", "low")
               for r in singletons]
        )

        logger.debug(f"Analyzed {len(reports)} cluster(s), average health {average}")
        return GlobalHealthReport(
            health_score=average,
            clusters=reports,
            status_counts=counts,
            recommendations=self._recommendations(reports),
            action_items=action_items,
            summary={
                "total_clusters": len(reports),
                "needs_attention": len(unhealthy),
                "oversized": len(oversized),
                "undersized": len(singletons),
            },
        )

    def _recommendations(self, reports: list[HealthReport]) -> list[str]:
        critical = sum(1 for r in reports if r.status == "critical")
        empty = sum(1 for r in reports if r.metrics.collection_count == 0)
        oversized = sum(1 for r in reports if r.metrics.collection_count > self.oversized_threshold)
        inactive = sum(1 for r in reports if r.metrics.collection_count and r.metrics.recent_activity == 0)

        recommendations = []
        if critical:
            recommendations.append(f"{critical} cluster(s) need immediate attention due to poor health scores.")
        if empty:
            recommendations.append(f"Remove {empty} empty cluster(s) or add collections to them.")
        if oversized:
            recommendations.append(f"Consider splitting {oversized} oversized cluster(s) for better organization.")
        if inactive:
            recommendations.append(f"Review {inactive} inactive cluster(s); they may need updating or archiving.")
        if not recommendations:
            recommendations.append("Your clusters are in good health! Consider regular maintenance to keep them organized.")
        return recommendations
