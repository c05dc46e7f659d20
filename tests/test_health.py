"""Tests for cluster health scoring."""

from datetime import timedelta

from clusterintel.health import ClusterHealthAnalyzer
from clusterintel.health.analyzer import size_health, status_for
from clusterintel.models import ClusterSnapshot, MemberSnapshot

from conftest import NOW


def _members(names, docs=1, age_days=0):
    return [
        MemberSnapshot(collection_id=i + 1, name=n, document_count=docs, updated_at=NOW - timedelta(days=age_days))
        for i, n in enumerate(names)
    ]


def _analyzer():
    return ClusterHealthAnalyzer(now=lambda: NOW)


def test_size_health_bands():
    assert [size_health(n) for n in (0, 1, 2, 8, 9, 12, 13)] == [0.0, 0.3, 1.0, 1.0, 0.7, 0.7, 0.4]


def test_status_bands():
    assert status_for(0.8) == "healthy"
    assert status_for(0.6) == "fair"
    assert status_for(0.4) == "poor"
    assert status_for(0.39) == "critical"


def test_two_active_reports_are_healthy():
    members = [
        MemberSnapshot(collection_id=1, name="Q1 Report", document_count=5, updated_at=NOW),
        MemberSnapshot(collection_id=2, name="Q2 Report", document_count=3, updated_at=NOW),
    ]
    report = _analyzer().analyze_cluster(ClusterSnapshot(1, "Reports", members))
    assert report.metrics.size_health == 1.0
    assert report.metrics.content_health == 0.8
    assert report.metrics.activity_health == 1.0
    assert report.health_score == 0.94
    assert report.status == "healthy"
    assert report.issues == []


def test_empty_cluster_scores_zero():
    report = _analyzer().analyze_cluster(ClusterSnapshot(1, "Empty", []))
    assert report.health_score == 0
    assert report.status == "critical"
    assert "Empty cluster" in report.issues


def test_issues_for_singleton_without_documents_or_activity():
    members = _members(["Old Notes"], docs=0, age_days=90)
    report = _analyzer().analyze_cluster(ClusterSnapshot(1, "Notes", members))
    assert report.issues == ["Only one collection", "No documents in collections", "No recent activity"]
    assert len(report.recommendations) == 3
    # 0.4 * 0.3 + 0.3 * 0.2 + 0.3 * 0.3
    assert report.health_score == 0.27


def test_oversized_cluster_issue():
    report = _analyzer().analyze_cluster(ClusterSnapshot(1, "Big", _members([f"C{i}" for i in range(11)])))
    assert "Too many collections" in report.issues
    assert report.metrics.size_health == 0.7


def test_scoring_is_deterministic():
    cluster = ClusterSnapshot(1, "Mixed", _members(["A", "B", "C"], age_days=40))
    analyzer = _analyzer()
    first = analyzer.analyze_cluster(cluster)
    second = analyzer.analyze_cluster(cluster)
    assert first == second


def test_global_report_action_items():
    clusters = [
        ClusterSnapshot(1, "Solo", _members(["Only"])),
        ClusterSnapshot(2, "Huge", _members([f"C{i}" for i in range(11)])),
        ClusterSnapshot(3, "Empty", []),
        ClusterSnapshot(4, "Fine", _members(["X", "Y"])),
    ]
    report = _analyzer().analyze_all(clusters)

    types = {(a.type, a.cluster_id, a.priority) for a in report.action_items}
    assert ("merge_or_expand", 1, "low") in types
    assert ("split_cluster", 2, "medium") in types
    assert ("improve_health", 3, "high") in types
    assert not any(a.cluster_id == 4 for a in report.action_items)
    assert report.status_counts["critical"] == 1
    assert sum(report.status_counts.values()) == 4
    assert any("empty cluster" in r for r in report.recommendations)


def test_global_report_without_clusters():
    report = _analyzer().analyze_all([])
    assert report.health_score == 1.0
    assert report.action_items == []
    assert report.recommendations
