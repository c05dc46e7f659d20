"""Data models used throughout the cluster engine."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

CLUSTER_TYPES = ("logical", "content_based", "merged", "sharded", "replicated")
SUGGESTION_TYPES = ("move_to_existing", "create_new", "merge", "split")
SUGGESTION_STATUSES = ("pending", "accepted", "dismissed", "expired")
EVENT_TYPES = ("split", "merge", "rebalance", "auto_suggestion", "manual_move", "health_check")

# Payload fields holding document text, tried in this order.
CONTENT_FIELDS = ("text", "chunk_text", "content")


@dataclass(frozen=True)
class VectorPoint:
    """One embedded document as returned by the vector store."""
    id: str
    vector: tuple[float, ...]
    payload: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def text(self) -> str:
        for name in CONTENT_FIELDS:
            value = self.payload.get(name)
            if isinstance(value, str) and value:
                return value
        return ""

    @property
    def filename(self) -> str:
        return self.payload.get("filename") or f"Document {self.id}"


@dataclass
class ScrollPage:
    """A page of points from the vector store."""
    points: list[VectorPoint]
    next_offset: int | None = None


@dataclass
class ContentCluster:
    """A vector grouping inside one collection. Not persisted."""
    index: int
    centroid: list[float]
    members: list[VectorPoint]
    cohesion: float = 1.0
    avg_distance_from_centroid: float = 0.0
    name: str = ""
    description: str = ""

    @property
    def size(self) -> int:
        return len(self.members)

    def documents(self, preview_chars: int = 200) -> list[dict[str, Any]]:
        docs = []
        for point in self.members:
            text = point.text
            preview = text[:preview_chars] + "..." if len(text) > preview_chars else text
            docs.append({"id": point.id, "filename": point.filename, "content_preview": preview})
        return docs

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.index,
            "name": self.name,
            "description": self.description,
            "size": self.size,
            "documents": self.documents(),
            "stats": {
                "size": self.size,
                "cohesion": self.cohesion,
                "avg_distance_from_centroid": self.avg_distance_from_centroid,
            },
            "centroid": self.centroid,
        }


@dataclass
class ClusteringResult:
    """Outcome of clustering one collection."""
    collection_id: int
    total_documents: int
    clusters: list[ContentCluster]
    invalid_vectors_filtered: int = 0
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.clusters

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection_id": self.collection_id,
            "total_documents": self.total_documents,
            "clusters": [c.to_dict() for c in self.clusters],
            "invalid_vectors_filtered": self.invalid_vectors_filtered,
            "reason": self.reason,
            "analysis_metadata": self.metadata,
        }


@dataclass
class MemberSnapshot:
    """Read-only view of a collection as seen by the analyzers."""
    collection_id: int
    name: str
    document_count: int = 0
    updated_at: datetime | None = None
    description: str = ""
    vector_collection: str | None = None
    cluster_id: int | None = None


@dataclass
class ClusterSnapshot:
    """Read-only view of a cluster with its members."""
    cluster_id: int
    name: str
    members: list[MemberSnapshot] = field(default_factory=list)
    description: str = ""

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass
class HealthMetrics:
    collection_count: int
    documents_present: bool
    recent_activity: int
    size_health: float
    content_health: float
    activity_health: float


@dataclass
class HealthReport:
    cluster_id: int
    cluster_name: str
    health_score: float
    status: str
    metrics: HealthMetrics
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ActionItem:
    type: str  # split_cluster | merge_or_expand | improve_health
    cluster_id: int
    cluster_name: str
    action: str
    priority: str  # high | medium | low

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class GlobalHealthReport:
    health_score: float
    clusters: list[HealthReport]
    status_counts: dict[str, int]
    recommendations: list[str]
    action_items: list[ActionItem]
    summary: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SplitResult:
    success: bool
    cluster_id: int
    reason: str | None = None
    message: str = ""
    new_clusters: list[dict[str, Any]] = field(default_factory=list)
    original_retained: bool = False
    retained_collection_ids: list[int] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MergeResult:
    success: bool
    source_cluster_ids: list[int]
    reason: str | None = None
    message: str = ""
    merged_cluster: dict[str, Any] | None = None
    compatibility: float = 0.0
    min_similarity: float = 0.0
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CollectionMove:
    collection_id: int
    collection_name: str
    from_cluster_id: int
    from_cluster_name: str
    target_cluster_id: int
    target_cluster_name: str
    similarity: float
    reason: str = ""


@dataclass
class RebalanceAnalysis:
    oversized: list[ClusterSnapshot]
    undersized: list[ClusterSnapshot]
    moves: list[CollectionMove]

    @property
    def needs_rebalancing(self) -> bool:
        return bool(self.oversized) or len(self.undersized) > 1 or bool(self.moves)

    def to_dict(self) -> dict[str, Any]:
        return {
            "needs_rebalancing": self.needs_rebalancing,
            "oversized_clusters": [{"id": c.cluster_id, "name": c.name, "size": c.size} for c in self.oversized],
            "undersized_clusters": [{"id": c.cluster_id, "name": c.name, "size": c.size} for c in self.undersized],
            "suggested_moves": [asdict(m) for m in self.moves],
            "proposed_changes": {
                "splits": len(self.oversized),
                "merges": len(self.undersized) // 2,
                "moves": len(self.moves),
            },
        }


@dataclass
class RebalanceResult:
    success: bool
    dry_run: bool
    analysis: RebalanceAnalysis | None = None
    reason: str | None = None
    message: str = ""
    changes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        counts = {"split": 0, "merge": 0, "move": 0}
        for change in self.changes:
            counts[change["type"]] = counts.get(change["type"], 0) + 1
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "reason": self.reason,
            "message": self.message,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "changes": self.changes,
            "summary": {
                "total_changes": len(self.changes),
                "splits": counts["split"],
                "merges": counts["merge"],
                "moves": counts["move"],
            },
        }


@dataclass
class ClusterOverlap:
    cluster_a: ClusterSnapshot
    cluster_b: ClusterSnapshot
    similarity: float
    overlap_type: str
    recommendation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster_a": {"id": self.cluster_a.cluster_id, "name": self.cluster_a.name, "size": self.cluster_a.size},
            "cluster_b": {"id": self.cluster_b.cluster_id, "name": self.cluster_b.name, "size": self.cluster_b.size},
            "similarity": self.similarity,
            "overlap_type": self.overlap_type,
            "recommendation": self.recommendation,
        }


@dataclass
class BridgeDocument:
    """A document close to the centroids of two or more clusters."""
    document_id: str
    filename: str
    collection_id: int
    home_cluster_id: int
    cluster_ids: list[int]
    cluster_names: list[str]
    similarities: list[float]
    bridge_score: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DuplicateDocument:
    """Two documents in different clusters whose vectors nearly coincide."""
    source_document_id: str
    source_filename: str
    source_collection_id: int
    source_cluster_id: int
    source_cluster_name: str
    target_document_id: str
    target_filename: str
    target_collection_id: int
    target_cluster_id: int
    target_cluster_name: str
    similarity: float

    @property
    def duplication_type(self) -> str:
        return "exact_duplicate" if self.similarity >= 0.95 else "similar_content"

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "duplication_type": self.duplication_type}


@dataclass
class Suggestion:
    """A proposed structural change before it is persisted."""
    type: str
    confidence: float
    reasoning: str
    cluster_id: int | None = None
    cluster_name: str | None = None
    suggested_name: str | None = None
