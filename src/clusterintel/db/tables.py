"""SQLModel tables for clusters, collections and their audit trail."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _expiry() -> datetime:
    return utcnow() + timedelta(days=30)


class Cluster(SQLModel, table=True):
    """Named grouping of collections owned by one user."""
    __tablename__ = "clusters"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_clusters_user_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, nullable=False)
    name: str = Field(max_length=200, nullable=False)
    description: Optional[str] = Field(default=None)
    cluster_type: str = Field(default="logical", max_length=20)

    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    health_metrics: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    last_analysis_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True, index=True)
    )
    auto_management_enabled: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class Collection(SQLModel, table=True):
    """Container of documents. References at most one cluster."""
    __tablename__ = "collections"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, nullable=False)
    name: str = Field(max_length=200, nullable=False)
    description: Optional[str] = Field(default=None)
    vector_collection: Optional[str] = Field(default=None, max_length=255)
    cluster_id: Optional[int] = Field(default=None, foreign_key="clusters.id", index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class Document(SQLModel, table=True):
    __tablename__ = "documents"

    id: Optional[int] = Field(default=None, primary_key=True)
    collection_id: int = Field(foreign_key="collections.id", index=True)
    filename: str = Field(max_length=255)
    content_preview: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ClusterSuggestion(SQLModel, table=True):
    __tablename__ = "cluster_suggestions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    collection_id: int = Field(foreign_key="collections.id", index=True)
    suggested_cluster_id: Optional[int] = Field(default=None)
    suggestion_type: str = Field(max_length=50)
    confidence_score: float = Field(default=0.0, ge=0, le=1)
    reasoning: Optional[str] = Field(default=None)
    suggested_name: Optional[str] = Field(default=None, max_length=200)
    status: str = Field(default="pending", max_length=20, index=True)
    extra: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False))

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(default_factory=_expiry, sa_column=Column(DateTime(timezone=True), nullable=False))


class ClusterEvent(SQLModel, table=True):
    """Append-only log of topology operations."""
    __tablename__ = "cluster_events"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    event_type: str = Field(max_length=50, index=True)
    source_cluster_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    target_cluster_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    affected_collections: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    trigger_reason: Optional[str] = Field(default=None)
    success: bool = Field(default=True, index=True)
    error_message: Optional[str] = Field(default=None)
    extra: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
