"""Persistence for clusters, collection membership, events and suggestions."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from ..errors import DuplicateClusterNameError, NotFoundError, PersistenceError
from ..models import CLUSTER_TYPES, ClusterSnapshot, MemberSnapshot, Suggestion
from .tables import Cluster, ClusterEvent, ClusterSuggestion, Collection, Document, as_utc, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_CLUSTER_FIELDS = ("name", "description", "cluster_type", "settings", "auto_management_enabled")


def _make_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo)


class ClusterStore:
    """Owns the database engine. Every write runs inside ``transaction()``."""

    def __init__(self, database_url: str = "sqlite://", engine: Engine | None = None, echo: bool = False):
        self.engine = engine or _make_engine(database_url, echo=echo)
        SQLModel.metadata.create_all(self.engine)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ClusterStore":
        return cls(config.get("database_url", "sqlite://"))

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success, roll back on any error.

        Database errors surface as PersistenceError; domain errors raised
        inside the block propagate unchanged after the rollback.
        """
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise PersistenceError(f"Integrity violation: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Database transaction failed", exc_info=True)
            raise PersistenceError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def reader(self) -> Iterator[Session]:
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        finally:
            session.close()

    @staticmethod
    def load_cluster(session: Session, cluster_id: int, user_id: int) -> Cluster:
        cluster = session.get(Cluster, cluster_id)
        if cluster is None or cluster.user_id != user_id:
            raise NotFoundError(f"Cluster {cluster_id} not found")
        return cluster

    @staticmethod
    def load_collection(session: Session, collection_id: int, user_id: int) -> Collection:
        collection = session.get(Collection, collection_id)
        if collection is None or collection.user_id != user_id:
            raise NotFoundError(f"Collection {collection_id} not found")
        return collection

    @staticmethod
    def load_suggestion(session: Session, suggestion_id: int, user_id: int) -> ClusterSuggestion:
        row = session.get(ClusterSuggestion, suggestion_id)
        if row is None or row.user_id != user_id:
            raise NotFoundError(f"Suggestion {suggestion_id} not found")
        return row

    @staticmethod
    def names_in_use(session: Session, user_id: int) -> set[str]:
        return set(session.exec(select(Cluster.name).where(Cluster.user_id == user_id)).all())

    def unique_name(self, session: Session, user_id: int, base: str, taken: set[str] | None = None) -> str:
        """``base`` or ``base (n)``, whichever is free for the user."""
        taken = self.names_in_use(session, user_id) | (taken or set())
        if base not in taken:
            return base
        n = 2
        while f"{base} ({n})" in taken:
            n += 1
        return f"{base} ({n})"

    @staticmethod
    def new_cluster(
        session: Session,
        user_id: int,
        name: str,
        description: str | None = None,
        cluster_type: str = "logical",
        settings: dict[str, Any] | None = None,
    ) -> Cluster:
        if cluster_type not in CLUSTER_TYPES:
            raise ValueError(f"Unknown cluster type: {cluster_type}")
        cluster = Cluster(
            user_id=user_id,
            name=name,
            description=description,
            cluster_type=cluster_type,
            settings=dict(settings or {}),
        )
        session.add(cluster)
        session.flush()
        return cluster

    @staticmethod
    def move_members(session: Session, collection_ids: Iterable[int], cluster_id: int | None) -> int:
        """Point every listed collection at ``cluster_id`` (or clear it)."""
        ids = list(collection_ids)
        if not ids:
            return 0
        now = utcnow()
        collections = session.exec(select(Collection).where(Collection.id.in_(ids))).all()
        for collection in collections:
            collection.cluster_id = cluster_id
            collection.updated_at = now
            session.add(collection)
        session.flush()
        return len(collections)

    @staticmethod
    def remove_cluster(session: Session, cluster: Cluster) -> list[int]:
        """Delete a cluster after clearing every reference to it."""
        member_ids = list(session.exec(select(Collection.id).where(Collection.cluster_id == cluster.id)).all())
        ClusterStore.move_members(session, member_ids, None)
        session.delete(cluster)
        session.flush()
        return member_ids

    @staticmethod
    def member_snapshots(session: Session, collections: list[Collection]) -> list[MemberSnapshot]:
        ids = [c.id for c in collections]
        counts: dict[int, int] = {}
        if ids:
            rows = session.exec(
                select(Document.collection_id, func.count(Document.id))
                .where(Document.collection_id.in_(ids))
                .group_by(Document.collection_id)
            ).all()
            counts = {collection_id: count for collection_id, count in rows}
        return [
            MemberSnapshot(
                collection_id=c.id,
                name=c.name,
                document_count=counts.get(c.id, 0),
                updated_at=as_utc(c.updated_at),
                description=c.description or "",
                vector_collection=c.vector_collection,
                cluster_id=c.cluster_id,
            )
            for c in collections
        ]

    def members_in_session(self, session: Session, cluster_id: int) -> list[MemberSnapshot]:
        collections = session.exec(
            select(Collection).where(Collection.cluster_id == cluster_id).order_by(Collection.id)
        ).all()
        return self.member_snapshots(session, list(collections))

    def create_collection(
        self,
        user_id: int,
        name: str,
        description: str | None = None,
        vector_collection: str | None = None,
        cluster_id: int | None = None,
        updated_at: datetime | None = None,
    ) -> Collection:
        with self.transaction() as session:
            if cluster_id is not None:
                self.load_cluster(session, cluster_id, user_id)
            collection = Collection(
                user_id=user_id,
                name=name,
                description=description,
                vector_collection=vector_collection,
                cluster_id=cluster_id,
            )
            if updated_at is not None:
                collection.updated_at = updated_at
            session.add(collection)
            session.flush()
            return collection

    def get_collection(self, collection_id: int, user_id: int) -> MemberSnapshot:
        with self.reader() as session:
            collection = self.load_collection(session, collection_id, user_id)
            return self.member_snapshots(session, [collection])[0]

    def list_collections(self, user_id: int, unclustered_only: bool = False) -> list[MemberSnapshot]:
        with self.reader() as session:
            query = select(Collection).where(Collection.user_id == user_id)
            if unclustered_only:
                query = query.where(Collection.cluster_id.is_(None))
            collections = session.exec(query.order_by(Collection.id)).all()
            return self.member_snapshots(session, list(collections))

    def add_document(
        self,
        collection_id: int,
        filename: str,
        content_preview: str | None = None,
        created_at: datetime | None = None,
    ) -> Document:
        with self.transaction() as session:
            if session.get(Collection, collection_id) is None:
                raise NotFoundError(f"Collection {collection_id} not found")
            document = Document(collection_id=collection_id, filename=filename, content_preview=content_preview)
            if created_at is not None:
                document.created_at = created_at
            session.add(document)
            session.flush()
            return document

    def list_documents(self, collection_ids: list[int]) -> list[Document]:
        if not collection_ids:
            return []
        with self.reader() as session:
            return list(session.exec(select(Document).where(Document.collection_id.in_(collection_ids))).all())

    def create_cluster(
        self,
        user_id: int,
        name: str,
        description: str | None = None,
        cluster_type: str = "logical",
        settings: dict[str, Any] | None = None,
    ) -> Cluster:
        with self.transaction() as session:
            if name in self.names_in_use(session, user_id):
                raise DuplicateClusterNameError(f"Cluster name already exists: {name}")
            return self.new_cluster(session, user_id, name, description, cluster_type, settings)

    def get_cluster(self, cluster_id: int, user_id: int) -> Cluster:
        with self.reader() as session:
            return self.load_cluster(session, cluster_id, user_id)

    def find_cluster_by_name(self, user_id: int, name: str) -> Cluster | None:
        with self.reader() as session:
            return session.exec(
                select(Cluster).where(Cluster.user_id == user_id, Cluster.name == name)
            ).first()

    def list_clusters(self, user_id: int, limit: int | None = None, offset: int = 0) -> list[Cluster]:
        with self.reader() as session:
            query = select(Cluster).where(Cluster.user_id == user_id).order_by(Cluster.id).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return list(session.exec(query).all())

    def update_cluster(self, cluster_id: int, user_id: int, **updates: Any) -> Cluster:
        unknown = set(updates) - set(UPDATABLE_CLUSTER_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update cluster field(s): {', '.join(sorted(unknown))}")
        with self.transaction() as session:
            cluster = self.load_cluster(session, cluster_id, user_id)
            new_name = updates.get("name")
            if new_name and new_name != cluster.name and new_name in self.names_in_use(session, user_id):
                raise DuplicateClusterNameError(f"Cluster name already exists: {new_name}")
            if "cluster_type" in updates and updates["cluster_type"] not in CLUSTER_TYPES:
                raise ValueError(f"Unknown cluster type: {updates['cluster_type']}")
            for key, value in updates.items():
                if key == "settings":
                    value = {**(cluster.settings or {}), **(value or {})}
                setattr(cluster, key, value)
            cluster.updated_at = utcnow()
            session.add(cluster)
            session.flush()
            return cluster

    def delete_cluster(self, cluster_id: int, user_id: int) -> list[int]:
        """Delete a cluster; its collections become unclustered. Returns their ids."""
        with self.transaction() as session:
            cluster = self.load_cluster(session, cluster_id, user_id)
            return self.remove_cluster(session, cluster)

    def save_health_snapshot(self, cluster_id: int, user_id: int, metrics: dict[str, Any]) -> None:
        with self.transaction() as session:
            cluster = self.load_cluster(session, cluster_id, user_id)
            cluster.health_metrics = dict(metrics)
            cluster.last_analysis_at = utcnow()
            session.add(cluster)

    def assign_collection(self, collection_id: int, cluster_id: int | None, user_id: int) -> int | None:
        """Point a collection at a cluster (or none). Returns the previous cluster id."""
        with self.transaction() as session:
            collection = self.load_collection(session, collection_id, user_id)
            if cluster_id is not None:
                self.load_cluster(session, cluster_id, user_id)
            previous = collection.cluster_id
            self.move_members(session, [collection_id], cluster_id)
            return previous

    def get_cluster_members(self, cluster_id: int, user_id: int) -> list[MemberSnapshot]:
        with self.reader() as session:
            self.load_cluster(session, cluster_id, user_id)
            return self.members_in_session(session, cluster_id)

    def snapshot(self, user_id: int, cluster_ids: list[int] | None = None) -> list[ClusterSnapshot]:
        """Every cluster of the user with its members, read in one session."""
        with self.reader() as session:
            query = select(Cluster).where(Cluster.user_id == user_id)
            if cluster_ids is not None:
                query = query.where(Cluster.id.in_(cluster_ids))
            clusters = session.exec(query.order_by(Cluster.id)).all()
            return [
                ClusterSnapshot(
                    cluster_id=c.id,
                    name=c.name,
                    description=c.description or "",
                    members=self.members_in_session(session, c.id),
                )
                for c in clusters
            ]

    def cluster_stats(self, cluster_id: int, user_id: int) -> dict[str, Any]:
        with self.reader() as session:
            self.load_cluster(session, cluster_id, user_id)
            members = self.members_in_session(session, cluster_id)
            updated = [m.updated_at for m in members if m.updated_at is not None]
            content_size = 0
            if members:
                content_size = session.exec(
                    select(func.coalesce(func.sum(func.length(Document.content_preview)), 0))
                    .where(Document.collection_id.in_([m.collection_id for m in members]))
                ).one()
            return {
                "collection_count": len(members),
                "document_count": sum(m.document_count for m in members),
                "total_content_size": int(content_size or 0),
                "last_updated": max(updated) if updated else None,
            }

    def append_event(
        self,
        user_id: int,
        event_type: str,
        source_cluster_ids: Iterable[int] = (),
        target_cluster_ids: Iterable[int] = (),
        affected_collections: Iterable[int] = (),
        trigger_reason: str | None = None,
        success: bool = True,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ClusterEvent:
        with self.transaction() as session:
            event = ClusterEvent(
                user_id=user_id,
                event_type=event_type,
                source_cluster_ids=sorted(set(source_cluster_ids)),
                target_cluster_ids=sorted(set(target_cluster_ids)),
                affected_collections=sorted(set(affected_collections)),
                trigger_reason=trigger_reason or "Unknown",
                success=success,
                error_message=error_message,
                extra=dict(metadata or {}),
            )
            session.add(event)
            session.flush()
            return event

    def list_events(self, user_id: int, event_type: str | None = None, limit: int = 50) -> list[ClusterEvent]:
        with self.reader() as session:
            query = select(ClusterEvent).where(ClusterEvent.user_id == user_id)
            if event_type:
                query = query.where(ClusterEvent.event_type == event_type)
            query = query.order_by(ClusterEvent.id.desc()).limit(limit)
            return list(session.exec(query).all())

    def add_suggestions(
        self,
        user_id: int,
        collection_id: int,
        suggestions: list[Suggestion],
        expires_at: datetime | None = None,
    ) -> list[ClusterSuggestion]:
        with self.transaction() as session:
            rows = []
            for s in suggestions:
                row = ClusterSuggestion(
                    user_id=user_id,
                    collection_id=collection_id,
                    suggested_cluster_id=s.cluster_id,
                    suggestion_type=s.type,
                    confidence_score=round(min(max(s.confidence, 0.0), 1.0), 4),
                    reasoning=s.reasoning,
                    suggested_name=s.suggested_name,
                )
                if expires_at is not None:
                    row.expires_at = expires_at
                session.add(row)
                rows.append(row)
            session.flush()
            return rows

    def get_suggestion(self, suggestion_id: int, user_id: int) -> ClusterSuggestion:
        with self.reader() as session:
            return self.load_suggestion(session, suggestion_id, user_id)

    def list_suggestions(self, user_id: int, status: str | None = None) -> list[ClusterSuggestion]:
        with self.reader() as session:
            query = select(ClusterSuggestion).where(ClusterSuggestion.user_id == user_id)
            if status:
                query = query.where(ClusterSuggestion.status == status)
            return list(session.exec(query.order_by(ClusterSuggestion.id.desc())).all())

    def set_suggestion_status(self, suggestion_id: int, user_id: int, status: str) -> ClusterSuggestion:
        with self.transaction() as session:
            row = self.load_suggestion(session, suggestion_id, user_id)
            row.status = status
            row.updated_at = utcnow()
            session.add(row)
            return row

    def expire_suggestions(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        with self.transaction() as session:
            rows = session.exec(
                select(ClusterSuggestion).where(
                    ClusterSuggestion.status == "pending",
                    ClusterSuggestion.expires_at < now,
                )
            ).all()
            for row in rows:
                row.status = "expired"
                row.updated_at = now
                session.add(row)
            return len(rows)
