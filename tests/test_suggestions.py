"""Tests for cluster suggestions and fit analysis."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from clusterintel.errors import NotFoundError, PersistenceError, ValidationError
from clusterintel.intelligence import SuggestionEngine
from clusterintel.intelligence.suggestions import confidence_label, fit_status, relationship_strength
from clusterintel.models import ClusterSnapshot, MemberSnapshot
from clusterintel.topology import ClusterTopologyManager

from conftest import NOW, seed_cluster

USER = 1


def _engine(store):
    return SuggestionEngine(store, ClusterTopologyManager(store), now=lambda: NOW)


def test_confidence_labels():
    assert confidence_label(0.95) == "very high"
    assert confidence_label(0.85) == "high"
    assert confidence_label(0.75) == "moderate"
    assert confidence_label(0.5) == "low"


def test_fit_status_bands():
    assert fit_status(0.9)[0] == "excellent_fit"
    assert fit_status(0.6)[0] == "good_fit"
    assert fit_status(0.4)[0] == "poor_fit"
    assert fit_status(0.1)[0] == "misplaced"


def test_cluster_fit_is_damped_by_size():
    collection = MemberSnapshot(collection_id=99, name="Machine Learning Papers")
    small = ClusterSnapshot(1, "ML", [MemberSnapshot(1, "Machine Learning Papers")])
    large = ClusterSnapshot(2, "ML", [MemberSnapshot(i, "Machine Learning Papers") for i in range(10)])
    assert SuggestionEngine.cluster_fit(collection, small) == pytest.approx(0.9)
    assert SuggestionEngine.cluster_fit(collection, large) == pytest.approx(0.5)


def test_first_cluster_suggestion(store):
    collection = store.create_collection(USER, "Machine Learning Papers")
    rows = _engine(store).suggest_clusters_for_collection(collection.id, USER)

    assert len(rows) == 1
    assert rows[0].suggestion_type == "create_new"
    assert rows[0].confidence_score == 0.9
    assert rows[0].suggested_name == "Machine Learning Cluster"
    assert rows[0].status == "pending"


def test_strong_match_has_no_create_new(store):
    cluster, _ = seed_cluster(store, USER, "ML", ["Machine Learning Papers"])
    collection = store.create_collection(USER, "Machine Learning Papers")

    rows = _engine(store).suggest_clusters_for_collection(collection.id, USER)

    assert [r.suggestion_type for r in rows] == ["move_to_existing"]
    assert rows[0].suggested_cluster_id == cluster.id
    assert rows[0].confidence_score == pytest.approx(0.9)
    events = store.list_events(USER, event_type="auto_suggestion")
    assert len(events) == 1
    assert events[0].affected_collections == [collection.id]


def test_weak_match_puts_create_new_first(store):
    seed_cluster(store, USER, "ML", ["Machine Learning Notes"])
    collection = store.create_collection(USER, "Machine Learning Papers")
    engine = _engine(store)

    rows = engine.suggest_clusters_for_collection(collection.id, USER)
    assert [r.suggestion_type for r in rows] == ["create_new"]
    assert rows[0].confidence_score == 0.75

    rows = engine.suggest_clusters_for_collection(collection.id, USER, threshold=0.4)
    assert [r.suggestion_type for r in rows] == ["create_new", "move_to_existing"]


def test_own_cluster_is_never_suggested(store):
    cluster, ids = seed_cluster(store, USER, "ML", ["Machine Learning Papers", "Machine Learning Notes"])
    rows = _engine(store).suggest_clusters_for_collection(ids[0], USER, threshold=0.0)
    assert all(r.suggested_cluster_id != cluster.id for r in rows)


def test_accept_move_suggestion(store):
    cluster, _ = seed_cluster(store, USER, "ML", ["Machine Learning Papers"])
    collection = store.create_collection(USER, "Machine Learning Papers")
    engine = _engine(store)
    row = engine.suggest_clusters_for_collection(collection.id, USER)[0]

    result = engine.accept_suggestion(row.id, USER)

    assert result["status"] == "accepted"
    assert result["to_cluster_id"] == cluster.id
    assert store.get_collection(collection.id, USER).cluster_id == cluster.id
    assert store.get_suggestion(row.id, USER).status == "accepted"
    events = store.list_events(USER, event_type="manual_move")
    assert len(events) == 1
    assert events[0].extra["suggestion_id"] == row.id

    with pytest.raises(ValidationError):
        engine.accept_suggestion(row.id, USER)


def test_accept_create_new_suggestion(store):
    collection = store.create_collection(USER, "Machine Learning Papers")
    engine = _engine(store)
    row = engine.suggest_clusters_for_collection(collection.id, USER)[0]

    result = engine.accept_suggestion(row.id, USER)

    created = store.find_cluster_by_name(USER, "Machine Learning Cluster")
    assert created is not None
    assert result["to_cluster_id"] == created.id
    assert store.get_collection(collection.id, USER).cluster_id == created.id


def test_dismiss_suggestion(store):
    collection = store.create_collection(USER, "Notes")
    engine = _engine(store)
    row = engine.suggest_clusters_for_collection(collection.id, USER)[0]

    assert engine.dismiss_suggestion(row.id, USER)["status"] == "dismissed"
    assert store.get_collection(collection.id, USER).cluster_id is None
    with pytest.raises(ValidationError):
        engine.dismiss_suggestion(row.id, USER)


def test_foreign_suggestion_is_not_found(store):
    collection = store.create_collection(USER, "Notes")
    row = _engine(store).suggest_clusters_for_collection(collection.id, USER)[0]
    with pytest.raises(NotFoundError):
        _engine(store).accept_suggestion(row.id, 2)


def test_pending_suggestions_expire(store):
    collection = store.create_collection(USER, "Notes")
    engine = _engine(store)
    row = engine.suggest_clusters_for_collection(collection.id, USER)[0]

    assert engine.expire_suggestions(NOW + timedelta(days=1)) == 0
    assert engine.expire_suggestions(NOW + timedelta(days=31)) == 1
    assert store.get_suggestion(row.id, USER).status == "expired"


def test_fit_of_sole_member(store):
    _, ids = seed_cluster(store, USER, "Solo", ["Notes"])
    fit = _engine(store).analyze_cluster_fit(ids[0], USER)
    assert fit["fit_score"] == 1.0
    assert fit["status"] == "excellent_fit"


def test_fit_of_misplaced_member(store):
    _, ids = seed_cluster(store, USER, "Finance", ["Finance Report Q1", "Finance Report Q2", "Gardening Tips"])
    seed_cluster(store, USER, "Garden", ["Gardening Tips Archive"])

    engine = _engine(store)
    # mean of 0.5 (the other report) and 0.0 (the gardening collection)
    assert engine.analyze_cluster_fit(ids[0], USER)["fit_score"] == 0.25
    fit = engine.analyze_cluster_fit(ids[2], USER)
    assert fit["status"] == "misplaced"
    assert fit["fit_score"] == 0.0
    assert any("Garden" in r for r in fit["recommendations"])


def test_fit_requires_a_cluster(store):
    collection = store.create_collection(USER, "Loose")
    with pytest.raises(ValidationError):
        _engine(store).analyze_cluster_fit(collection.id, USER)


def test_failed_create_new_accept_leaves_nothing_behind(store, monkeypatch):
    seed_cluster(store, USER, "Existing", ["Gardening Tips"])
    collection = store.create_collection(USER, "Loose Notes")
    engine = _engine(store)
    row = engine.suggest_clusters_for_collection(collection.id, USER)[0]
    assert row.suggestion_type == "create_new"

    def broken(session, collection_ids, cluster_id):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(store, "move_members", broken)
    with pytest.raises(PersistenceError):
        engine.accept_suggestion(row.id, USER)

    assert [c.name for c in store.list_clusters(USER)] == ["Existing"]
    assert store.get_suggestion(row.id, USER).status == "pending"
    assert store.get_collection(collection.id, USER).cluster_id is None
    events = store.list_events(USER, event_type="manual_move")
    assert len(events) == 1
    assert not events[0].success
    assert engine.manager._locks == {}


def test_accept_into_deleted_cluster_is_not_found(store):
    cluster, _ = seed_cluster(store, USER, "ML", ["Machine Learning Papers"])
    collection = store.create_collection(USER, "Machine Learning Papers")
    engine = _engine(store)
    row = next(r for r in engine.suggest_clusters_for_collection(collection.id, USER)
               if r.suggestion_type == "move_to_existing")
    store.delete_cluster(cluster.id, USER)

    with pytest.raises(NotFoundError):
        engine.accept_suggestion(row.id, USER)
    assert store.get_suggestion(row.id, USER).status == "pending"
    assert not store.list_events(USER, event_type="manual_move")[0].success


def test_related_collections(store):
    source = store.create_collection(USER, "Machine Learning Papers")
    archive = store.create_collection(USER, "Machine Learning Papers Archive")
    notes = store.create_collection(USER, "Machine Learning Notes")
    store.create_collection(USER, "Gardening")
    engine = _engine(store)

    related = engine.find_related_collections(source.id, USER)
    assert [r["collection_id"] for r in related] == [archive.id]
    assert related[0]["similarity"] == 0.75
    assert related[0]["reasoning"].startswith('"Machine Learning Papers Archive" shows moderate topical similarity')

    looser = engine.find_related_collections(source.id, USER, threshold=0.5)
    assert [r["collection_id"] for r in looser] == [archive.id, notes.id]
    assert relationship_strength(0.85) == "strong"
    assert relationship_strength(0.5) == "weak"


def test_related_collections_of_foreign_collection(store):
    collection = store.create_collection(2, "Theirs")
    with pytest.raises(NotFoundError):
        _engine(store).find_related_collections(collection.id, USER)
