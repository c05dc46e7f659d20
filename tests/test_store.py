"""Tests for the SQLModel-backed store."""

import pytest

from clusterintel.db import ClusterStore
from clusterintel.errors import DuplicateClusterNameError, NotFoundError, PersistenceError

from conftest import seed_cluster

USER = 1


def test_unique_name_appends_counter(store):
    store.create_cluster(USER, "Research")
    store.create_cluster(USER, "Research (2)")
    with store.reader() as session:
        assert store.unique_name(session, USER, "Research") == "Research (3)"
        assert store.unique_name(session, USER, "Fresh") == "Fresh"
        assert store.unique_name(session, USER, "Fresh", taken={"Fresh"}) == "Fresh (2)"
        assert store.unique_name(session, 2, "Research") == "Research"


def test_duplicate_name_per_user(store):
    store.create_cluster(USER, "Research")
    with pytest.raises(DuplicateClusterNameError):
        store.create_cluster(USER, "Research")
    assert store.create_cluster(2, "Research").user_id == 2


def test_rename_to_taken_name_is_rejected(store):
    store.create_cluster(USER, "Research")
    other = store.create_cluster(USER, "Other")
    with pytest.raises(DuplicateClusterNameError):
        store.update_cluster(other.id, USER, name="Research")


def test_collection_in_foreign_cluster_is_rejected(store):
    cluster = store.create_cluster(2, "Theirs")
    with pytest.raises(NotFoundError):
        store.create_collection(USER, "Notes", cluster_id=cluster.id)


def test_database_errors_become_persistence_errors(store):
    with pytest.raises(PersistenceError):
        with store.transaction() as session:
            store.new_cluster(session, USER, "Same")
            store.new_cluster(session, USER, "Same")
    assert store.list_clusters(USER) == []


def test_snapshot_counts_documents(store):
    cluster, ids = seed_cluster(store, USER, "Research", ["Papers", "Notes"], docs=2)
    store.create_collection(USER, "Loose")

    [snap] = store.snapshot(USER)
    assert snap.cluster_id == cluster.id
    assert [m.document_count for m in snap.members] == [2, 2]
    assert all(m.updated_at.tzinfo is not None for m in snap.members)
    assert [c.name for c in store.list_collections(USER, unclustered_only=True)] == ["Loose"]


def test_list_clusters_paginates(store):
    for name in ("A", "B", "C"):
        store.create_cluster(USER, name)
    assert [c.name for c in store.list_clusters(USER, limit=2)] == ["A", "B"]
    assert [c.name for c in store.list_clusters(USER, limit=2, offset=2)] == ["C"]


def test_events_are_listed_newest_first(store):
    store.append_event(USER, "split", source_cluster_ids=[3, 1, 3], trigger_reason="first")
    store.append_event(USER, "merge", trigger_reason="second", success=False, error_message="nope")

    events = store.list_events(USER)
    assert [e.trigger_reason for e in events] == ["second", "first"]
    assert events[1].source_cluster_ids == [1, 3]
    assert store.list_events(USER, event_type="merge")[0].error_message == "nope"
    assert store.list_events(2) == []


def test_file_backed_database(tmp_path):
    url = f"sqlite:///{tmp_path / 'clusters.db'}"
    ClusterStore(url).create_cluster(USER, "Persistent")
    assert [c.name for c in ClusterStore(url).list_clusters(USER)] == ["Persistent"]
