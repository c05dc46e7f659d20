"""Shared fixtures: in-memory database, fake vector store and text generator."""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from clusterintel.config import MAX_PAGE_SIZE
from clusterintel.db import ClusterStore
from clusterintel.generation import TextGenerator
from clusterintel.models import ScrollPage, VectorPoint
from clusterintel.storage import VectorStoreBase

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeVectorStore(VectorStoreBase):
    """Serves points from a dict keyed by collection name."""

    def __init__(self, collections: dict[str, list[VectorPoint]] | None = None, fail: bool = False):
        self.collections = collections or {}
        self.fail = fail
        self.scroll_calls = 0

    def scroll(self, collection_name, limit=MAX_PAGE_SIZE, offset=None, with_vectors=True, with_payload=True):
        self.scroll_calls += 1
        if self.fail:
            raise ConnectionError("vector store is down")
        points = self.collections.get(collection_name, [])
        start = offset or 0
        page = points[start:start + limit]
        next_offset = start + limit if start + limit < len(points) else None
        return ScrollPage(points=page, next_offset=next_offset)

    def count(self, collection_name):
        return len(self.collections.get(collection_name, []))


class FakeTextGenerator(TextGenerator):
    def __init__(self, reply: str = "Quarterly Finance", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls = []

    def generate(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if self.error:
            raise self.error
        return self.reply


def make_points(vectors, prefix="doc", texts=None) -> list[VectorPoint]:
    points = []
    for i, v in enumerate(vectors):
        payload = {"filename": f"{prefix}-{i}.md"}
        if texts is not None:
            payload["text"] = texts[i]
        points.append(VectorPoint(id=f"{prefix}-{i}", vector=tuple(float(x) for x in v), payload=payload))
    return points


def blob(center, n, rng, spread=0.05):
    center = np.asarray(center, dtype=float)
    return center + rng.normal(scale=spread, size=(n, center.shape[0]))


@pytest.fixture
def store():
    return ClusterStore("sqlite://")


@pytest.fixture
def clock():
    return lambda: NOW


def seed_cluster(store, user_id, cluster_name, collection_names, docs=1, updated_at=None):
    """Create a cluster with one collection per name; returns (cluster, [collection ids])."""
    cluster = store.create_cluster(user_id, cluster_name)
    ids = []
    for name in collection_names:
        collection = store.create_collection(user_id, name, vector_collection=name.lower().replace(" ", "_"),
                                             cluster_id=cluster.id, updated_at=updated_at or NOW)
        for d in range(docs):
            store.add_document(collection.id, f"{name}-{d}.md", content_preview="x" * 10,
                               created_at=(updated_at or NOW) - timedelta(days=d))
        ids.append(collection.id)
    return cluster, ids
