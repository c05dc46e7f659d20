"""Tests for the ChromaDB vector store and paging."""

from clusterintel.storage.chromadb import ChromaVectorStore

from conftest import FakeVectorStore, make_points


def _store(tmp_path, n=5):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    collection = store.client.create_collection(name="notes")
    collection.add(
        ids=[f"doc-{i}" for i in range(n)],
        embeddings=[[float(i), 1.0, 0.5] for i in range(n)],
        documents=[f"text {i}" for i in range(n)],
        metadatas=[{"filename": f"note-{i}.md"} for i in range(n)],
    )
    return store


def test_scroll_returns_vectors_and_payload(tmp_path):
    store = _store(tmp_path)
    page = store.scroll("notes", limit=10)

    assert len(page.points) == 5
    assert page.next_offset is None
    point = next(p for p in page.points if p.id == "doc-2")
    assert point.vector == (2.0, 1.0, 0.5)
    assert point.text == "text 2"
    assert point.filename == "note-2.md"


def test_iter_points_walks_every_page(tmp_path):
    store = _store(tmp_path, n=7)
    ids = [p.id for p in store.iter_points("notes", page_size=3)]
    assert sorted(ids) == sorted(f"doc-{i}" for i in range(7))
    assert store.count("notes") == 7


def test_missing_collection_is_empty(tmp_path):
    store = ChromaVectorStore(str(tmp_path / "chroma"))
    assert store.scroll("nope").points == []
    assert store.count("nope") == 0


def test_iter_points_respects_max_points():
    store = FakeVectorStore({"c": make_points([[float(i)] for i in range(10)])})
    assert len(list(store.iter_points("c", page_size=4, max_points=6))) == 6
    assert store.scroll_calls == 2
