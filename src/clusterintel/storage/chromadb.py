"""ChromaDB vector store backend."""

import logging
from pathlib import Path

import chromadb
import numpy as np

from ..config import MAX_PAGE_SIZE
from ..models import ScrollPage, VectorPoint
from .base import VectorStoreBase

logger = logging.getLogger(__name__)


def _to_list(embedding) -> tuple[float, ...]:
    """Convert numpy arrays to plain float tuples."""
    if isinstance(embedding, np.ndarray):
        return tuple(float(v) for v in embedding.tolist())
    return tuple(float(v) for v in embedding)


class ChromaVectorStore(VectorStoreBase):
    """ChromaDB-backed persistent vector store."""

    def __init__(self, chroma_path: str):
        self.chroma_path = Path(chroma_path)
        self.chroma_path.mkdir(parents=True, exist_ok=True)
        self.client = chromadb.PersistentClient(path=str(self.chroma_path))

    def _get_collection(self, name: str) -> chromadb.Collection | None:
        try:
            return self.client.get_collection(name=name)
        except Exception as e:
            # Missing collections raise different types across chromadb releases.
            logger.debug(f"Chroma collection '{name}' unavailable: {e}")
            return None

    def scroll(
        self,
        collection_name: str,
        limit: int = MAX_PAGE_SIZE,
        offset: int | None = None,
        with_vectors: bool = True,
        with_payload: bool = True,
    ) -> ScrollPage:
        collection = self._get_collection(collection_name)
        if collection is None:
            return ScrollPage(points=[])

        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = offset or 0
        include = ["metadatas", "documents"] if with_payload else []
        if with_vectors:
            include.append("embeddings")

        data = collection.get(limit=limit, offset=offset, include=include)
        ids = data.get("ids") or []
        embeddings = data.get("embeddings")
        metadatas = data.get("metadatas")
        documents = data.get("documents")

        points = []
        for i, point_id in enumerate(ids):
            payload = {}
            if with_payload:
                payload = dict(metadatas[i] or {}) if metadatas is not None else {}
                if documents is not None and documents[i] and "text" not in payload:
                    payload["text"] = documents[i]
            vector: tuple[float, ...] = ()
            if with_vectors and embeddings is not None and len(embeddings) > i:
                vector = _to_list(embeddings[i])
            points.append(VectorPoint(id=str(point_id), vector=vector, payload=payload))

        next_offset = offset + len(points) if len(points) == limit else None
        return ScrollPage(points=points, next_offset=next_offset)

    def count(self, collection_name: str) -> int:
        collection = self._get_collection(collection_name)
        return collection.count() if collection is not None else 0
