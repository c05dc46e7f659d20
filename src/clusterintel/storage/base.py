"""Abstract base class for vector stores and factory function."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterator

from ..config import MAX_PAGE_SIZE
from ..models import ScrollPage, VectorPoint

logger = logging.getLogger(__name__)


class VectorStoreBase(ABC):
    """Read side of a vector backend, as needed by the cluster engine."""

    @abstractmethod
    def scroll(
        self,
        collection_name: str,
        limit: int = MAX_PAGE_SIZE,
        offset: int | None = None,
        with_vectors: bool = True,
        with_payload: bool = True,
    ) -> ScrollPage:
        """Return one page of points. Unknown collections give an empty page."""

    @abstractmethod
    def count(self, collection_name: str) -> int:
        """Count points in a collection (0 when it does not exist)."""

    def iter_points(
        self,
        collection_name: str,
        page_size: int = MAX_PAGE_SIZE,
        max_points: int | None = None,
    ) -> Iterator[VectorPoint]:
        """Walk every point of a collection page by page."""
        page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        offset: int | None = None
        seen = 0
        while True:
            page = self.scroll(collection_name, limit=page_size, offset=offset)
            for point in page.points:
                yield point
                seen += 1
                if max_points is not None and seen >= max_points:
                    return
            if page.next_offset is None or not page.points:
                return
            offset = page.next_offset


def get_vector_store(config: dict[str, Any]) -> VectorStoreBase:
    """Factory: return the right vector store based on config."""
    backend = config.get("storage_backend", "chromadb")

    if backend == "chromadb":
        from .chromadb import ChromaVectorStore
        return ChromaVectorStore(config["chroma_path"])
    else:
        raise ValueError(f"Unknown storage_backend: {backend}")
