"""Storage abstraction for vector backends."""

from .base import VectorStoreBase, get_vector_store

__all__ = ["VectorStoreBase", "get_vector_store"]
