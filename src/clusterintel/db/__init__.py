from .store import ClusterStore
from .tables import Cluster, ClusterEvent, ClusterSuggestion, Collection, Document

__all__ = ["ClusterStore", "Cluster", "ClusterEvent", "ClusterSuggestion", "Collection", "Document"]
