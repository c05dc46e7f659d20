"""Cross-cluster overlap, bridge and trend analytics."""

from .cross_cluster import CrossClusterAnalyzer

__all__ = ["CrossClusterAnalyzer"]
