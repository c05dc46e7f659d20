"""Cluster health scoring."""

from .analyzer import ClusterHealthAnalyzer

__all__ = ["ClusterHealthAnalyzer"]
