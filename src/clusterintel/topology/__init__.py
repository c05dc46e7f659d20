"""Cluster graph mutations and the similarity primitives they rely on."""

from .manager import ClusterTopologyManager

__all__ = ["ClusterTopologyManager"]
