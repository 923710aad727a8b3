"""Exploration memory: coverage graph and alias clusters."""

from street_explorer.memory.cluster_index import Cluster, PanoClusterIndex
from street_explorer.memory.coverage_graph import (
    CoverageGraph,
    FrontierEntry,
    FrontierNode,
    NodeRecord,
    VisitResult,
)

__all__ = [
    "Cluster",
    "CoverageGraph",
    "FrontierEntry",
    "FrontierNode",
    "NodeRecord",
    "PanoClusterIndex",
    "VisitResult",
]
