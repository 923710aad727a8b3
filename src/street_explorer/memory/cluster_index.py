"""Proximity clustering of node ids that alias the same physical spot.

The node source sometimes exposes one location under several ids
(A and A'). Routing treats every member of a cluster as one place, so the
cluster-aware pathfinder can move between aliases without calling it a
loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from street_explorer.schemas.nodes import LatLng
from street_explorer.utils.config import DEFAULT_CLUSTER_DISTANCE_M
from street_explorer.utils.geo import haversine_m

if TYPE_CHECKING:
    from street_explorer.memory.coverage_graph import CoverageGraph

logger = logging.getLogger(__name__)


@dataclass
class Cluster:
    """Members of one cluster and their running-mean centroid."""

    cluster_id: str
    centroid_lat: float
    centroid_lng: float
    members: dict[str, None] = field(default_factory=dict)

    @property
    def centroid(self) -> LatLng:
        return LatLng(lat=self.centroid_lat, lng=self.centroid_lng)

    def add(self, node_id: str, position: LatLng) -> None:
        self.members[node_id] = None
        n = len(self.members)
        self.centroid_lat = (self.centroid_lat * (n - 1) + position.lat) / n
        self.centroid_lng = (self.centroid_lng * (n - 1) + position.lng) / n


class PanoClusterIndex:
    """Centroid clustering with first-match-wins assignment.

    Assignment is permanent and depends on the order nodes arrive in:
    the same set of positions processed in a different order can produce
    different clusters. Clusters are never re-balanced.
    """

    def __init__(self, distance_threshold_m: float = DEFAULT_CLUSTER_DISTANCE_M) -> None:
        """Initialize an empty index.

        Args:
            distance_threshold_m: A node joins the first cluster whose
                centroid lies within this great-circle distance.
        """
        self.distance_threshold_m = distance_threshold_m
        self._clusters: dict[str, Cluster] = {}
        self._node_to_cluster: dict[str, str] = {}
        self._id_counter = 0

    def __len__(self) -> int:
        return len(self._clusters)

    def assign(self, node_id: str, position: LatLng) -> str:
        """Assign a node to a cluster, creating one if none is close enough.

        No-op for nodes that already belong to a cluster.

        Args:
            node_id: Node to assign.
            position: Position of the node.

        Returns:
            The id of the cluster the node belongs to.
        """
        existing = self._node_to_cluster.get(node_id)
        if existing is not None:
            return existing

        chosen: Cluster | None = None
        for cluster in self._clusters.values():
            if haversine_m(position, cluster.centroid) <= self.distance_threshold_m:
                chosen = cluster
                break

        if chosen is None:
            self._id_counter += 1
            chosen = Cluster(
                cluster_id=f"c{self._id_counter}",
                centroid_lat=position.lat,
                centroid_lng=position.lng,
            )
            self._clusters[chosen.cluster_id] = chosen

        chosen.add(node_id, position)
        self._node_to_cluster[node_id] = chosen.cluster_id
        if len(chosen.members) > 1:
            logger.debug("Node %s aliased into cluster %s (%d members)",
                         node_id, chosen.cluster_id, len(chosen.members))
        return chosen.cluster_id

    def assign_many(self, nodes: Iterable[tuple[str, LatLng]]) -> None:
        for node_id, position in nodes:
            self.assign(node_id, position)

    def cluster_of(self, node_id: str) -> str | None:
        """Get the cluster id for a node, or None if unassigned."""
        return self._node_to_cluster.get(node_id)

    def members_of(self, cluster_id: str) -> list[str]:
        """Get the members of a cluster in assignment order."""
        cluster = self._clusters.get(cluster_id)
        if cluster is None:
            return []
        return list(cluster.members)

    def centroid_of(self, cluster_id: str) -> LatLng | None:
        cluster = self._clusters.get(cluster_id)
        return cluster.centroid if cluster is not None else None

    def rebuild_from_graph(self, coverage: CoverageGraph) -> None:
        """Re-derive every cluster from the visited nodes of a graph.

        Nodes are processed in the graph's insertion order.
        """
        self.reset()
        self.assign_many(coverage.positions())
        logger.info("Rebuilt %d clusters from %d visited nodes",
                    len(self._clusters), len(self._node_to_cluster))

    def reset(self) -> None:
        """Clear all clusters."""
        self._clusters.clear()
        self._node_to_cluster.clear()
        self._id_counter = 0
