"""Routing over the coverage graph towards the unexplored frontier.

Three strategies, from exact to heuristic:

- ``nearest_frontier``: BFS through visited nodes to the closest id that
  is not yet visited.
- ``clustered_nearest_frontier``: the same question asked over alias
  clusters, so A/A' splits do not hide a route.
- ``escape_direction``: a local score over the links at hand when no
  route is known.

``select_closest_frontier`` picks a teleport target when routing fails.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from street_explorer.memory.cluster_index import PanoClusterIndex
from street_explorer.memory.coverage_graph import CoverageGraph, FrontierEntry
from street_explorer.schemas.nodes import LatLng, NodeLink
from street_explorer.utils.config import DEFAULT_ESCAPE_LOOKAHEAD_DEPTH
from street_explorer.utils.geo import haversine_many

logger = logging.getLogger(__name__)

# Escape scoring weights
VISIT_PENALTY: int = 10
RECENT_PENALTY: int = 2
FRONTIER_BONUS: int = 100
REACHABLE_FRONTIER_BONUS: int = 5


@dataclass(frozen=True)
class FrontierPath:
    """Shortest route from a node to the nearest frontier id."""

    target_node_id: str
    next_hop: str
    path_length: int
    full_path: tuple[str, ...]


@dataclass(frozen=True)
class ClusterHop:
    """Next move proposed by the cluster router.

    ``path_length`` is the estimated number of moves to the boundary;
    ``reposition`` is True when the move stays inside the current cluster.
    """

    next_hop: NodeLink
    path_length: int
    reposition: bool


@dataclass(frozen=True)
class FrontierSelection:
    """Teleport target chosen by anchor proximity."""

    entry: FrontierEntry
    anchor_position: LatLng
    distance_m: float


class Pathfinder:
    """Graph search over a ``CoverageGraph``.

    Holds no state of its own; every call reads the graph as it is now.
    """

    def __init__(self, coverage: CoverageGraph) -> None:
        self.coverage = coverage

    def nearest_frontier(self, start_id: str) -> FrontierPath | None:
        """Find the shortest path to any unvisited id.

        Traversal only passes through visited nodes, so every hop before
        the target is visited at call time. Neighbours are expanded in
        stored order; among equally short paths the first found wins.

        Args:
            start_id: Node to search from.

        Returns:
            The route, or None if no frontier is reachable.
        """
        coverage = self.coverage
        seen = {start_id}
        queue: deque[tuple[str, tuple[str, ...]]] = deque([(start_id, ())])

        while queue:
            node_id, path = queue.popleft()
            for next_id in coverage.neighbors(node_id):
                if next_id in seen:
                    continue
                seen.add(next_id)
                new_path = (*path, next_id)

                if not coverage.has_visited(next_id):
                    logger.debug("Found path to frontier: %d steps to %s",
                                 len(new_path), next_id)
                    return FrontierPath(
                        target_node_id=next_id,
                        next_hop=new_path[0],
                        path_length=len(new_path),
                        full_path=new_path,
                    )
                queue.append((next_id, new_path))

        logger.debug("No path to frontier from %s", start_id)
        return None

    def count_reachable_frontier(self, start_id: str, max_depth: int) -> int:
        """Count frontier ids within ``max_depth`` hops through visited nodes."""
        coverage = self.coverage
        seen = {start_id}
        queue: deque[tuple[str, int]] = deque([(start_id, 0)])
        count = 0

        while queue:
            node_id, depth = queue.popleft()
            if depth >= max_depth:
                continue
            for next_id in coverage.neighbors(node_id):
                if next_id in seen:
                    continue
                seen.add(next_id)
                if coverage.is_frontier(next_id):
                    count += 1
                if coverage.has_visited(next_id):
                    queue.append((next_id, depth + 1))

        return count

    def escape_score(
        self,
        link: NodeLink,
        depth: int = DEFAULT_ESCAPE_LOOKAHEAD_DEPTH,
    ) -> int:
        """Heuristic value of following ``link`` when no route is known.

        Visits and recency cost points, frontier targets and frontier ids a
        few hops beyond the link earn them. The most recent history entry
        carries the largest recency penalty.
        """
        coverage = self.coverage
        target = link.target_id
        score = -VISIT_PENALTY * coverage.visit_count(target)

        history = coverage.recent_history
        if target in history:
            last_index = len(history) - 1 - history[::-1].index(target)
            from_end = len(history) - 1 - last_index
            score -= RECENT_PENALTY * (coverage.history_size - from_end)

        if coverage.is_frontier(target):
            score += FRONTIER_BONUS
        score += REACHABLE_FRONTIER_BONUS * self.count_reachable_frontier(target, depth)
        return score

    def escape_direction(
        self,
        current_id: str,
        links: Sequence[NodeLink],
        depth: int = DEFAULT_ESCAPE_LOOKAHEAD_DEPTH,
    ) -> NodeLink | None:
        """Pick the highest-scoring link, or None if none scores above -1.

        Ties keep the first link seen.
        """
        best: NodeLink | None = None
        best_score = -1
        for link in links:
            score = self.escape_score(link, depth)
            if score > best_score:
                best = link
                best_score = score

        if best is not None:
            logger.debug("Escape from %s via %s (score %d)", current_id, best.target_id, best_score)
        return best

    def clustered_nearest_frontier(
        self,
        current_id: str,
        current_links: Sequence[NodeLink],
        cluster_index: PanoClusterIndex,
    ) -> ClusterHop | None:
        """Route over alias clusters instead of individual ids.

        Two clusters are adjacent when a visited-to-visited edge crosses
        between them; a cluster borders the frontier when any member has an
        unvisited neighbour. Each current link is valued as:

        - leaving the cluster: ``1 + d(link cluster)``
        - staying inside: ``2 + d(best exit cluster of the link target)``

        where ``d`` is the BFS distance in clusters to a bordering cluster.
        A link is accepted only if its value is strictly below the current
        cluster's distance, so two members of one cluster can never send the
        agent back and forth.
        Among accepted links the lowest value wins, ties going to the less
        visited target.

        Returns:
            The chosen hop, or None when nothing makes progress.
        """
        coverage = self.coverage
        if not coverage.has_frontier():
            return None
        current_cluster = cluster_index.cluster_of(current_id)
        if current_cluster is None:
            return None

        borders: dict[str, bool] = {}
        adjacency: dict[str, set[str]] = {}
        distances: dict[str, float] = {}

        def borders_frontier(cluster_id: str) -> bool:
            if cluster_id not in borders:
                borders[cluster_id] = any(
                    not coverage.has_visited(nbr)
                    for member in cluster_index.members_of(cluster_id)
                    for nbr in coverage.neighbors(member)
                )
            return borders[cluster_id]

        def cluster_neighbors(cluster_id: str) -> set[str]:
            if cluster_id not in adjacency:
                out: set[str] = set()
                for member in cluster_index.members_of(cluster_id):
                    for nbr in coverage.neighbors(member):
                        if not coverage.has_visited(nbr):
                            continue
                        nbr_cluster = cluster_index.cluster_of(nbr)
                        if nbr_cluster is not None and nbr_cluster != cluster_id:
                            out.add(nbr_cluster)
                adjacency[cluster_id] = out
            return adjacency[cluster_id]

        def dist_to_boundary(start: str) -> float:
            if start in distances:
                return distances[start]
            seen = {start}
            queue: deque[tuple[str, int]] = deque([(start, 0)])
            result = math.inf
            while queue:
                cluster_id, d = queue.popleft()
                if borders_frontier(cluster_id):
                    result = d
                    break
                for nxt in sorted(cluster_neighbors(cluster_id)):
                    if nxt not in seen:
                        seen.add(nxt)
                        queue.append((nxt, d + 1))
            distances[start] = result
            return result

        base = dist_to_boundary(current_cluster)
        if math.isinf(base):
            logger.debug("No reachable boundary from cluster %s (frontier=%d, visited=%d)",
                         current_cluster, coverage.frontier_size(), len(coverage))
            return None

        best: ClusterHop | None = None
        for link in current_links:
            link_cluster = cluster_index.cluster_of(link.target_id)
            if link_cluster is None:
                continue

            if link_cluster != current_cluster:
                downstream = dist_to_boundary(link_cluster)
                value = 1 + downstream
                reposition = False
            else:
                downstream = math.inf
                for nbr in coverage.neighbors(link.target_id):
                    if not coverage.has_visited(nbr):
                        continue
                    nbr_cluster = cluster_index.cluster_of(nbr)
                    if nbr_cluster is None or nbr_cluster == current_cluster:
                        continue
                    downstream = min(downstream, dist_to_boundary(nbr_cluster))
                value = 2 + downstream
                reposition = True

            if math.isinf(value) or value >= base:
                continue
            if (
                best is None
                or value < best.path_length
                or (
                    value == best.path_length
                    and coverage.visit_count(link.target_id)
                    < coverage.visit_count(best.next_hop.target_id)
                )
            ):
                best = ClusterHop(next_hop=link, path_length=int(value), reposition=reposition)

        if best is None:
            logger.debug("Cluster router: no improving hop from %s (cluster %s, %d links)",
                         current_id, current_cluster, len(current_links))
        elif best.reposition:
            logger.debug("Cluster router: reposition within %s via %s, est %d steps",
                         current_cluster, best.next_hop.target_id, best.path_length)
        else:
            logger.debug("Cluster router: %s -> %s via %s, est %d steps",
                         current_cluster, cluster_index.cluster_of(best.next_hop.target_id),
                         best.next_hop.target_id, best.path_length)
        return best


def select_closest_frontier(
    entries: Sequence[FrontierEntry],
    coverage: CoverageGraph,
    current_position: LatLng,
) -> FrontierSelection | None:
    """Choose the frontier entry whose discovering node is nearest.

    Entries whose anchor is not a visited node are skipped. Ties go to the
    earliest entry.

    Args:
        entries: Frontier entries, usually in discovery order.
        coverage: Graph holding the anchor positions.
        current_position: Where the agent is now.

    Returns:
        The selection, or None if no entry has a usable anchor.
    """
    usable: list[FrontierEntry] = []
    lats: list[float] = []
    lngs: list[float] = []
    for entry in entries:
        anchor = coverage.position_of(entry.discovered_from)
        if anchor is None or not (math.isfinite(anchor.lat) and math.isfinite(anchor.lng)):
            continue
        usable.append(entry)
        lats.append(anchor.lat)
        lngs.append(anchor.lng)

    if not usable:
        return None

    distances = haversine_many(current_position, lats, lngs)
    best = int(np.argmin(distances))
    return FrontierSelection(
        entry=usable[best],
        anchor_position=LatLng(lat=lats[best], lng=lngs[best]),
        distance_m=float(distances[best]),
    )
