"""Coverage graph: where the agent has been and what is still unknown.

The graph is an id-indexed arena. Each visited node keeps a plain record
with an insertion-ordered set of neighbour ids; nodes never hold
references to each other. Unvisited ids referenced by a visited node live
in the frontier. An id is never in both.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

from street_explorer.schemas.nodes import LatLng, NodeLink
from street_explorer.schemas.results import CoverageStats
from street_explorer.schemas.snapshot import GraphSnapshot, SerializedNode
from street_explorer.utils.config import (
    DEFAULT_CELL_SIZE_M,
    DEFAULT_HISTORY_SIZE,
    DEFAULT_LOOP_WINDOW_NODES,
    DEFAULT_REPEATING_LOOP_MAX_PERIOD,
    DEFAULT_REPEATING_LOOP_MIN_PERIOD,
    DEFAULT_REPEATING_LOOP_MIN_REPEATS,
)
from street_explorer.utils.geo import INVALID_CELL, cell_key, haversine_m

logger = logging.getLogger(__name__)

# Serialized coordinates keep ~11cm of precision
SNAPSHOT_COORD_DECIMALS: int = 6


@dataclass
class NodeRecord:
    """A visited node. Neighbours are ids only, kept in discovery order."""

    lat: float
    lng: float
    timestamp: float
    neighbors: dict[str, None] = field(default_factory=dict)

    @property
    def position(self) -> LatLng:
        return LatLng(lat=self.lat, lng=self.lng)


@dataclass(frozen=True)
class FrontierEntry:
    """A known-but-unvisited node and the visited node that first saw it."""

    node_id: str
    discovered_from: str
    heading: float | None = None
    description: str | None = None


@dataclass(frozen=True)
class VisitResult:
    """Flags returned by ``CoverageGraph.record_visit``."""

    is_new_node: bool
    is_new_cell: bool


@dataclass(frozen=True)
class FrontierNode:
    """A frontier id found by bounded BFS, with its hop distance."""

    node_id: str
    hops: int


class CoverageGraph:
    """Visited nodes, the frontier, visit counters and recent history.

    All operations are total over valid input. Positions that cannot be
    quantised map to a sentinel cell and never count as a new cell.
    """

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        cell_size_m: float = DEFAULT_CELL_SIZE_M,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize an empty graph.

        Args:
            history_size: Length of the recent-history FIFO.
            cell_size_m: Edge length of a spatial cell in metres.
            clock: Source of visit timestamps (unix seconds).
        """
        self.history_size = history_size
        self.cell_size_m = cell_size_m
        self._clock = clock

        self._nodes: dict[str, NodeRecord] = {}
        self._frontier: dict[str, FrontierEntry] = {}
        self._visit_counts: dict[str, int] = {}
        self._recent: deque[str] = deque(maxlen=history_size)
        self._cells: set[str] = set()
        self._distance_m = 0.0
        self._path_length = 0
        self._last_position: LatLng | None = None

    # =========================================================================
    # Mutation
    # =========================================================================

    def record_visit(
        self,
        node_id: str,
        position: LatLng,
        links: Iterable[NodeLink] = (),
    ) -> VisitResult:
        """Mark a node visited and fold its outgoing links into the graph.

        Safe to call on a revisit. Edges to already-visited neighbours are
        mirrored so the graph can be searched as undirected. Unvisited link
        targets join the frontier; an existing frontier entry keeps its
        original discoverer.

        Args:
            node_id: The node that just became current.
            position: Position reported for the node.
            links: Outgoing links reported for the node.

        Returns:
            Whether this was the first visit to the node and to its cell.
        """
        now = self._clock()
        is_new_node = node_id not in self._nodes

        self._path_length += 1
        self._visit_counts[node_id] = self._visit_counts.get(node_id, 0) + 1
        self._recent.append(node_id)
        self._frontier.pop(node_id, None)

        node = self._nodes.get(node_id)
        if node is None:
            node = NodeRecord(lat=position.lat, lng=position.lng, timestamp=now)
            self._nodes[node_id] = node
        else:
            node.lat = position.lat
            node.lng = position.lng
            node.timestamp = now

        for link in links:
            target = link.target_id
            if target == node_id:
                continue
            node.neighbors[target] = None

            neighbor = self._nodes.get(target)
            if neighbor is not None:
                neighbor.neighbors[node_id] = None
            elif target not in self._frontier:
                self._frontier[target] = FrontierEntry(
                    node_id=target,
                    discovered_from=node_id,
                    heading=link.heading,
                    description=link.description,
                )

        key = cell_key(position, self.cell_size_m)
        is_new_cell = key != INVALID_CELL and key not in self._cells
        if is_new_cell:
            self._cells.add(key)

        if self._last_position is not None:
            self._distance_m += haversine_m(self._last_position, position)
        self._last_position = position

        return VisitResult(is_new_node=is_new_node, is_new_cell=is_new_cell)

    def ensure_edge(self, from_id: str, to_id: str) -> None:
        """Record a traversal from a visited node, even if no link reported it.

        Used when the source resolved a different id than requested and for
        the synthetic edge out of a dead end. Ignored if ``from_id`` is not
        visited.
        """
        if from_id == to_id:
            return
        source = self._nodes.get(from_id)
        if source is None:
            return
        source.neighbors[to_id] = None

        target = self._nodes.get(to_id)
        if target is not None:
            target.neighbors[from_id] = None
        elif to_id not in self._frontier:
            self._frontier[to_id] = FrontierEntry(node_id=to_id, discovered_from=from_id)

    def reset(self) -> None:
        """Clear nodes, frontier, counters, history and cells together."""
        self._nodes.clear()
        self._frontier.clear()
        self._visit_counts.clear()
        self._recent.clear()
        self._cells.clear()
        self._distance_m = 0.0
        self._path_length = 0
        self._last_position = None

    # =========================================================================
    # Queries
    # =========================================================================

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def has_visited(self, node_id: str) -> bool:
        return node_id in self._nodes

    def visit_count(self, node_id: str) -> int:
        return self._visit_counts.get(node_id, 0)

    def is_frontier(self, node_id: str) -> bool:
        return node_id in self._frontier

    def frontier_size(self) -> int:
        return len(self._frontier)

    def has_frontier(self) -> bool:
        return bool(self._frontier)

    def frontier_entries(self) -> list[FrontierEntry]:
        """Frontier entries in discovery order."""
        return list(self._frontier.values())

    def frontier_entry(self, node_id: str) -> FrontierEntry | None:
        return self._frontier.get(node_id)

    def neighbors(self, node_id: str) -> list[str]:
        """Neighbour ids of a visited node, empty for anything else."""
        node = self._nodes.get(node_id)
        return list(node.neighbors) if node is not None else []

    def position_of(self, node_id: str) -> LatLng | None:
        node = self._nodes.get(node_id)
        return node.position if node is not None else None

    def positions(self) -> Iterator[tuple[str, LatLng]]:
        """Visited node ids with their positions, in first-visit order."""
        for node_id, node in self._nodes.items():
            yield node_id, node.position

    def node_ids(self) -> list[str]:
        return list(self._nodes)

    @property
    def recent_history(self) -> list[str]:
        """Recent history, oldest first."""
        return list(self._recent)

    @property
    def last_position(self) -> LatLng | None:
        return self._last_position

    @property
    def cells_visited(self) -> int:
        return len(self._cells)

    def stats(self) -> CoverageStats:
        return CoverageStats(
            locations_visited=len(self._nodes),
            distance_traveled_m=round(self._distance_m),
            path_length=self._path_length,
            frontier_size=len(self._frontier),
            cells_visited=len(self._cells),
        )

    # =========================================================================
    # Loop signatures
    # =========================================================================

    def is_alternating_loop(
        self,
        candidate_id: str,
        min_length: int = DEFAULT_LOOP_WINDOW_NODES,
    ) -> bool:
        """Would appending ``candidate_id`` complete an A/B alternation?

        Counts the strictly alternating tail of history plus the candidate
        and compares it with ``min_length``.
        """
        seq = [*self._recent, candidate_id]
        if len(seq) < min_length or seq[-1] == seq[-2]:
            return False

        run = 2
        i = len(seq) - 3
        while i >= 0 and seq[i] == seq[i + 2]:
            run += 1
            i -= 1
        return run >= min_length

    def would_extend_repeating_cycle(
        self,
        candidate_id: str,
        min_period: int = DEFAULT_REPEATING_LOOP_MIN_PERIOD,
        max_period: int = DEFAULT_REPEATING_LOOP_MAX_PERIOD,
        min_repeats: int = DEFAULT_REPEATING_LOOP_MIN_REPEATS,
    ) -> bool:
        """Would appending ``candidate_id`` complete a periodic tail?

        Checks periods from ``min_period`` to ``max_period``; the trailing
        ``period * min_repeats`` entries must repeat exactly. A unit made of
        a single id is not a cycle.
        """
        seq = [*self._recent, candidate_id]
        for period in range(max(min_period, 1), max_period + 1):
            window = period * min_repeats
            if window > len(seq):
                break
            tail = seq[-window:]
            unit = tail[:period]
            if len(set(unit)) < 2:
                continue
            if all(tail[i] == unit[i % period] for i in range(window)):
                return True
        return False

    # =========================================================================
    # Frontier enumeration
    # =========================================================================

    def find_frontier_nodes(self, start_id: str, max_nodes: int = 50) -> list[FrontierNode]:
        """List frontier ids reachable through visited nodes, nearest first.

        Args:
            start_id: Node to search from.
            max_nodes: Stop once this many frontier ids are found.

        Returns:
            Frontier ids with their hop distance from ``start_id``.
        """
        found: list[FrontierNode] = []
        seen: set[str] = set()
        queue: deque[tuple[str, int]] = deque([(start_id, 0)])

        while queue and len(found) < max_nodes:
            node_id, hops = queue.popleft()
            if node_id in seen:
                continue
            seen.add(node_id)

            node = self._nodes.get(node_id)
            if node is None:
                found.append(FrontierNode(node_id=node_id, hops=hops))
                continue

            for neighbor_id in node.neighbors:
                if neighbor_id in seen:
                    continue
                if neighbor_id not in self._nodes:
                    seen.add(neighbor_id)
                    found.append(FrontierNode(node_id=neighbor_id, hops=hops + 1))
                    if len(found) >= max_nodes:
                        break
                else:
                    queue.append((neighbor_id, hops + 1))

        return found

    # =========================================================================
    # Persistence
    # =========================================================================

    def serialize(self) -> GraphSnapshot:
        """Snapshot the graph with coordinates rounded to ~11cm."""
        nodes = {
            node_id: SerializedNode(
                lat=round(node.lat, SNAPSHOT_COORD_DECIMALS),
                lng=round(node.lng, SNAPSHOT_COORD_DECIMALS),
                neighbors=list(node.neighbors),
                timestamp=node.timestamp,
            )
            for node_id, node in self._nodes.items()
        }
        return GraphSnapshot(
            nodes=nodes,
            recent_history=list(self._recent),
            visit_counts=dict(self._visit_counts),
            distance_traveled_m=self._distance_m,
        )

    def restore(self, snapshot: GraphSnapshot) -> None:
        """Replace the graph with the contents of a snapshot.

        The frontier is rebuilt from neighbour ids missing from the graph;
        headings and descriptions of those entries are not recoverable.
        """
        self.reset()

        for node_id, data in snapshot.nodes.items():
            self._nodes[node_id] = NodeRecord(
                lat=data.lat,
                lng=data.lng,
                timestamp=data.timestamp,
                neighbors=dict.fromkeys(n for n in data.neighbors if n != node_id),
            )
            self._visit_counts[node_id] = max(1, snapshot.visit_counts.get(node_id, 1))
            key = cell_key(LatLng(lat=data.lat, lng=data.lng), self.cell_size_m)
            if key != INVALID_CELL:
                self._cells.add(key)

        for node_id, node in self._nodes.items():
            for neighbor_id in node.neighbors:
                if neighbor_id not in self._nodes and neighbor_id not in self._frontier:
                    self._frontier[neighbor_id] = FrontierEntry(
                        node_id=neighbor_id,
                        discovered_from=node_id,
                    )

        self._recent.extend(snapshot.recent_history[-self.history_size:])
        self._distance_m = snapshot.distance_traveled_m
        self._path_length = sum(self._visit_counts.values())

        if self._nodes:
            latest = max(self._nodes.values(), key=lambda n: n.timestamp)
            self._last_position = latest.position

        logger.info(
            "Restored coverage graph: %d visited, %d frontier, %d cells",
            len(self._nodes), len(self._frontier), len(self._cells),
        )
