"""Tests for frontier routing."""

from __future__ import annotations

import pytest

from street_explorer.memory import CoverageGraph, FrontierEntry, PanoClusterIndex
from street_explorer.modules.pathfinder import (
    FRONTIER_BONUS,
    Pathfinder,
    select_closest_frontier,
)
from street_explorer.schemas import LatLng, NodeLink
from street_explorer.utils.geo import METERS_PER_DEGREE


def _pos(north_m: float = 0.0) -> LatLng:
    return LatLng(lat=north_m / METERS_PER_DEGREE, lng=0.0)


def _links(*targets: str) -> list[NodeLink]:
    return [NodeLink(target_id=t) for t in targets]


@pytest.fixture
def chain():
    """A - B - C visited, D unvisited beyond C."""
    graph = CoverageGraph()
    graph.record_visit("A", _pos(0), _links("B"))
    graph.record_visit("B", _pos(20), _links("A", "C"))
    graph.record_visit("C", _pos(40), _links("B", "D"))
    graph.record_visit("B", _pos(20), _links("A", "C"))
    graph.record_visit("A", _pos(0), _links("B"))
    return graph


@pytest.fixture
def aliased():
    """A1/A2 alias one spot; B and C lead north to the frontier F.

    Clusters: {A1, A2}, {B}, {C}; only C borders the frontier.
    """
    graph = CoverageGraph()
    graph.record_visit("A1", _pos(0), _links("A2"))
    graph.record_visit("A2", _pos(1), _links("A1", "B"))
    graph.record_visit("B", _pos(20), _links("A2", "C"))
    graph.record_visit("C", _pos(40), _links("B", "F"))

    clusters = PanoClusterIndex(5.0)
    clusters.rebuild_from_graph(graph)
    return graph, clusters


# =============================================================================
# Nearest Frontier
# =============================================================================

class TestNearestFrontier:
    """Tests for BFS routing."""

    def test_path_through_visited_nodes(self, chain):
        path = Pathfinder(chain).nearest_frontier("A")

        assert path is not None
        assert path.target_node_id == "D"
        assert path.next_hop == "B"
        assert path.path_length == 3
        assert path.full_path == ("B", "C", "D")

    def test_adjacent_frontier(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(), _links("B", "C"))

        path = Pathfinder(graph).nearest_frontier("A")
        assert path.target_node_id == "B"
        assert path.path_length == 1

    def test_no_frontier(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(), _links("B"))
        graph.record_visit("B", _pos(20), _links("A"))

        assert Pathfinder(graph).nearest_frontier("A") is None

    def test_every_hop_but_the_last_is_visited(self, chain):
        path = Pathfinder(chain).nearest_frontier("A")
        assert all(chain.has_visited(n) for n in path.full_path[:-1])
        assert not chain.has_visited(path.full_path[-1])

    def test_count_reachable_frontier(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(0), _links("B", "F1"))
        graph.record_visit("B", _pos(20), _links("A", "F2", "C"))
        graph.record_visit("C", _pos(40), _links("B", "F3"))
        pathfinder = Pathfinder(graph)

        assert pathfinder.count_reachable_frontier("A", 1) == 1
        assert pathfinder.count_reachable_frontier("A", 2) == 2
        assert pathfinder.count_reachable_frontier("A", 3) == 3
        assert pathfinder.count_reachable_frontier("A", 0) == 0


# =============================================================================
# Escape Heuristic
# =============================================================================

class TestEscape:
    """Tests for the escape score and direction."""

    def test_recent_entries_cost_more(self):
        graph = CoverageGraph(history_size=10)
        graph.record_visit("X", _pos(0))
        graph.record_visit("Y", _pos(20))
        pathfinder = Pathfinder(graph)

        assert pathfinder.escape_score(NodeLink(target_id="X")) == -10 - 2 * 9
        assert pathfinder.escape_score(NodeLink(target_id="Y")) == -10 - 2 * 10

    def test_frontier_target_gets_bonus(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(), _links("F"))
        pathfinder = Pathfinder(graph)

        assert pathfinder.escape_score(NodeLink(target_id="F"), depth=0) == FRONTIER_BONUS

    def test_prefers_frontier_link(self):
        graph = CoverageGraph()
        graph.record_visit("V", _pos(20), _links("A"))
        graph.record_visit("A", _pos(), _links("V", "F"))

        best = Pathfinder(graph).escape_direction("A", _links("V", "F"))
        assert best.target_id == "F"

    def test_reachable_frontier_lifts_visited_link(self):
        """A visited link with frontier beyond it beats a visited dead branch."""
        graph = CoverageGraph(history_size=2)
        graph.record_visit("L", _pos(-20), _links("H"))
        graph.record_visit("R", _pos(20), _links("H", "F1", "F2", "F3", "F4", "F5"))
        graph.record_visit("H", _pos(0), _links("L", "R"))
        graph.record_visit("X", _pos(500))
        graph.record_visit("Y", _pos(520))

        best = Pathfinder(graph).escape_direction("H", _links("L", "R"), depth=1)
        assert best.target_id == "R"

    def test_ties_keep_first(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(), _links("F1", "F2"))

        best = Pathfinder(graph).escape_direction("A", _links("F1", "F2"), depth=0)
        assert best.target_id == "F1"

    def test_none_when_every_link_scores_low(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(), _links("B"))
        graph.record_visit("B", _pos(20), _links("A"))

        assert Pathfinder(graph).escape_direction("A", _links("B")) is None

    def test_no_links(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos())
        assert Pathfinder(graph).escape_direction("A", []) is None


# =============================================================================
# Cluster Routing
# =============================================================================

class TestClusteredNearestFrontier:
    """Tests for routing over alias clusters."""

    def test_reposition_that_does_not_beat_base_is_rejected(self, aliased):
        graph, clusters = aliased
        assert Pathfinder(graph).clustered_nearest_frontier("A1", _links("A2"), clusters) is None

    def test_exit_through_fresh_link(self, aliased):
        graph, clusters = aliased
        hop = Pathfinder(graph).clustered_nearest_frontier("A1", _links("A2", "C"), clusters)

        assert hop.next_hop.target_id == "C"
        assert hop.reposition is False
        assert hop.path_length == 1

    def test_exit_no_closer_than_base_is_rejected(self, aliased):
        graph, clusters = aliased
        assert Pathfinder(graph).clustered_nearest_frontier("B", _links("A2", "C"), clusters) is None

    def test_alias_pair_does_not_bounce(self):
        """X/Y alias one spot; Z1/Z2 alias another that borders F."""
        graph = CoverageGraph()
        graph.record_visit("X", _pos(0), _links("Y"))
        graph.record_visit("Y", _pos(1), _links("X"))
        graph.record_visit("Z1", _pos(30), _links("Y", "F"))
        graph.record_visit("Z2", _pos(31), _links("X", "Z1"))
        clusters = PanoClusterIndex(5.0)
        clusters.rebuild_from_graph(graph)
        pathfinder = Pathfinder(graph)

        assert clusters.cluster_of("X") == clusters.cluster_of("Y")
        assert clusters.cluster_of("Z1") == clusters.cluster_of("Z2")
        assert pathfinder.clustered_nearest_frontier("X", _links("Y"), clusters) is None
        assert pathfinder.clustered_nearest_frontier("Y", _links("X"), clusters) is None

    def test_moves_away_from_frontier_are_rejected(self, aliased):
        graph, clusters = aliased
        assert Pathfinder(graph).clustered_nearest_frontier("B", _links("A2"), clusters) is None

    def test_requires_frontier(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(), _links("B"))
        graph.record_visit("B", _pos(20), _links("A"))
        clusters = PanoClusterIndex(5.0)
        clusters.rebuild_from_graph(graph)

        assert Pathfinder(graph).clustered_nearest_frontier("A", _links("B"), clusters) is None

    def test_unclustered_current_node(self, aliased):
        graph, _ = aliased
        assert Pathfinder(graph).clustered_nearest_frontier(
            "A1", _links("A2"), PanoClusterIndex(5.0)) is None

    def test_unreachable_boundary(self):
        graph = CoverageGraph()
        graph.record_visit("A", _pos(0), _links("B"))
        graph.record_visit("B", _pos(20), _links("A"))
        graph.record_visit("Z", _pos(900), _links("F"))
        clusters = PanoClusterIndex(5.0)
        clusters.rebuild_from_graph(graph)

        assert Pathfinder(graph).clustered_nearest_frontier("A", _links("B"), clusters) is None


# =============================================================================
# Teleport Target Selection
# =============================================================================

class TestSelectClosestFrontier:
    """Tests for picking a teleport target by anchor distance."""

    @pytest.fixture
    def anchored(self):
        graph = CoverageGraph()
        graph.record_visit("V1", LatLng(lat=40.7150, lng=-73.9950), _links("F1"))
        graph.record_visit("V2", LatLng(lat=40.7099, lng=-73.9901), _links("F2"))
        graph.record_visit("V3", LatLng(lat=40.7000, lng=-73.9800), _links("F3"))
        return graph

    def test_nearest_anchor_wins(self, anchored):
        selection = select_closest_frontier(
            anchored.frontier_entries(), anchored, LatLng(lat=40.7098, lng=-73.9902))

        assert selection.entry.node_id == "F2"
        assert selection.anchor_position == LatLng(lat=40.7099, lng=-73.9901)
        assert selection.distance_m == pytest.approx(13.8, abs=0.5)

    def test_unvisited_anchor_is_skipped(self, anchored):
        entries = [
            FrontierEntry(node_id="Q", discovered_from="nowhere"),
            *anchored.frontier_entries(),
        ]
        selection = select_closest_frontier(entries, anchored, LatLng(lat=40.7000, lng=-73.9800))
        assert selection.entry.node_id == "F3"

    def test_ties_go_to_earliest(self):
        graph = CoverageGraph()
        graph.record_visit("V", _pos(), _links("F1", "F2"))

        selection = select_closest_frontier(graph.frontier_entries(), graph, _pos(10))
        assert selection.entry.node_id == "F1"

    def test_nothing_usable(self, anchored):
        assert select_closest_frontier([], anchored, _pos()) is None
        orphan = [FrontierEntry(node_id="Q", discovered_from="nowhere")]
        assert select_closest_frontier(orphan, anchored, _pos()) is None
