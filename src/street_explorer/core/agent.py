"""Exploration step state machine.

``ExplorationAgent.advance_step`` moves the agent by one node. Each call
recomputes its situation from the coverage graph and the links the node
source reports right now; the only state carried between steps is a few
scalars (last heading, steps since a new cell) and the bounded movement
history.

Within one step the order is:

1. Fetch the current node. Zero links means a dead end: project forward
   along the last heading until a node with links turns up.
2. Stale-progress guard: too long without a new spatial cell forces a
   teleport to the frontier.
3. Stuck (current node in recent history, every link visited): route
   to the frontier by BFS, then by clusters, then by the escape heuristic,
   and finally by teleport.
4. Otherwise choose among unvisited links (or all links): one candidate
   is taken mechanically, several go to the vision decider. Loop-risk
   candidates are filtered before deciding.
5. A last loop guard on the chosen link, then settle on it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from street_explorer.core.errors import (
    DeadEndExhaustedError,
    ExplorerError,
    NodeNotFoundError,
    NoNavigableLinksError,
)
from street_explorer.core.interfaces import NodeSource, ObservationCapture, VisionService
from street_explorer.memory.cluster_index import PanoClusterIndex
from street_explorer.memory.coverage_graph import CoverageGraph, VisitResult
from street_explorer.modules.pathfinder import Pathfinder, select_closest_frontier
from street_explorer.modules.vision_decider import VisionDecider
from street_explorer.schemas.decisions import CandidateView, DecisionContext
from street_explorer.schemas.nodes import LatLng, NodeData, NodeLink
from street_explorer.schemas.results import ExplorationMode, MovementRecord, StepRecord
from street_explorer.schemas.snapshot import AgentSnapshot
from street_explorer.utils.config import ExplorerConfig
from street_explorer.utils.geo import project_position

logger = logging.getLogger(__name__)

StepListener = Callable[[StepRecord], None]


@dataclass
class _Choice:
    """A link picked for this step and how it was picked."""

    link: NodeLink
    mode: ExplorationMode
    rationale: str
    observations: list[Any] = field(default_factory=list)
    scene_tag: str | None = None
    fallback_cause: str | None = None
    remaining_path_steps: int | None = None


def _pathfinding_rationale(steps: int) -> str:
    return f"Pathfinding to frontier (remaining {steps} step{'' if steps == 1 else 's'})"


class ExplorationAgent:
    """Single-stream explorer over a ``NodeSource``.

    One step runs at a time: an overlapping ``advance_step`` call returns
    None immediately. Independent agents share nothing.
    """

    def __init__(
        self,
        node_source: NodeSource,
        vision_service: VisionService | None = None,
        capture: ObservationCapture | None = None,
        config: ExplorerConfig | None = None,
        decider: VisionDecider | None = None,
        run_id: str | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            node_source: The graph being explored.
            vision_service: Chooses among several candidates. Required
                unless ``decider`` is given.
            capture: Produces observations for multi-option steps. Without
                one, candidates are offered with no observation.
            config: Tunables; defaults are used when omitted.
            decider: Pre-built decider, overriding ``vision_service``.
            run_id: Identifier for the run; generated when omitted.
        """
        self.config = (config or ExplorerConfig()).validate()
        cfg = self.config

        if decider is None:
            if vision_service is None:
                raise ValueError("ExplorationAgent needs a vision_service or a decider")
            decider = VisionDecider(
                vision_service,
                max_retries=cfg.vision_max_retries,
                max_tokens=cfg.vision_max_tokens,
                max_retry_tokens=cfg.vision_max_retry_tokens,
            )

        self.node_source = node_source
        self.capture = capture
        self.decider = decider
        self.run_id = run_id or uuid.uuid4().hex

        self.coverage = CoverageGraph(history_size=cfg.history_size, cell_size_m=cfg.cell_size_m)
        self.clusters = PanoClusterIndex(cfg.cluster_distance_m)
        self.pathfinder = Pathfinder(self.coverage)

        self.step_index = 0
        self.current_node_id: str | None = None
        self.current_position: LatLng | None = None
        self.last_heading: float | None = None
        self.last_mode: ExplorationMode | None = None
        self.steps_since_new_cell = 0
        self.recent_movements: deque[MovementRecord] = deque(maxlen=cfg.movement_history_size)

        self._in_flight = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._listeners: list[StepListener] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self, start: str | LatLng) -> NodeData:
        """Settle on the start node and record it as the first visit.

        Args:
            start: Start node id, or a position to look one up near.

        Returns:
            The node the agent starts from.
        """
        found = await self.node_source.expand(start)
        node = await self.node_source.settle(found.node_id)

        self.coverage.reset()
        self.clusters.reset()
        self.recent_movements.clear()
        self.step_index = 0
        self.last_heading = None
        self.last_mode = None
        self.steps_since_new_cell = 0

        visit = self._record_arrival(node)
        self.steps_since_new_cell = 0 if visit.is_new_cell else 1
        logger.info("Exploration %s started at %s (%.6f, %.6f), %d links",
                    self.run_id, node.node_id, node.position.lat, node.position.lng,
                    len(node.links))
        return node

    def snapshot(self) -> AgentSnapshot:
        """Capture the graph and the agent scalars for later ``restore``."""
        return AgentSnapshot(
            run_id=self.run_id,
            graph=self.coverage.serialize(),
            step_index=self.step_index,
            current_node_id=self.current_node_id,
            current_position=self.current_position,
            mode=self.last_mode,
            last_heading=self.last_heading,
            steps_since_new_cell=self.steps_since_new_cell,
        )

    def restore(self, snapshot: AgentSnapshot) -> None:
        """Resume from a snapshot: graph, clusters and agent scalars."""
        if self._in_flight:
            raise RuntimeError("Cannot restore while a step is in flight")

        self.coverage.restore(snapshot.graph)
        self.clusters.rebuild_from_graph(self.coverage)
        self.recent_movements.clear()

        self.run_id = snapshot.run_id or self.run_id
        self.step_index = snapshot.step_index
        self.current_node_id = snapshot.current_node_id
        self.current_position = (
            snapshot.current_position
            or (self.coverage.position_of(snapshot.current_node_id)
                if snapshot.current_node_id else None)
            or self.coverage.last_position
        )
        self.last_mode = snapshot.mode
        self.last_heading = snapshot.last_heading
        self.steps_since_new_cell = snapshot.steps_since_new_cell
        logger.info("Restored run %s at step %d, node %s",
                    self.run_id, self.step_index, self.current_node_id)

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, listener: StepListener) -> Callable[[], None]:
        """Register a callback for every step record produced.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, record: StepRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Step listener %r failed on step %d", listener, record.step_index)

    @property
    def is_stepping(self) -> bool:
        return self._in_flight

    async def wait_idle(self) -> None:
        """Wait until no step is in flight."""
        await self._idle.wait()

    # =========================================================================
    # Stepping
    # =========================================================================

    async def advance_step(self) -> StepRecord | None:
        """Move by one node.

        Returns:
            The step record, or None if another step is still in flight.

        Raises:
            RuntimeError: If the agent was never initialized or restored.
            DeadEndExhaustedError: If dead-end recovery found nothing.
            NoNavigableLinksError: If the node has no way out at all.
            Exception: Node-source errors propagate unchanged.
        """
        if self._in_flight:
            logger.warning("Step already executing for run %s; rejecting concurrent call",
                           self.run_id)
            return None
        if self.current_node_id is None:
            raise RuntimeError("Agent is not initialized; call initialize() or restore() first")

        self._in_flight = True
        self._idle.clear()
        try:
            step_index = self.step_index + 1
            logger.debug("=== Starting step %d ===", step_index)
            record = await self._run_step(step_index)

            self.step_index = step_index
            self.last_mode = record.mode
            logger.info("Step %d (%s): %s -> %s | %s", step_index, record.mode.value,
                        record.previous_node_id, record.chosen_node_id, record.rationale)
            self._emit(record)
            return record
        finally:
            self._in_flight = False
            self._idle.set()

    async def _run_step(self, step_index: int) -> StepRecord:
        coverage = self.coverage
        node = await self._fetch_current()
        links = list(node.links)

        if not links:
            if self.last_heading is None:
                if coverage.has_frontier():
                    record = await self._teleport_to_frontier(
                        step_index, "Current node has no links")
                    if record is not None:
                        return record
                raise NoNavigableLinksError(
                    f"Node {node.node_id} has no links and no frontier to jump to")
            node = await self._recover_from_dead_end(step_index, node)
            links = list(node.links)
            if not links:
                raise NoNavigableLinksError(
                    f"Recovered node {node.node_id} has no links")

        logger.debug("At %s (%.6f, %.6f), %d links, frontier=%d",
                     node.node_id, node.position.lat, node.position.lng,
                     len(links), coverage.frontier_size())

        if (self.steps_since_new_cell >= self.config.stale_cell_threshold_steps
                and coverage.has_frontier()):
            logger.warning("Stagnation: %d steps without a new spatial cell; forcing teleport",
                           self.steps_since_new_cell)
            record = await self._teleport_to_frontier(
                step_index,
                f"No new ground for {self.steps_since_new_cell} steps")
            if record is not None:
                return record

        choice: _Choice | None = None
        all_visited = all(coverage.has_visited(link.target_id) for link in links)
        if all_visited and coverage.has_frontier():
            routed = await self._route_when_stuck(step_index, node, links)
            if isinstance(routed, StepRecord):
                return routed
            choice = routed

        if choice is None:
            routed = await self._choose_link(step_index, node, links)
            if isinstance(routed, StepRecord):
                return routed
            choice = routed

        target = choice.link.target_id
        if (coverage.has_visited(target) and coverage.has_frontier()
                and self._would_extend_loop(target)):
            logger.warning("Move to %s would extend a loop tail; forcing teleport", target)
            record = await self._teleport_to_frontier(step_index, f"Move to {target} would repeat a loop")
            if record is not None:
                return record

        return await self._commit_move(step_index, node, choice)

    async def _fetch_current(self) -> NodeData:
        node = await self.node_source.current()
        if node is None:
            node = await self.node_source.expand(self.current_node_id)
        self.current_node_id = node.node_id
        self.current_position = node.position
        return node

    # =========================================================================
    # Selection
    # =========================================================================

    async def _route_when_stuck(
        self,
        step_index: int,
        node: NodeData,
        links: list[NodeLink],
    ) -> _Choice | StepRecord | None:
        """Head for the frontier when every local option is already visited."""
        pathfinder = self.pathfinder
        logger.debug("All links visited at %s; routing to frontier", node.node_id)

        path = pathfinder.nearest_frontier(node.node_id)
        if path is not None:
            link = node.link_to(path.next_hop)
            if link is not None:
                return _Choice(
                    link=link,
                    mode=ExplorationMode.PATHFINDING_TO_FRONTIER,
                    rationale=_pathfinding_rationale(path.path_length),
                    remaining_path_steps=path.path_length,
                )
            logger.info("Graph route suggested unavailable hop %s; trying fallbacks",
                        path.next_hop)

        hop = pathfinder.clustered_nearest_frontier(node.node_id, links, self.clusters)
        if hop is not None:
            rationale = ("Repositioning within cluster toward frontier" if hop.reposition
                         else "Cluster pathfinding: exiting cluster toward frontier")
            return _Choice(
                link=hop.next_hop,
                mode=ExplorationMode.PATHFINDING_TO_FRONTIER,
                rationale=rationale,
                remaining_path_steps=hop.path_length,
            )

        escape = pathfinder.escape_direction(node.node_id, links,
                                             depth=self.config.escape_lookahead_depth)
        if escape is not None:
            return _Choice(
                link=escape,
                mode=ExplorationMode.PATHFINDING_TO_FRONTIER,
                rationale="Escaping local area using heuristic",
            )

        return await self._teleport_to_frontier(step_index, "Frontier unreachable through visited nodes")

    async def _choose_link(
        self,
        step_index: int,
        node: NodeData,
        links: list[NodeLink],
    ) -> _Choice | StepRecord:
        coverage = self.coverage
        unvisited = [link for link in links if not coverage.has_visited(link.target_id)]
        targets = unvisited or links

        candidates = targets
        backtrack = self._immediate_backtrack(node.node_id)
        if backtrack is not None and len(targets) > 1:
            candidates = [link for link in targets if link.target_id != backtrack] or targets

        safe = candidates
        if not unvisited and len(candidates) > 1:
            non_risky = [link for link in candidates if not self._would_extend_loop(link.target_id)]
            if non_risky and len(non_risky) < len(candidates):
                logger.info("Loop-risk filter dropped %d candidate link(s)",
                            len(candidates) - len(non_risky))
                safe = non_risky
            elif not non_risky and coverage.has_frontier():
                logger.warning("Every link continues a recent loop tail; forcing teleport")
                record = await self._teleport_to_frontier(step_index, "Every available link repeats a loop")
                if record is not None:
                    return record
                escape = self.pathfinder.escape_direction(
                    node.node_id, candidates, depth=self.config.escape_lookahead_depth)
                if escape is not None:
                    return _Choice(
                        link=escape,
                        mode=ExplorationMode.PATHFINDING_TO_FRONTIER,
                        rationale="Escaping local area using heuristic",
                    )

        if len(safe) == 1:
            link = safe[0]
            if not unvisited and coverage.has_frontier() and self._would_extend_loop(link.target_id):
                logger.warning("Single-link oscillation toward %s; forcing teleport", link.target_id)
                record = await self._teleport_to_frontier(step_index, f"Only link leads back into a loop via {link.target_id}")
                if record is not None:
                    return record
            return _Choice(
                link=link,
                mode=ExplorationMode.SINGLE_OPTION,
                rationale="Only one available path - proceeding automatically",
            )

        return await self._decide_with_vision(step_index, node, safe)

    async def _decide_with_vision(
        self,
        step_index: int,
        node: NodeData,
        candidates: list[NodeLink],
    ) -> _Choice:
        # One capture at a time
        observations: list[Any] = []
        views: list[CandidateView] = []
        for index, link in enumerate(candidates):
            observation = None
            if self.capture is not None:
                observation = await self.capture.capture(step_index, link.heading)
            observations.append(observation)
            views.append(CandidateView(
                index=index,
                target_id=link.target_id,
                heading=link.heading,
                description=link.description,
                visited=self.coverage.has_visited(link.target_id),
                observation=observation,
            ))

        context = DecisionContext(
            step_index=step_index,
            position=node.position,
            candidates=views,
            recent_history=self.coverage.recent_history,
            recent_movements=list(self.recent_movements),
            coverage_stats=self.coverage.stats(),
        )
        decision = await self.decider.decide(context)
        return _Choice(
            link=candidates[decision.selected_index],
            mode=ExplorationMode.EXPLORING,
            rationale=decision.rationale,
            observations=[o for o in observations if o is not None],
            scene_tag=decision.scene_tag,
            fallback_cause=decision.fallback_cause,
        )

    def _immediate_backtrack(self, node_id: str) -> str | None:
        if not self.recent_movements:
            return None
        last = self.recent_movements[-1]
        return last.from_node_id if last.to_node_id == node_id else None

    def _would_extend_loop(self, node_id: str) -> bool:
        cfg = self.config
        return (
            self.coverage.is_alternating_loop(node_id, cfg.loop_window_nodes)
            or self.coverage.would_extend_repeating_cycle(
                node_id,
                min_period=cfg.repeating_loop_min_period,
                max_period=cfg.repeating_loop_max_period,
                min_repeats=cfg.repeating_loop_min_repeats,
            )
        )

    # =========================================================================
    # Moves
    # =========================================================================

    def _record_arrival(self, node: NodeData) -> VisitResult:
        visit = self.coverage.record_visit(node.node_id, node.position, node.links)
        self.clusters.assign(node.node_id, node.position)
        self.steps_since_new_cell = 0 if visit.is_new_cell else self.steps_since_new_cell + 1
        self.current_node_id = node.node_id
        self.current_position = node.position
        return visit

    def _remember_move(
        self,
        previous: NodeData,
        settled: NodeData,
        heading: float | None,
        step_index: int,
        rationale: str,
    ) -> None:
        self.recent_movements.append(MovementRecord(
            from_node_id=previous.node_id,
            to_node_id=settled.node_id,
            from_position=previous.position,
            to_position=settled.position,
            heading=heading,
            step_index=step_index,
            rationale=rationale,
        ))

    async def _commit_move(self, step_index: int, node: NodeData, choice: _Choice) -> StepRecord:
        requested = choice.link.target_id
        settled = await self.node_source.settle(requested)

        visit = self._record_arrival(settled)
        if settled.node_id != requested:
            logger.info("Requested %s but settled on %s", requested, settled.node_id)
            self.coverage.ensure_edge(node.node_id, settled.node_id)
        self.last_heading = choice.link.heading
        self._remember_move(node, settled, choice.link.heading, step_index, choice.rationale)

        return StepRecord(
            run_id=self.run_id,
            step_index=step_index,
            mode=choice.mode,
            chosen_node_id=settled.node_id,
            requested_node_id=requested if requested != settled.node_id else None,
            previous_node_id=node.node_id,
            heading=choice.link.heading,
            rationale=choice.rationale,
            position=settled.position,
            coverage_stats=self.coverage.stats(),
            is_new_node=visit.is_new_node,
            is_new_cell=visit.is_new_cell,
            observations=choice.observations,
            scene_tag=choice.scene_tag,
            fallback_cause=choice.fallback_cause,
            remaining_path_steps=choice.remaining_path_steps,
        )

    async def _recover_from_dead_end(self, step_index: int, dead_end: NodeData) -> NodeData:
        """Walk forward along the last heading until a node with links appears.

        Records the dead end and the recovered node as visited, adds a
        synthetic edge between them and emits an intermediate record.

        Raises:
            DeadEndExhaustedError: If the distance budget runs out.
        """
        cfg = self.config
        heading = self.last_heading
        step_m = cfg.dead_end_step_m
        max_attempts = int(cfg.max_dead_end_distance_m // step_m)
        logger.warning("Dead end at %s; continuing along heading %.1f",
                       dead_end.node_id, heading)

        point = dead_end.position
        for attempt in range(1, max_attempts + 1):
            point = project_position(point, heading, step_m)
            try:
                found = await self.node_source.expand(point)
            except NodeNotFoundError:
                logger.debug("  no node %.0fm past dead end", attempt * step_m)
                continue
            if not found.links or found.node_id == dead_end.node_id:
                continue

            travelled = attempt * step_m
            settled = await self.node_source.settle(found.node_id)
            if not self.coverage.has_visited(dead_end.node_id):
                self.coverage.record_visit(dead_end.node_id, dead_end.position, [])
            visit = self._record_arrival(settled)
            self.coverage.ensure_edge(dead_end.node_id, settled.node_id)

            rationale = f"Navigating through dead-end ({travelled:.0f}m of sparse coverage)"
            self._remember_move(dead_end, settled, heading, step_index, rationale)
            logger.info("Recovered from dead end at %s after %.0fm (%d links)",
                        settled.node_id, travelled, len(settled.links))

            self._emit(StepRecord(
                run_id=self.run_id,
                step_index=step_index,
                mode=ExplorationMode.DEAD_END_RECOVERY,
                chosen_node_id=settled.node_id,
                previous_node_id=dead_end.node_id,
                heading=heading,
                rationale=rationale,
                position=settled.position,
                coverage_stats=self.coverage.stats(),
                is_new_node=visit.is_new_node,
                is_new_cell=visit.is_new_cell,
            ))
            return settled

        raise DeadEndExhaustedError(dead_end.node_id, max_attempts * step_m)

    async def _teleport_to_frontier(self, step_index: int, reason: str) -> StepRecord | None:
        """Jump straight to the frontier entry with the nearest anchor.

        The one move that does not follow an edge. Returns None when there
        is no frontier or the source cannot settle on the target.
        """
        coverage = self.coverage
        entries = coverage.frontier_entries()
        if not entries:
            logger.warning("Teleport requested but the frontier is empty")
            return None

        selection = None
        if self.current_position is not None:
            selection = select_closest_frontier(entries, coverage, self.current_position)
        if selection is not None:
            target = selection.entry
            logger.info("Teleporting to frontier %s (anchor %s, %.0fm away)",
                        target.node_id, target.discovered_from, selection.distance_m)
        else:
            target = entries[-1]
            logger.warning("No frontier anchor usable; falling back to latest frontier %s",
                           target.node_id)

        previous = NodeData(
            node_id=self.current_node_id,
            position=self.current_position or LatLng(lat=0.0, lng=0.0),
        )
        try:
            settled = await self.node_source.settle(target.node_id)
        except (ExplorerError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Teleport to frontier %s failed: %s", target.node_id, exc)
            return None

        visit = self._record_arrival(settled)
        self.steps_since_new_cell = 0
        self.last_heading = None

        rationale = f"{reason}; teleporting to frontier {target.node_id}"
        self._remember_move(previous, settled, None, step_index, rationale)

        return StepRecord(
            run_id=self.run_id,
            step_index=step_index,
            mode=ExplorationMode.TELEPORT_TO_FRONTIER,
            chosen_node_id=settled.node_id,
            requested_node_id=target.node_id if target.node_id != settled.node_id else None,
            previous_node_id=previous.node_id,
            heading=None,
            rationale=rationale,
            position=settled.position,
            coverage_stats=coverage.stats(),
            is_new_node=visit.is_new_node,
            is_new_cell=visit.is_new_cell,
        )
