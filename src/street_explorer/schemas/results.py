"""Step records, coverage statistics and movement history."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from street_explorer.schemas.nodes import LatLng
from street_explorer.utils.config import LOG_VERSION


class ExplorationMode(str, Enum):
    """How the move of a step was chosen.

    Informational only: the mode is recomputed every step and travels with
    the step record rather than living on the agent.
    """

    EXPLORING = "exploring"
    PATHFINDING_TO_FRONTIER = "pathfinding_to_frontier"
    SINGLE_OPTION = "single_option"
    DEAD_END_RECOVERY = "dead_end_recovery"
    TELEPORT_TO_FRONTIER = "teleport_to_frontier"

    @property
    def broadcast_label(self) -> str:
        """Coarse label used by observers ("exploration" costs vision calls)."""
        if self is ExplorationMode.EXPLORING:
            return "exploration"
        if self is ExplorationMode.DEAD_END_RECOVERY:
            return "dead-end-recovery"
        return "pathfinding"


class CoverageStats(BaseModel):
    """Snapshot of the coverage graph's counters."""

    locations_visited: int = Field(default=0, ge=0, description="Distinct visited nodes")
    distance_traveled_m: int = Field(
        default=0,
        ge=0,
        description="Straight-line distance travelled, rounded to metres",
    )
    path_length: int = Field(default=0, ge=0, description="Number of recorded visits")
    frontier_size: int = Field(default=0, ge=0, description="Known unvisited nodes")
    cells_visited: int = Field(default=0, ge=0, description="Distinct spatial cells")

    model_config = {"frozen": True}


class MovementRecord(BaseModel):
    """One committed move, kept as context for later decisions."""

    from_node_id: str = Field(..., description="Node the move started from")
    to_node_id: str = Field(..., description="Node the move settled on")
    from_position: LatLng = Field(..., description="Start position")
    to_position: LatLng = Field(..., description="Settled position")
    heading: float | None = Field(
        default=None,
        description="Heading followed, None for teleports",
    )
    step_index: int = Field(..., ge=0, description="Step that made the move")
    rationale: str = Field(default="", description="Why the move was made")

    model_config = {"frozen": True}


class StepRecord(BaseModel):
    """Result of one ``advance_step`` call - the unit handed to observers.

    This is the single source of truth for run-log records.
    """

    log_version: str = Field(default=LOG_VERSION, description="Version of the log schema")
    run_id: str = Field(..., description="Identifier for this run")
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When this step completed",
    )
    step_index: int = Field(..., ge=0, description="Step number in the run")
    mode: ExplorationMode = Field(..., description="How the move was chosen")

    # Movement
    chosen_node_id: str = Field(..., description="Node the agent settled on")
    requested_node_id: str | None = Field(
        default=None,
        description="Node the agent asked for, when it differs from the settled one",
    )
    previous_node_id: str | None = Field(default=None, description="Node before the move")
    heading: float | None = Field(
        default=None,
        description="Heading followed, None for teleports",
    )
    rationale: str = Field(default="", description="Short explanation of the move")
    position: LatLng = Field(..., description="Settled position")

    # Coverage
    coverage_stats: CoverageStats = Field(
        default_factory=CoverageStats,
        description="Coverage statistics after the move",
    )
    is_new_node: bool = Field(default=False, description="First-ever visit to the node")
    is_new_cell: bool = Field(default=False, description="First-ever visit to the cell")

    # Decision detail
    observations: list[Any] = Field(
        default_factory=list,
        description="Observation handles captured for multi-option steps",
    )
    scene_tag: str | None = Field(default=None, description="Scene label from the decider")
    fallback_cause: str | None = Field(
        default=None,
        description="Set when the vision decision fell back locally",
    )
    remaining_path_steps: int | None = Field(
        default=None,
        description="Hops left to the frontier when pathfinding",
    )

    model_config = {"frozen": True}  # StepRecords are immutable records

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to a dictionary suitable for JSONL logging."""
        result: dict[str, Any] = {
            "log_version": self.log_version,
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
            "step_index": self.step_index,
            "mode": self.mode.value,
            "broadcast_mode": self.mode.broadcast_label,
            "chosen_node_id": self.chosen_node_id,
            "previous_node_id": self.previous_node_id,
            "heading": self.heading,
            "rationale": self.rationale,
            "position": {"lat": self.position.lat, "lng": self.position.lng},
            "coverage_stats": self.coverage_stats.model_dump(),
            "is_new_node": self.is_new_node,
            "is_new_cell": self.is_new_cell,
        }

        if self.requested_node_id is not None:
            result["requested_node_id"] = self.requested_node_id
        if self.observations:
            result["observations"] = [str(o) for o in self.observations]
        if self.scene_tag is not None:
            result["scene_tag"] = self.scene_tag
        if self.fallback_cause is not None:
            result["fallback_cause"] = self.fallback_cause
        if self.remaining_path_steps is not None:
            result["remaining_path_steps"] = self.remaining_path_steps

        return result
