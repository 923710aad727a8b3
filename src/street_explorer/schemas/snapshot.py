"""Serialized forms of the coverage graph and the agent."""

from __future__ import annotations

from pydantic import BaseModel, Field

from street_explorer.schemas.nodes import LatLng
from street_explorer.schemas.results import ExplorationMode


class SerializedNode(BaseModel):
    """A visited node as stored in a snapshot."""

    lat: float = Field(..., description="Latitude rounded to 6 decimals")
    lng: float = Field(..., description="Longitude rounded to 6 decimals")
    neighbors: list[str] = Field(
        default_factory=list,
        description="Neighbour ids, visited or not",
    )
    timestamp: float = Field(
        default=0.0,
        description="Unix time of the last visit",
    )


class GraphSnapshot(BaseModel):
    """Everything needed to rebuild a coverage graph.

    The frontier and the cell set are not stored: both are derived from
    ``nodes`` on restore.
    """

    nodes: dict[str, SerializedNode] = Field(
        default_factory=dict,
        description="Visited nodes keyed by node id",
    )
    recent_history: list[str] = Field(
        default_factory=list,
        description="Recent-history FIFO, oldest first",
    )
    visit_counts: dict[str, int] = Field(
        default_factory=dict,
        description="Visit counters; missing entries restore as one visit",
    )
    distance_traveled_m: float = Field(
        default=0.0,
        ge=0.0,
        description="Accumulated straight-line distance",
    )


class AgentSnapshot(BaseModel):
    """A resumable exploration run."""

    run_id: str | None = Field(default=None, description="Run the snapshot came from")
    graph: GraphSnapshot = Field(default_factory=GraphSnapshot, description="Coverage graph")
    step_index: int = Field(default=0, ge=0, description="Last completed step")
    current_node_id: str | None = Field(default=None, description="Node the agent is at")
    current_position: LatLng | None = Field(default=None, description="Where the agent is")
    mode: ExplorationMode | None = Field(default=None, description="Mode of the last step")
    last_heading: float | None = Field(
        default=None,
        description="Heading of the last stepwise move",
    )
    steps_since_new_cell: int = Field(default=0, ge=0, description="Stale-progress counter")
