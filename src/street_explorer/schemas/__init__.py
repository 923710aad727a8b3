"""Data contracts for the street explorer."""

from street_explorer.schemas.nodes import LatLng, NodeData, NodeLink
from street_explorer.schemas.results import (
    CoverageStats,
    ExplorationMode,
    MovementRecord,
    StepRecord,
)
from street_explorer.schemas.decisions import (
    CandidateView,
    DecisionContext,
    VisionDecision,
)
from street_explorer.schemas.snapshot import (
    AgentSnapshot,
    GraphSnapshot,
    SerializedNode,
)

__all__ = [
    "AgentSnapshot",
    "CandidateView",
    "CoverageStats",
    "DecisionContext",
    "ExplorationMode",
    "GraphSnapshot",
    "LatLng",
    "MovementRecord",
    "NodeData",
    "NodeLink",
    "SerializedNode",
    "StepRecord",
    "VisionDecision",
]
