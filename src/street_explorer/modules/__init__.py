"""Routing and decision modules."""

from street_explorer.modules.pathfinder import (
    ClusterHop,
    FrontierPath,
    FrontierSelection,
    Pathfinder,
    select_closest_frontier,
)
from street_explorer.modules.vision_decider import (
    FailureKind,
    VisionDecider,
    classify_failure,
    next_token_budget,
    parse_decision_content,
)

__all__ = [
    "ClusterHop",
    "FailureKind",
    "FrontierPath",
    "FrontierSelection",
    "Pathfinder",
    "VisionDecider",
    "classify_failure",
    "next_token_budget",
    "parse_decision_content",
    "select_closest_frontier",
]
