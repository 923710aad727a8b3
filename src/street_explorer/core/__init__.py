"""Core interfaces and the exploration state machine.

The agent and runner live in ``street_explorer.core.agent`` and
``street_explorer.core.runner``; they are not re-exported here because
the decision modules import the interfaces from this package.
"""

from street_explorer.core.errors import (
    DeadEndExhaustedError,
    DecisionParseError,
    ExplorerError,
    NodeNotFoundError,
    NoNavigableLinksError,
    VisionServiceError,
)
from street_explorer.core.interfaces import NodeSource, ObservationCapture, VisionService

__all__ = [
    "DeadEndExhaustedError",
    "DecisionParseError",
    "ExplorerError",
    "NodeNotFoundError",
    "NoNavigableLinksError",
    "NodeSource",
    "ObservationCapture",
    "VisionService",
    "VisionServiceError",
]
