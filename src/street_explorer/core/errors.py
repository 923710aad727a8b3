"""Exception taxonomy for the explorer.

Every failure is scoped to one step: none of these is meant to end the
process.
"""

from __future__ import annotations


class ExplorerError(Exception):
    """Base class for explorer errors."""


class NodeNotFoundError(ExplorerError):
    """No node exists at or near the query."""

    def __init__(self, query: object) -> None:
        super().__init__(f"No node found for {query!r}")
        self.query = query


class DeadEndExhaustedError(ExplorerError):
    """Dead-end recovery used its whole distance budget."""

    def __init__(self, node_id: str, distance_m: float) -> None:
        super().__init__(
            f"no navigable node found within {distance_m:.0f}m of dead end {node_id}"
        )
        self.node_id = node_id
        self.distance_m = distance_m


class NoNavigableLinksError(ExplorerError):
    """The current node has no links and nowhere to jump to."""


class VisionServiceError(ExplorerError):
    """A vision service call failed.

    ``status`` carries an HTTP-like status code when one is known; it
    decides whether the call is retried.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DecisionParseError(ExplorerError):
    """A vision payload could not be decoded as JSON."""

    def __init__(self, message: str, blank: bool = False) -> None:
        super().__init__(message)
        self.blank = blank
