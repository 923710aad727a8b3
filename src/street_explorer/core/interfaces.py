"""Abstract base classes for the agent's external collaborators.

The exploration agent depends only on these interfaces and the schemas,
never on concrete implementations. All methods are coroutines: the agent
awaits them one at a time within a step.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from street_explorer.schemas import DecisionContext, LatLng, NodeData


# =============================================================================
# Node Source
# =============================================================================


class NodeSource(ABC):
    """Abstract interface for the panorama graph being explored.

    Implementations might include:
    - A headless street-level imagery client
    - An in-memory world for demos and tests
    """

    @abstractmethod
    async def expand(self, query: str | LatLng) -> NodeData:
        """Look up a node by id, or the nearest node to a position.

        Args:
            query: A node id or a position.

        Returns:
            The node with its position and outgoing links.

        Raises:
            NodeNotFoundError: If no node exists at or near the query.
        """
        ...

    @abstractmethod
    async def settle(self, node_id: str) -> NodeData:
        """Move the source's current position to a node.

        The settled id may differ from ``node_id`` when the source resolves
        an alias.

        Args:
            node_id: Node to move to.

        Returns:
            The node the source actually settled on.
        """
        ...

    async def current(self) -> NodeData | None:
        """The node the source is currently settled on, if it tracks one.

        Optional - the agent falls back to ``expand`` on its own record of
        the current node id.
        """
        return None


# =============================================================================
# Decision Interfaces
# =============================================================================


class VisionService(ABC):
    """Abstract interface for the vision decision service.

    The service picks one candidate. It may fail or return malformed
    payloads; validation, retries and fallback are the caller's job.
    """

    @abstractmethod
    async def choose(self, context: DecisionContext, max_tokens: int) -> Any:
        """Choose among the candidates of ``context``.

        Args:
            context: Position, candidates, history and coverage stats.
            max_tokens: Completion budget for this attempt.

        Returns:
            Raw payload: a JSON string or a dict with ``selectedIndex``,
            ``reasoning`` and ``sceneTag``.

        Raises:
            VisionServiceError: On service failure.
        """
        ...


class ObservationCapture(ABC):
    """Abstract interface for sampling the view along a heading."""

    @abstractmethod
    async def capture(self, step_index: int, heading: float) -> Any:
        """Capture an observation from the current node.

        Args:
            step_index: Step the observation belongs to.
            heading: Heading to look along, in degrees.

        Returns:
            An opaque observation handle.
        """
        ...
