"""In-memory node source and synthetic worlds for demos and testing."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from street_explorer.core.errors import NodeNotFoundError
from street_explorer.core.interfaces import NodeSource
from street_explorer.schemas.nodes import LatLng, NodeData, NodeLink
from street_explorer.utils.geo import calculate_bearing, haversine_many, project_position

logger = logging.getLogger(__name__)

World = dict[str, NodeData]


class InMemoryNodeSource(NodeSource):
    """Serve a fixed world of nodes from a dictionary.

    ``aliases`` maps a requested id to the id the source settles on,
    mimicking a provider that resolves one place under several ids.
    """

    def __init__(
        self,
        world: World,
        aliases: dict[str, str] | None = None,
        search_radius_m: float = 25.0,
    ) -> None:
        """Initialize the node source.

        Args:
            world: Nodes keyed by id.
            aliases: Requested id -> settled id.
            search_radius_m: How far a position lookup may be from a node.
        """
        self.world = dict(world)
        self.aliases = dict(aliases or {})
        self.search_radius_m = search_radius_m
        self.current_id: str | None = None
        self.settle_calls: list[str] = []
        self.expand_calls: list[str | LatLng] = []

    def _resolve(self, node_id: str) -> str:
        return self.aliases.get(node_id, node_id)

    def _nearest(self, position: LatLng) -> NodeData:
        if not self.world:
            raise NodeNotFoundError(position)
        nodes = list(self.world.values())
        distances = haversine_many(
            position,
            [n.position.lat for n in nodes],
            [n.position.lng for n in nodes],
        )
        best = int(distances.argmin())
        if distances[best] > self.search_radius_m:
            raise NodeNotFoundError(position)
        return nodes[best]

    async def expand(self, query: str | LatLng) -> NodeData:
        self.expand_calls.append(query)
        if isinstance(query, LatLng):
            return self._nearest(query)
        node = self.world.get(self._resolve(query))
        if node is None:
            raise NodeNotFoundError(query)
        return node

    async def settle(self, node_id: str) -> NodeData:
        self.settle_calls.append(node_id)
        resolved = self._resolve(node_id)
        node = self.world.get(resolved)
        if node is None:
            raise NodeNotFoundError(node_id)
        if resolved != node_id:
            logger.debug("Settled on %s when asked for %s", resolved, node_id)
        self.current_id = resolved
        return node

    async def current(self) -> NodeData | None:
        if self.current_id is None:
            return None
        return self.world.get(self.current_id)


def make_node(node_id: str, lat: float, lng: float, links: list[tuple[str, float]] | None = None) -> NodeData:
    """Build a node from ``(target_id, heading)`` pairs."""
    return NodeData(
        node_id=node_id,
        position=LatLng(lat=lat, lng=lng),
        links=[NodeLink(target_id=t, heading=h) for t, h in (links or [])],
    )


def build_grid_world(
    rows: int,
    cols: int,
    spacing_m: float = 20.0,
    origin: LatLng | None = None,
) -> World:
    """Build a street grid with four-way links between adjacent nodes.

    Node ids are ``r{row}c{col}``; row 0 is the southern edge and column 0
    the western edge.
    """
    if rows < 1 or cols < 1:
        raise ValueError("grid needs at least one row and one column")
    origin = origin or LatLng(lat=0.0, lng=0.0)

    positions: dict[tuple[int, int], LatLng] = {}
    for r in range(rows):
        row_start = project_position(origin, 0.0, r * spacing_m)
        for c in range(cols):
            positions[(r, c)] = project_position(row_start, 90.0, c * spacing_m)

    world: World = {}
    for (r, c), position in positions.items():
        links = []
        for dr, dc, street in ((1, 0, "avenue"), (0, 1, "street"), (-1, 0, "avenue"), (0, -1, "street")):
            other = (r + dr, c + dc)
            if other not in positions:
                continue
            links.append(NodeLink(
                target_id=f"r{other[0]}c{other[1]}",
                heading=round(calculate_bearing(position, positions[other]), 1),
                description=f"{street} {c if street == 'avenue' else r}",
            ))
        world[f"r{r}c{c}"] = NodeData(node_id=f"r{r}c{c}", position=position, links=links)
    return world


def load_world(path: str | Path) -> tuple[World, dict[str, str]]:
    """Read a JSON world file written by ``dump_world``."""
    with open(path) as f:
        data = json.load(f)

    world: World = {}
    for node_id, raw in data.get("nodes", {}).items():
        world[node_id] = NodeData.model_validate({
            "node_id": node_id,
            "position": {"lat": raw["lat"], "lng": raw["lng"]},
            "links": raw.get("links", []),
        })
    return world, dict(data.get("aliases", {}))


def dump_world(path: str | Path, world: World, aliases: dict[str, str] | None = None) -> None:
    """Write a world as JSON: ``{"nodes": {...}, "aliases": {...}}``."""
    payload = {
        "nodes": {
            node_id: {
                "lat": node.position.lat,
                "lng": node.position.lng,
                "links": [link.model_dump() for link in node.links],
            }
            for node_id, node in world.items()
        },
        "aliases": dict(aliases or {}),
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)
