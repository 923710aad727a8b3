"""Node-source payloads: positions, links and expanded nodes."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LatLng(BaseModel):
    """A WGS84 position in degrees."""

    lat: float = Field(..., description="Latitude in degrees")
    lng: float = Field(..., description="Longitude in degrees")

    model_config = {"frozen": True}


class NodeLink(BaseModel):
    """An outgoing link from one panorama node to a neighbour."""

    target_id: str = Field(..., description="Node id the link leads to")
    heading: float = Field(
        default=0.0,
        description="Compass heading of the link in degrees",
    )
    description: str = Field(
        default="",
        description="Free-text label supplied by the source (street name etc.)",
    )

    model_config = {"frozen": True}


class NodeData(BaseModel):
    """A node as reported by the node source.

    Returned both by ``expand`` (lookup by id or position) and by
    ``settle``, where ``node_id`` is the id the source actually settled
    on and may differ from the one requested.
    """

    node_id: str = Field(..., description="Identifier of the node")
    position: LatLng = Field(..., description="Position of the node")
    links: list[NodeLink] = Field(
        default_factory=list,
        description="Outgoing links in source order",
    )

    model_config = {"frozen": True}

    def link_to(self, target_id: str) -> NodeLink | None:
        for link in self.links:
            if link.target_id == target_id:
                return link
        return None
