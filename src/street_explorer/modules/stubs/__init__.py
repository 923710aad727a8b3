"""Stub collaborators for demos and testing."""

from street_explorer.modules.stubs.capture import StubObservationCapture
from street_explorer.modules.stubs.node_source import (
    InMemoryNodeSource,
    build_grid_world,
    dump_world,
    load_world,
    make_node,
)
from street_explorer.modules.stubs.vision import ScriptedVisionService

__all__ = [
    "InMemoryNodeSource",
    "ScriptedVisionService",
    "StubObservationCapture",
    "build_grid_world",
    "dump_world",
    "load_world",
    "make_node",
]
