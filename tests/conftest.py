"""Configuration for pytest."""

import pytest


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture
def fast_config():
    """Explorer config with no step delay."""
    from street_explorer.utils.config import ExplorerConfig

    return ExplorerConfig(step_delay_s=0.0)


@pytest.fixture
def line_world():
    """Three nodes in a north-south line, 20m apart: A - B - C."""
    from street_explorer.modules.stubs import make_node

    return {
        "A": make_node("A", 0.0, 0.0, [("B", 0.0)]),
        "B": make_node("B", 0.00018, 0.0, [("A", 180.0), ("C", 0.0)]),
        "C": make_node("C", 0.00036, 0.0, [("B", 180.0)]),
    }


@pytest.fixture
def fork_world():
    """A start node with three unvisited branches and a dead end beyond each."""
    from street_explorer.modules.stubs import make_node

    return {
        "S": make_node("S", 0.0, 0.0, [("N", 0.0), ("E", 90.0), ("W", 270.0)]),
        "N": make_node("N", 0.00018, 0.0, [("S", 180.0)]),
        "E": make_node("E", 0.0, 0.00018, [("S", 270.0)]),
        "W": make_node("W", 0.0, -0.00018, [("S", 90.0)]),
    }


@pytest.fixture
def grid_world():
    """A 5x5 street grid with 20m spacing."""
    from street_explorer.modules.stubs import build_grid_world

    return build_grid_world(5, 5, spacing_m=20.0)


@pytest.fixture
def make_agent(fast_config):
    """Factory for an agent over an in-memory world with scripted vision."""
    from street_explorer.core.agent import ExplorationAgent
    from street_explorer.modules.stubs import (
        InMemoryNodeSource,
        ScriptedVisionService,
        StubObservationCapture,
    )

    def _make(world, aliases=None, script=None, config=None, seed=7, **source_kwargs):
        source = InMemoryNodeSource(world, aliases, **source_kwargs)
        vision = ScriptedVisionService(seed=seed, script=script)
        agent = ExplorationAgent(
            source,
            vision_service=vision,
            capture=StubObservationCapture(),
            config=config or fast_config,
            run_id="test-run",
        )
        return agent, source, vision

    return _make
