"""Tests for the great-circle helpers and the explorer config."""

from __future__ import annotations

import math

import numpy as np
import pytest

from street_explorer.schemas import LatLng
from street_explorer.utils.config import ExplorerConfig
from street_explorer.utils.geo import (
    INVALID_CELL,
    METERS_PER_DEGREE,
    calculate_bearing,
    cell_key,
    haversine_m,
    haversine_many,
    project_position,
)


# =============================================================================
# Distances and Bearings
# =============================================================================

class TestHaversine:
    """Tests for distance helpers."""

    def test_zero_distance(self):
        p = LatLng(lat=40.71, lng=-73.99)
        assert haversine_m(p, p) == 0.0

    def test_one_degree_of_latitude(self):
        d = haversine_m(LatLng(lat=0.0, lng=0.0), LatLng(lat=1.0, lng=0.0))
        assert d == pytest.approx(METERS_PER_DEGREE, rel=1e-9)

    def test_street_scale_spacing(self):
        """0.00018 degrees of latitude is about 20 metres."""
        d = haversine_m(LatLng(lat=0.0, lng=0.0), LatLng(lat=0.00018, lng=0.0))
        assert d == pytest.approx(20.0, abs=0.1)

    def test_symmetric(self):
        a = LatLng(lat=40.7100, lng=-73.9900)
        b = LatLng(lat=40.7120, lng=-73.9870)
        assert haversine_m(a, b) == pytest.approx(haversine_m(b, a))

    def test_vectorised_matches_scalar(self):
        origin = LatLng(lat=40.7098, lng=-73.9902)
        points = [
            LatLng(lat=40.7100, lng=-73.9900),
            LatLng(lat=40.7150, lng=-73.9950),
            LatLng(lat=40.7000, lng=-73.9800),
        ]
        many = haversine_many(origin, [p.lat for p in points], [p.lng for p in points])

        assert isinstance(many, np.ndarray)
        for value, point in zip(many, points):
            assert value == pytest.approx(haversine_m(origin, point))


class TestProjection:
    """Tests for projecting along a heading."""

    @pytest.mark.parametrize("heading", [0.0, 45.0, 90.0, 180.0, 270.0])
    def test_projection_distance_and_bearing(self, heading):
        origin = LatLng(lat=40.7128, lng=-74.0060)
        moved = project_position(origin, heading, 10.0)

        assert haversine_m(origin, moved) == pytest.approx(10.0, abs=1e-3)
        assert calculate_bearing(origin, moved) == pytest.approx(heading % 360, abs=0.01)

    def test_zero_distance_projection(self):
        origin = LatLng(lat=12.5, lng=7.25)
        moved = project_position(origin, 123.0, 0.0)
        assert moved.lat == pytest.approx(origin.lat)
        assert moved.lng == pytest.approx(origin.lng)

    def test_bearing_cardinal_directions(self):
        origin = LatLng(lat=0.0, lng=0.0)
        assert calculate_bearing(origin, LatLng(lat=0.001, lng=0.0)) == pytest.approx(0.0)
        assert calculate_bearing(origin, LatLng(lat=0.0, lng=0.001)) == pytest.approx(90.0)
        assert calculate_bearing(origin, LatLng(lat=-0.001, lng=0.0)) == pytest.approx(180.0)
        assert calculate_bearing(origin, LatLng(lat=0.0, lng=-0.001)) == pytest.approx(270.0)


# =============================================================================
# Spatial Cells
# =============================================================================

class TestCellKey:
    """Tests for grid quantisation."""

    def test_nearby_points_share_a_cell(self):
        a = LatLng(lat=0.00001, lng=0.00001)
        b = LatLng(lat=0.00003, lng=0.00002)
        assert cell_key(a, 5.0) == cell_key(b, 5.0)

    def test_points_a_cell_apart_differ(self):
        a = LatLng(lat=0.00001, lng=0.0)
        b = LatLng(lat=0.00001 + 6.0 / METERS_PER_DEGREE, lng=0.0)
        assert cell_key(a, 5.0) != cell_key(b, 5.0)

    def test_negative_coordinates_floor(self):
        assert cell_key(LatLng(lat=-0.00001, lng=-0.00001), 5.0) == "-1:-1"

    def test_key_format(self):
        key = cell_key(LatLng(lat=40.7128, lng=-74.0060), 5.0)
        row, col = key.split(":")
        assert int(row) > 0
        assert int(col) < 0

    def test_columns_scale_with_latitude(self):
        """At 60 degrees a column spans about twice as many degrees of longitude."""
        lng_step = 6.0 / METERS_PER_DEGREE
        equator = [cell_key(LatLng(lat=0.0, lng=i * lng_step), 5.0) for i in range(4)]
        north = [cell_key(LatLng(lat=60.0, lng=i * lng_step), 5.0) for i in range(4)]
        assert len(set(equator)) > len(set(north))

    @pytest.mark.parametrize("lat,lng", [
        (math.nan, 0.0),
        (0.0, math.inf),
        (-math.inf, math.nan),
    ])
    def test_non_finite_is_invalid(self, lat, lng):
        assert cell_key(LatLng(lat=lat, lng=lng), 5.0) == INVALID_CELL

    def test_non_positive_size_is_invalid(self):
        p = LatLng(lat=1.0, lng=1.0)
        assert cell_key(p, 0.0) == INVALID_CELL
        assert cell_key(p, -5.0) == INVALID_CELL


# =============================================================================
# ExplorerConfig
# =============================================================================

class TestExplorerConfig:
    """Tests for config defaults, env overrides and validation."""

    def test_defaults_validate(self):
        config = ExplorerConfig()
        assert config.validate() is config
        assert config.history_size == 10
        assert config.cell_size_m == 5.0
        assert config.stale_cell_threshold_steps == 120

    def test_from_env_overrides(self):
        config = ExplorerConfig.from_env(environ={
            "EXPLORER_HISTORY_SIZE": "12",
            "EXPLORER_CELL_SIZE_M": "7.5",
            "EXPLORER_STEP_DELAY_S": " 0 ",
            "UNRELATED": "1",
        })
        assert config.history_size == 12
        assert config.cell_size_m == 7.5
        assert config.step_delay_s == 0.0
        assert config.loop_window_nodes == 6

    def test_from_env_custom_prefix(self):
        config = ExplorerConfig.from_env(prefix="X_", environ={"X_LOOP_WINDOW_NODES": "8"})
        assert config.loop_window_nodes == 8

    def test_from_env_ignores_bad_values(self, caplog):
        with caplog.at_level("WARNING"):
            config = ExplorerConfig.from_env(environ={"EXPLORER_HISTORY_SIZE": "lots"})
        assert config.history_size == 10
        assert "EXPLORER_HISTORY_SIZE" in caplog.text

    def test_int_fields_reject_floats(self):
        config = ExplorerConfig.from_env(environ={"EXPLORER_HISTORY_SIZE": "2.5"})
        assert config.history_size == 10

    @pytest.mark.parametrize("overrides", [
        {"history_size": 0},
        {"cell_size_m": -1.0},
        {"max_dead_end_distance_m": -10.0},
        {"max_consecutive_failures": 0},
        {"repeating_loop_min_period": 7, "repeating_loop_max_period": 6},
        {"vision_max_tokens": 3000, "vision_max_retry_tokens": 2400},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValueError):
            ExplorerConfig(**overrides).validate()
