"""Great-circle helpers shared by the coverage graph, clusters and agent.

All positions are WGS84 degrees. Distances are metres on a spherical
Earth of radius ``EARTH_RADIUS_M``, which is plenty for street-scale
spacing (a few metres to a few kilometres).
"""

from __future__ import annotations

import math
from typing import Protocol, Sequence

import numpy as np

from street_explorer.schemas.nodes import LatLng

EARTH_RADIUS_M: float = 6_371_000.0

# Metres per degree of latitude on the sphere above
METERS_PER_DEGREE: float = math.pi * EARTH_RADIUS_M / 180.0

# Returned for positions that cannot be quantised (NaN / inf)
INVALID_CELL: str = "invalid"


class HasLatLng(Protocol):
    lat: float
    lng: float


def haversine_m(a: HasLatLng, b: HasLatLng) -> float:
    """Great-circle distance between two positions in metres."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def haversine_many(
    origin: HasLatLng,
    lats: Sequence[float] | np.ndarray,
    lngs: Sequence[float] | np.ndarray,
) -> np.ndarray:
    """Vectorised distance from ``origin`` to every (lat, lng) pair.

    Used when ranking hundreds of frontier anchors at once.
    """
    lat_arr = np.radians(np.asarray(lats, dtype=float))
    lng_arr = np.radians(np.asarray(lngs, dtype=float))
    phi1 = math.radians(origin.lat)
    lambda1 = math.radians(origin.lng)

    h = (
        np.sin((lat_arr - phi1) / 2) ** 2
        + math.cos(phi1) * np.cos(lat_arr) * np.sin((lng_arr - lambda1) / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def project_position(position: HasLatLng, heading: float, distance_m: float) -> LatLng:
    """Move ``distance_m`` metres from ``position`` along ``heading`` degrees."""
    d = distance_m / EARTH_RADIUS_M
    bearing = math.radians(heading)
    lat1 = math.radians(position.lat)
    lng1 = math.radians(position.lng)

    lat2 = math.asin(
        math.sin(lat1) * math.cos(d)
        + math.cos(lat1) * math.sin(d) * math.cos(bearing)
    )
    lng2 = lng1 + math.atan2(
        math.sin(bearing) * math.sin(d) * math.cos(lat1),
        math.cos(d) - math.sin(lat1) * math.sin(lat2),
    )
    return LatLng(lat=math.degrees(lat2), lng=math.degrees(lng2))


def calculate_bearing(origin: HasLatLng, target: HasLatLng) -> float:
    """Initial bearing from ``origin`` to ``target`` in [0, 360)."""
    d_lng = math.radians(target.lng - origin.lng)
    lat1 = math.radians(origin.lat)
    lat2 = math.radians(target.lat)

    y = math.sin(d_lng) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lng)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def cell_key(position: HasLatLng, cell_size_m: float) -> str:
    """Quantise a position onto a square grid of ``cell_size_m`` metres.

    Rows are latitude bands; columns are scaled by the cosine of the row's
    centre latitude so cells stay roughly square away from the equator.
    Non-finite input maps to ``INVALID_CELL`` instead of raising.
    """
    lat = position.lat
    lng = position.lng
    if not (math.isfinite(lat) and math.isfinite(lng)) or cell_size_m <= 0:
        return INVALID_CELL

    row = math.floor(lat * METERS_PER_DEGREE / cell_size_m)
    row_lat = (row + 0.5) * cell_size_m / METERS_PER_DEGREE
    lng_scale = max(math.cos(math.radians(row_lat)), 1e-6)
    col = math.floor(lng * METERS_PER_DEGREE * lng_scale / cell_size_m)
    return f"{row}:{col}"
