"""
Geodesy primitives.

Great-circle distance, bearings and the coordinate types used across the
package. Storage and wire geometry is always longitude first; ``GeoPoint``
carries that order and ``LatLng`` exists only for display code. Convert
between them with ``to_geo_point`` / ``to_lat_lng``, never by unpacking.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

EARTH_RADIUS_M = 6_371_000.0


@dataclass(frozen=True)
class GeoPoint:
    """Storage-order coordinate: ``[lon, lat]``."""

    lon: float
    lat: float

    def as_coords(self) -> Tuple[float, float]:
        return (self.lon, self.lat)


@dataclass(frozen=True)
class LatLng:
    """Display-order coordinate."""

    lat: float
    lon: float


@dataclass(frozen=True)
class GPSSample:
    """One client GPS fix. Never mutated after capture."""

    lat: float
    lon: float
    timestamp_ms: int
    accuracy_m: Optional[float] = None

    @property
    def geo_point(self) -> GeoPoint:
        return GeoPoint(lon=self.lon, lat=self.lat)


def to_geo_point(point: LatLng) -> GeoPoint:
    return GeoPoint(lon=point.lon, lat=point.lat)


def to_lat_lng(point: GeoPoint) -> LatLng:
    return LatLng(lat=point.lat, lon=point.lon)


def haversine_m(a, b) -> float:
    """
    Great-circle distance in meters between two objects with ``lat``/``lon``.

    Accepts GPSSample, GeoPoint or LatLng interchangeably.
    """
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lon - a.lon)

    h = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def haversine_array(lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """
    Distances in meters between consecutive entries of coordinate arrays.

    Returns an array of length ``len(lats) - 1``.
    """
    phi = np.radians(lats)
    lam = np.radians(lons)
    d_phi = np.diff(phi)
    d_lambda = np.diff(lam)

    h = np.sin(d_phi / 2.0) ** 2 + np.cos(phi[:-1]) * np.cos(phi[1:]) * np.sin(d_lambda / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.minimum(1.0, np.sqrt(h)))


def bearing_rad(a, b) -> float:
    """Initial bearing from ``a`` to ``b`` in radians, clockwise from north."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_lambda = math.radians(b.lon - a.lon)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return math.atan2(y, x)


def angle_deviation_deg(a, b, c) -> float:
    """
    Change of heading at ``b`` when travelling ``a -> b -> c``.

    Normalized to [-180, 180]; 0 means the three points are collinear along
    the great circle.
    """
    angle = math.degrees(bearing_rad(b, c) - bearing_rad(a, b))
    while angle > 180.0:
        angle -= 360.0
    while angle < -180.0:
        angle += 360.0
    return angle


def path_length_m(points: Sequence) -> float:
    """True path length: sum of consecutive great-circle distances."""
    if len(points) < 2:
        return 0.0
    lats = np.array([p.lat for p in points], dtype=np.float64)
    lons = np.array([p.lon for p in points], dtype=np.float64)
    return float(haversine_array(lats, lons).sum())


def coords_of(points: Iterable) -> List[Tuple[float, float]]:
    """``[lon, lat]`` coordinate list for anything with ``lat``/``lon``."""
    return [(p.lon, p.lat) for p in points]
