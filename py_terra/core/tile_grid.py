"""
Tile grid built on geohash cells.

A tile id is the geohash of a coordinate at a fixed precision (7 characters,
roughly 150m x 150m). Cells at one precision partition the globe without gaps
or overlaps, and a cell's bounding box is recovered from its id alone, so no
geometry has to be stored to reason about tiles.

This module implements:
- Coordinate -> tile id encoding and the inverse bounding box
- Tile polygons as closed ``[lon, lat]`` rings
- The scan that finds every tile touched by a buffered path
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Set, Tuple, Union

import numpy as np
import pygeohash
import structlog
from shapely.geometry import Polygon, shape
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from .geodesy import EARTH_RADIUS_M

logger = structlog.get_logger()

# Alphabet of valid tile ids
GEOHASH_ALPHABET = frozenset("0123456789bcdefghjkmnpqrstuvwxyz")

DEFAULT_PRECISION = 7
MAX_PRECISION = 12


@dataclass
class GridConfig:
    """Tile grid parameters."""

    precision: int = DEFAULT_PRECISION
    # Upper bound for the candidate scan step; clamped to the cell size
    scan_step_deg: float = 0.0015
    scan_margin_deg: float = 0.002

    def __post_init__(self):
        if not 1 <= self.precision <= MAX_PRECISION:
            raise ValueError(f"Tile precision must be between 1 and {MAX_PRECISION}")
        if self.scan_step_deg <= 0:
            raise ValueError("Scan step must be positive")

    @classmethod
    def from_settings(cls, settings) -> "GridConfig":
        return cls(
            precision=settings.tile_precision,
            scan_step_deg=settings.tile_scan_step_deg,
            scan_margin_deg=settings.tile_scan_margin_deg,
        )


def _check_precision(precision: int) -> None:
    if not 1 <= precision <= MAX_PRECISION:
        raise ValueError(f"Tile precision must be between 1 and {MAX_PRECISION}")


def _check_tile_id(tile: str) -> None:
    if not tile or len(tile) > MAX_PRECISION or not set(tile) <= GEOHASH_ALPHABET:
        raise ValueError(f"Invalid tile id: {tile!r}")


def cell_size_deg(precision: int = DEFAULT_PRECISION) -> Tuple[float, float]:
    """Width and height of a cell in degrees as ``(lon_deg, lat_deg)``."""
    _check_precision(precision)
    _, _, lat_err, lon_err = pygeohash.decode_exactly("0" * precision)
    return 2.0 * lon_err, 2.0 * lat_err


def tile_area_km2(precision: int = DEFAULT_PRECISION) -> float:
    """
    Nominal area of one tile in km².

    Measured at the equator so it depends on precision only; aggregate stats
    multiply this by a tile count instead of summing per-tile areas.
    """
    lon_deg, lat_deg = cell_size_deg(precision)
    km_per_deg = math.radians(1.0) * EARTH_RADIUS_M / 1000.0
    return lon_deg * km_per_deg * lat_deg * km_per_deg


def tile_id(lat: float, lon: float, precision: int = DEFAULT_PRECISION) -> str:
    """Tile id (geohash) of the cell containing ``(lat, lon)``."""
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise ValueError(f"Coordinate out of range: lat={lat}, lon={lon}")
    _check_precision(precision)
    return pygeohash.encode(lat, lon, precision=precision)


def tile_bounds(tile: str) -> Tuple[float, float, float, float]:
    """Bounding box of a tile as ``(min_lon, min_lat, max_lon, max_lat)``."""
    _check_tile_id(tile)
    lat, lon, lat_err, lon_err = pygeohash.decode_exactly(tile)
    return lon - lon_err, lat - lat_err, lon + lon_err, lat + lat_err


def tile_center(tile: str) -> Tuple[float, float]:
    """Center of a tile as ``(lon, lat)``."""
    min_lon, min_lat, max_lon, max_lat = tile_bounds(tile)
    return (min_lon + max_lon) / 2.0, (min_lat + max_lat) / 2.0


def tile_ring(tile: str) -> List[List[float]]:
    """Closed 5-point ring of a tile in ``[lon, lat]`` order."""
    min_lon, min_lat, max_lon, max_lat = tile_bounds(tile)
    return [
        [min_lon, min_lat],
        [max_lon, min_lat],
        [max_lon, max_lat],
        [min_lon, max_lat],
        [min_lon, min_lat],
    ]


def polygon_for_tile(tile: str) -> Polygon:
    """Shapely polygon of a tile's bounding box."""
    return Polygon(tile_ring(tile))


def tile_geojson(tile: str) -> dict:
    """GeoJSON polygon for a tile, as stored on territory rows."""
    return {"type": "Polygon", "coordinates": [tile_ring(tile)]}


def as_geometry(geometry: Union[BaseGeometry, dict, Any]) -> BaseGeometry:
    """Accept a shapely geometry or a GeoJSON mapping (bare geometry or Feature)."""
    if isinstance(geometry, BaseGeometry):
        return geometry
    if isinstance(geometry, dict):
        if geometry.get("type") == "Feature":
            geometry = geometry.get("geometry") or {}
        return shape(geometry)
    raise TypeError(f"Unsupported geometry type: {type(geometry).__name__}")


def _scan_axis(lo: float, hi: float, step: float) -> np.ndarray:
    # One extra sample past hi so the far edge is always covered
    count = int(math.floor((hi - lo) / step)) + 2
    return lo + np.arange(count, dtype=np.float64) * step


def tiles_touched_by(
    geometry: Union[BaseGeometry, dict],
    config: GridConfig = None,
) -> Set[str]:
    """
    Every tile whose bounding box intersects ``geometry``.

    Candidate cells come from sampling the geometry's bounding box (plus a
    margin) at a step no coarser than one cell, so no intersecting cell is
    skipped. Candidates are then filtered with a true polygon intersection
    test, which removes the over-approximation of the box scan.

    Args:
        geometry: Shapely geometry or GeoJSON mapping in ``[lon, lat]`` order
        config: Grid parameters, defaults to precision 7

    Returns:
        Set of tile ids
    """
    config = config or GridConfig()
    geom = as_geometry(geometry)
    if geom.is_empty:
        return set()

    min_lon, min_lat, max_lon, max_lat = geom.bounds
    lon_size, lat_size = cell_size_deg(config.precision)
    lon_step = min(config.scan_step_deg, lon_size)
    lat_step = min(config.scan_step_deg, lat_size)
    margin = config.scan_margin_deg

    lons = _scan_axis(min_lon - margin, max_lon + margin, lon_step)
    lats = _scan_axis(min_lat - margin, max_lat + margin, lat_step)
    lons = lons[(lons >= -180.0) & (lons <= 180.0)]
    lats = lats[(lats >= -90.0) & (lats <= 90.0)]

    lon_grid, lat_grid = np.meshgrid(lons, lats)
    candidates = np.unique([
        tile_id(float(lat), float(lon), config.precision)
        for lat, lon in zip(lat_grid.ravel(), lon_grid.ravel())
    ])

    prepared = prep(geom)
    touched: Set[str] = set()
    for tile in candidates:
        tile = str(tile)
        if prepared.intersects(polygon_for_tile(tile)):
            touched.add(tile)

    logger.debug("Tile scan complete", candidates=len(candidates), touched=len(touched))
    return touched
