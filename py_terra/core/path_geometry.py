"""
Path geometry for submitted runs.

Turns an ordered sample list into a ``[lon, lat]`` line, measures its true
length and buffers it into the fixed-width corridor that decides which tiles
a run claims. Buffering happens in a local azimuthal equidistant projection
centred on the path so the corridor width is in meters everywhere on the
globe.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence

import structlog
from pyproj import CRS, Transformer
from shapely.geometry import LineString, Point, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform

from .geodesy import coords_of, path_length_m

logger = structlog.get_logger()

WGS84 = CRS.from_epsg(4326)
DEFAULT_BUFFER_M = 50.0


@dataclass(frozen=True)
class PathGeometry:
    """Built path: the bare line, its length and the claimed corridor."""

    line: BaseGeometry
    length_km: float
    buffered: BaseGeometry

    @property
    def is_degenerate(self) -> bool:
        return self.length_km == 0.0


def _local_projection(lon: float, lat: float) -> CRS:
    return CRS.from_proj4(
        f"+proj=aeqd +lat_0={lat} +lon_0={lon} +x_0=0 +y_0=0 +datum=WGS84 +units=m +no_defs"
    )


def buffer_meters(geometry: BaseGeometry, meters: float) -> BaseGeometry:
    """Buffer a WGS84 geometry by a distance in meters."""
    center = geometry.centroid
    local = _local_projection(center.x, center.y)
    to_local = Transformer.from_crs(WGS84, local, always_xy=True)
    to_wgs84 = Transformer.from_crs(local, WGS84, always_xy=True)

    projected = transform(to_local.transform, geometry)
    return transform(to_wgs84.transform, projected.buffer(meters))


def build_path(points: Sequence, buffer_m: float = DEFAULT_BUFFER_M) -> PathGeometry:
    """
    Build the path of a run.

    Args:
        points: Ordered samples (anything with ``lat``/``lon``), at least one
        buffer_m: Corridor half-width in meters

    Returns:
        PathGeometry with length in km and the buffered polygon
    """
    if not points:
        raise ValueError("Cannot build a path without points")

    coords = coords_of(points)
    length_km = path_length_m(points) / 1000.0

    if len(set(coords)) < 2:
        # Every sample at the same spot: claim a disc around it
        line = Point(coords[0])
    else:
        line = LineString(coords)

    buffered = buffer_meters(line, buffer_m)
    logger.debug(
        "Built path",
        samples=len(coords),
        length_km=round(length_km, 4),
        buffer_m=buffer_m,
    )
    return PathGeometry(line=line, length_km=length_km, buffered=buffered)


def geometry_to_geojson(geometry: BaseGeometry) -> Dict[str, Any]:
    """GeoJSON mapping with plain lists, ready for a JSON column. Keeps ``[lon, lat]``."""
    def _listify(value):
        if isinstance(value, (list, tuple)):
            return [_listify(v) for v in value]
        return value

    geojson = dict(mapping(geometry))
    geojson["coordinates"] = _listify(geojson["coordinates"])
    return geojson


def geometry_from_geojson(geojson: Dict[str, Any]) -> BaseGeometry:
    """Inverse of :func:`geometry_to_geojson`."""
    return shape(geojson)
