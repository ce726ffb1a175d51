"""
Core territory acquisition functionality.
"""

from .activity import ActivityType, SpeedProfile
from .anti_cheat import AntiCheatThresholds, Verdict, VerdictStats, validate_run
from .conquest import ClaimOutcome, ConquestEngine, TerritoryState, TileUpdate, next_state
from .errors import (
    ConquestConflictError, InvalidRunInput, RunIngestError, RunRejected, TerritoryError
)
from .geodesy import GeoPoint, GPSSample, LatLng, haversine_m, to_geo_point, to_lat_lng
from .path_geometry import PathGeometry, build_path
from .tile_grid import (
    GridConfig, polygon_for_tile, tile_area_km2, tile_bounds, tile_id, tiles_touched_by
)

__all__ = ['ActivityType', 'SpeedProfile',
           'AntiCheatThresholds', 'Verdict', 'VerdictStats', 'validate_run',
           'ClaimOutcome', 'ConquestEngine', 'TerritoryState', 'TileUpdate', 'next_state',
           'ConquestConflictError', 'InvalidRunInput', 'RunIngestError', 'RunRejected',
           'TerritoryError',
           'GeoPoint', 'GPSSample', 'LatLng', 'haversine_m', 'to_geo_point', 'to_lat_lng',
           'PathGeometry', 'build_path',
           'GridConfig', 'polygon_for_tile', 'tile_area_km2', 'tile_bounds', 'tile_id',
           'tiles_touched_by']
