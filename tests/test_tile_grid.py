"""Tests for the geohash tile grid."""

import numpy as np
import pytest
from shapely.geometry import LineString, Point, mapping

from py_terra.core.tile_grid import (
    GridConfig, cell_size_deg, polygon_for_tile, tile_area_km2, tile_bounds,
    tile_center, tile_geojson, tile_id, tile_ring, tiles_touched_by
)


class TestTileId:
    """Test coordinate -> tile id encoding."""

    def test_known_geohashes(self):
        assert tile_id(57.64911, 10.40744, precision=11) == "u4pruydqqvj"
        assert tile_id(57.64911, 10.40744) == "u4pruyd"
        assert tile_id(42.6, -5.6, precision=5) == "ezs42"

    def test_default_precision(self):
        assert len(tile_id(51.5, -0.12)) == 7

    def test_stable_under_repeated_calls(self):
        ids = {tile_id(40.7128, -74.0060) for _ in range(100)}
        assert len(ids) == 1

    def test_prefix_hierarchy(self):
        fine = tile_id(35.6762, 139.6503, precision=9)
        coarse = tile_id(35.6762, 139.6503, precision=5)
        assert fine.startswith(coarse)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            tile_id(91.0, 0.0)
        with pytest.raises(ValueError):
            tile_id(0.0, 181.0)

    def test_extreme_corners(self):
        assert tile_id(90.0, 180.0) == "zzzzzzz"
        assert tile_id(-90.0, -180.0) == "0000000"


class TestTileGeometry:
    """Test the inverse: tile id -> bounding polygon."""

    @pytest.mark.parametrize("lat,lon", [
        (51.5007, -0.1246),
        (-33.8568, 151.2153),
        (0.0, 0.0),
        (64.1466, -21.9426),
        (-54.8019, -68.3030),
    ])
    def test_polygon_contains_point(self, lat, lon):
        tile = tile_id(lat, lon)
        assert polygon_for_tile(tile).covers(Point(lon, lat))

        min_lon, min_lat, max_lon, max_lat = tile_bounds(tile)
        assert min_lon <= lon <= max_lon
        assert min_lat <= lat <= max_lat

    def test_ring_is_closed_lon_first(self):
        tile = tile_id(51.5007, -0.1246)
        ring = tile_ring(tile)

        assert len(ring) == 5
        assert ring[0] == ring[-1]
        # Longitude first: London longitudes are near -0.12, latitudes near 51.5
        for lon, lat in ring:
            assert -0.2 < lon < 0.0
            assert 51.4 < lat < 51.6

    def test_geojson_matches_ring(self):
        tile = tile_id(48.8584, 2.2945)
        geojson = tile_geojson(tile)
        assert geojson["type"] == "Polygon"
        assert geojson["coordinates"] == [tile_ring(tile)]

    def test_center_maps_back_to_tile(self):
        tile = tile_id(37.7749, -122.4194)
        lon, lat = tile_center(tile)
        assert tile_id(lat, lon) == tile

    def test_cell_size(self):
        lon_deg, lat_deg = cell_size_deg(7)
        assert lon_deg == 360.0 / 2 ** 18
        assert lat_deg == 180.0 / 2 ** 17

        min_lon, min_lat, max_lon, max_lat = tile_bounds(tile_id(10.0, 10.0))
        assert max_lon - min_lon == pytest.approx(lon_deg)
        assert max_lat - min_lat == pytest.approx(lat_deg)

    def test_tile_area_is_about_150m_square(self):
        area = tile_area_km2(7)
        assert 0.02 < area < 0.025

    @pytest.mark.parametrize("bad", ["", "abc!", "ABCDEFG", "a", "0123456789bcd"])
    def test_invalid_tile_ids(self, bad):
        with pytest.raises(ValueError):
            tile_bounds(bad)


class TestPartition:
    """Cells at one precision tile the plane without gaps or overlaps."""

    def test_points_in_same_cell_share_id(self):
        tile = tile_id(52.52, 13.405)
        min_lon, min_lat, max_lon, max_lat = tile_bounds(tile)

        for fx in np.linspace(0.01, 0.99, 7):
            for fy in np.linspace(0.01, 0.99, 7):
                lon = min_lon + fx * (max_lon - min_lon)
                lat = min_lat + fy * (max_lat - min_lat)
                assert tile_id(lat, lon) == tile

    def test_far_points_never_collide(self):
        lon_deg, lat_deg = cell_size_deg(7)
        diagonal = (lon_deg ** 2 + lat_deg ** 2) ** 0.5

        base_lat, base_lon = 52.52, 13.405
        base = tile_id(base_lat, base_lon)
        for angle in np.linspace(0, 2 * np.pi, 16, endpoint=False):
            lat = base_lat + 1.01 * diagonal * np.sin(angle)
            lon = base_lon + 1.01 * diagonal * np.cos(angle)
            assert tile_id(lat, lon) != base

    def test_neighbours_share_edges_only(self):
        tile = tile_id(52.52, 13.405)
        lon, lat = tile_center(tile)
        lon_deg, lat_deg = cell_size_deg(7)

        east = tile_id(lat, lon + lon_deg)
        north = tile_id(lat + lat_deg, lon)
        assert len({tile, east, north}) == 3

        poly = polygon_for_tile(tile)
        assert poly.intersection(polygon_for_tile(east)).area == pytest.approx(0.0, abs=1e-18)
        assert poly.intersection(polygon_for_tile(north)).area == pytest.approx(0.0, abs=1e-18)
        assert poly.touches(polygon_for_tile(east))

    def test_cell_corners_belong_to_a_touching_tile(self):
        lon_deg, lat_deg = cell_size_deg(7)
        min_lon, min_lat, _, _ = tile_bounds(tile_id(52.52, 13.405))

        for i in range(-3, 4):
            for j in range(-3, 4):
                lon = min_lon + i * lon_deg
                lat = min_lat + j * lat_deg
                assert polygon_for_tile(tile_id(lat, lon)).intersects(Point(lon, lat))


class TestTilesTouchedBy:
    """Test the buffered-geometry tile scan."""

    @pytest.fixture
    def corridor(self):
        """Thin diagonal corridor roughly 1.2km long and 90m wide."""
        line = LineString([(-0.1300, 51.5000), (-0.1200, 51.5050), (-0.1150, 51.5080)])
        return line.buffer(0.0004)

    def test_no_missed_tiles(self, corridor):
        touched = tiles_touched_by(corridor)

        # Dense sample of the corridor interior: every sampled tile must be found
        min_lon, min_lat, max_lon, max_lat = corridor.bounds
        for lon in np.linspace(min_lon, max_lon, 120):
            for lat in np.linspace(min_lat, max_lat, 120):
                if corridor.contains(Point(lon, lat)):
                    assert tile_id(lat, lon) in touched

    def test_every_tile_intersects(self, corridor):
        touched = tiles_touched_by(corridor)
        assert touched
        for tile in touched:
            assert polygon_for_tile(tile).intersects(corridor)

    def test_accepts_geojson(self, corridor):
        assert tiles_touched_by(mapping(corridor)) == tiles_touched_by(corridor)
        feature = {"type": "Feature", "properties": {}, "geometry": mapping(corridor)}
        assert tiles_touched_by(feature) == tiles_touched_by(corridor)

    def test_coarse_step_is_clamped_to_cell_size(self, corridor):
        coarse = GridConfig(scan_step_deg=0.01)
        assert tiles_touched_by(corridor, coarse) == tiles_touched_by(corridor)

    def test_tile_polygon_touches_its_neighbours(self):
        tile = tile_id(52.52, 13.405)
        touched = tiles_touched_by(polygon_for_tile(tile))

        assert tile in touched
        assert len(touched) == 9
        lon, lat = tile_center(tile)
        lon_deg, lat_deg = cell_size_deg(7)
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                assert tile_id(lat + dy * lat_deg, lon + dx * lon_deg) in touched

    def test_tiny_geometry_inside_one_tile(self):
        tile = tile_id(52.52, 13.405)
        lon, lat = tile_center(tile)
        assert tiles_touched_by(Point(lon, lat).buffer(1e-5)) == {tile}

    def test_empty_geometry(self):
        assert tiles_touched_by(LineString()) == set()

    def test_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            tiles_touched_by([(0.0, 0.0), (1.0, 1.0)])

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            GridConfig(precision=0)
        with pytest.raises(ValueError):
            GridConfig(scan_step_deg=0)
