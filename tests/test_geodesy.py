"""Tests for geodesy primitives."""

import math
from dataclasses import FrozenInstanceError

import numpy as np
import pytest

from py_terra.core.geodesy import (
    EARTH_RADIUS_M, GeoPoint, GPSSample, LatLng, angle_deviation_deg,
    haversine_array, haversine_m, path_length_m, to_geo_point, to_lat_lng
)

METERS_PER_DEG = EARTH_RADIUS_M * math.pi / 180.0


class TestHaversine:
    """Test great-circle distance."""

    def test_one_degree_of_latitude(self):
        a = GeoPoint(lon=0.0, lat=0.0)
        b = GeoPoint(lon=0.0, lat=1.0)
        assert haversine_m(a, b) == pytest.approx(METERS_PER_DEG, rel=1e-9)

    def test_zero_distance(self):
        p = LatLng(lat=48.85, lon=2.35)
        assert haversine_m(p, p) == 0.0

    def test_symmetric(self):
        a = GeoPoint(lon=2.35, lat=48.85)
        b = GeoPoint(lon=-0.12, lat=51.50)
        assert haversine_m(a, b) == pytest.approx(haversine_m(b, a))
        # Paris - London is roughly 340 km
        assert 330_000 < haversine_m(a, b) < 350_000

    def test_array_matches_scalar(self):
        lats = np.array([51.5, 51.501, 51.503, 51.503])
        lons = np.array([-0.12, -0.121, -0.119, -0.119])
        distances = haversine_array(lats, lons)

        assert len(distances) == 3
        for i in range(3):
            expected = haversine_m(LatLng(lats[i], lons[i]), LatLng(lats[i + 1], lons[i + 1]))
            assert distances[i] == pytest.approx(expected)
        assert distances[2] == 0.0


class TestAngles:
    """Test bearing change at a middle point."""

    def test_straight_line_has_no_deviation(self):
        a = GeoPoint(lon=10.0, lat=50.000)
        b = GeoPoint(lon=10.0, lat=50.001)
        c = GeoPoint(lon=10.0, lat=50.002)
        assert abs(angle_deviation_deg(a, b, c)) < 1e-6

    def test_right_turn(self):
        a = GeoPoint(lon=0.0, lat=0.000)
        b = GeoPoint(lon=0.0, lat=0.001)
        c = GeoPoint(lon=0.001, lat=0.001)
        assert angle_deviation_deg(a, b, c) == pytest.approx(90.0, abs=0.01)

    def test_reversal_is_normalized(self):
        a = GeoPoint(lon=0.0, lat=0.000)
        b = GeoPoint(lon=0.0, lat=0.001)
        angle = angle_deviation_deg(a, b, a)
        assert -180.0 <= angle <= 180.0
        assert abs(angle) == pytest.approx(180.0, abs=0.01)


class TestCoordinateTypes:
    """GeoPoint is lon-first, LatLng is display order."""

    def test_round_trip(self):
        display = LatLng(lat=51.5, lon=-0.12)
        stored = to_geo_point(display)

        assert stored.as_coords() == (-0.12, 51.5)
        assert to_lat_lng(stored) == display

    def test_sample_geo_point(self):
        sample = GPSSample(lat=51.5, lon=-0.12, timestamp_ms=0)
        assert sample.geo_point == GeoPoint(lon=-0.12, lat=51.5)

    def test_samples_are_immutable(self):
        sample = GPSSample(lat=51.5, lon=-0.12, timestamp_ms=0)
        with pytest.raises(FrozenInstanceError):
            sample.lat = 0.0


class TestPathLength:
    """Path length sums segments instead of measuring displacement."""

    def test_out_and_back(self):
        start = GeoPoint(lon=0.0, lat=0.0)
        turn = GeoPoint(lon=0.0, lat=0.01)
        length = path_length_m([start, turn, start])
        assert length == pytest.approx(2 * haversine_m(start, turn))

    def test_single_point(self):
        assert path_length_m([GeoPoint(lon=0.0, lat=0.0)]) == 0.0
