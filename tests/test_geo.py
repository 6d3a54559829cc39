"""Tests for haversine distance and coordinate validation."""

import math

from peoplemap.geo import haversine_meters, is_valid_coordinate


def test_haversine_one_degree_longitude_at_equator():
    """One degree of longitude on the equator is about 111.195 km."""
    assert abs(haversine_meters(0, 0, 0, 1) - 111_195) < 50


def test_haversine_zero_for_same_point():
    assert haversine_meters(48.2, 16.37, 48.2, 16.37) == 0


def test_haversine_is_symmetric():
    a = haversine_meters(48.2082, 16.3738, 47.0707, 15.4395)
    b = haversine_meters(47.0707, 15.4395, 48.2082, 16.3738)
    assert math.isclose(a, b)


def test_is_valid_coordinate():
    assert is_valid_coordinate(0.0, 0.0)
    assert is_valid_coordinate(-90.0, 180.0)
    assert not is_valid_coordinate(None, 10.0)
    assert not is_valid_coordinate(91.0, 0.0)
    assert not is_valid_coordinate(0.0, -180.5)
    assert not is_valid_coordinate(float("nan"), 0.0)
