"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
"""

import math
from math import radians, cos, sin, asin, sqrt
from typing import Tuple

EARTH_RADIUS_METERS = 6371000

# Degrees of latitude per meter is roughly constant; longitude shrinks with cos(lat)
_METERS_PER_DEGREE = 111000.0


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(min(1.0, sqrt(a)))
    return c * EARTH_RADIUS_METERS


def is_valid_coordinate(lat, lon) -> bool:
    """True when lat/lon are finite numbers inside [-90, 90] x [-180, 180]."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def bounding_box(lat: float, lon: float, radius_meters: float) -> Tuple[float, float, float, float]:
    """
    Approximate lat/lon box enclosing a circle, used as a cheap prefilter
    before the haversine check.

    The box is padded by 10% so points on the circle edge are never cut off.
    Near the poles (or when the circle wraps the antimeridian) the longitude
    range opens to the full [-180, 180].

    Returns:
        (min_lat, max_lat, min_lon, max_lon)
    """
    padded = float(radius_meters) * 1.1
    lat_offset = padded / _METERS_PER_DEGREE

    min_lat = max(-90.0, lat - lat_offset)
    max_lat = min(90.0, lat + lat_offset)

    # Longitude degrees are widest at the box edge farthest from the equator
    cos_lat = math.cos(math.radians(max(abs(min_lat), abs(max_lat))))
    if cos_lat < 1e-6 or min_lat <= -90.0 or max_lat >= 90.0:
        return min_lat, max_lat, -180.0, 180.0

    lon_offset = padded / (_METERS_PER_DEGREE * cos_lat)
    if lon - lon_offset < -180.0 or lon + lon_offset > 180.0:
        return min_lat, max_lat, -180.0, 180.0

    return min_lat, max_lat, lon - lon_offset, lon + lon_offset
