# File: app/services/geo.py
"""Coordinate validation and spherical distance helpers.

Distances use a spherical earth with the WGS84 equatorial radius, the same
model a 2dsphere ``$centerSphere`` query uses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import and_, func

EARTH_RADIUS_M = 6378137.0
_DEG = math.pi / 180.0


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def validate_coordinates(longitude: Any, latitude: Any) -> bool:
    """True when both values are finite numbers inside the WGS84 bounds."""
    lng = _as_float(longitude)
    lat = _as_float(latitude)
    if lng is None or lat is None:
        return False
    return -180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0


def haversine_m(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    lat1, lng1, lat2, lng2 = map(math.radians, [lat1, lng1, lat2, lng2])
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


@dataclass(frozen=True)
class Disc:
    """A spherical cap: every point within ``radius_m`` of the centre."""

    longitude: float
    latitude: float
    radius_m: float

    @property
    def covers_globe(self) -> bool:
        return self.radius_m >= math.pi * EARTH_RADIUS_M

    def haversine_term(self, lng_col, lat_col):
        """SQL for the haversine ``a`` term between the centre and a row.

        ``a`` grows monotonically with distance, so it serves both as the
        membership test and as the nearest-first sort key without asin/sqrt.
        """
        lat0 = self.latitude * _DEG
        lng0 = self.longitude * _DEG
        half_dlat = func.sin((lat_col * _DEG - lat0) / 2)
        half_dlng = func.sin((lng_col * _DEG - lng0) / 2)
        return half_dlat * half_dlat + math.cos(lat0) * func.cos(lat_col * _DEG) * half_dlng * half_dlng

    def bounding_box(self, lng_col, lat_col):
        """Index-friendly prefilter; None when the cap reaches a pole."""
        dlat = (self.radius_m / EARTH_RADIUS_M) / _DEG
        min_lat, max_lat = self.latitude - dlat, self.latitude + dlat
        if min_lat <= -90.0 or max_lat >= 90.0:
            return None
        terms = [lat_col >= min_lat, lat_col <= max_lat]
        # Longitude span widens with latitude; skip it when it wraps the antimeridian.
        cos_lat = math.cos(max(abs(min_lat), abs(max_lat)) * _DEG)
        dlng = dlat / cos_lat
        if self.longitude - dlng > -180.0 and self.longitude + dlng < 180.0:
            terms += [lng_col >= self.longitude - dlng, lng_col <= self.longitude + dlng]
        return and_(*terms)

    def contains(self, lng_col, lat_col):
        if self.covers_globe:
            return None
        threshold = math.sin(self.radius_m / (2 * EARTH_RADIUS_M)) ** 2
        within = self.haversine_term(lng_col, lat_col) <= threshold
        box = self.bounding_box(lng_col, lat_col)
        return within if box is None else and_(box, within)

    def distance_to(self, longitude: float, latitude: float) -> float:
        return haversine_m(self.longitude, self.latitude, longitude, latitude)
