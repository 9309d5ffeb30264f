"""
Geospatial helpers.

A tiny geometry layer: the GeoPoint value, haversine distance, and two ways of
narrowing a candidate set before the exact distance check (bounding boxes for
the R*Tree index, grid cells for the scan backend). Neither narrowing step ever
decides inclusion on its own; callers always finish with `haversine_m`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from math import asin, cos, degrees, radians, sin, sqrt

from geonotes.errors import ValidationError

EARTH_RADIUS_M = 6_371_000.0

# Meters per degree of latitude on the mean-radius sphere.
METERS_PER_DEGREE = math.pi * EARTH_RADIUS_M / 180.0

# Widening applied to every box so float rounding never drops a boundary point.
_BOX_MARGIN_DEG = 1e-6


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float

    def __post_init__(self):
        for name, value, bound in (("latitude", self.lat, 90.0), ("longitude", self.lon, 180.0)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number")
            if not math.isfinite(value):
                raise ValidationError(f"{name} must be finite")
            if not -bound <= value <= bound:
                raise ValidationError(f"{name} must be between {-bound:g} and {bound:g}")
        object.__setattr__(self, "lat", float(self.lat))
        object.__setattr__(self, "lon", float(self.lon))


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points."""
    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    lon2 = radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, max(0.0, h))))


def bounding_boxes(center: GeoPoint, radius_m: float) -> list[BoundingBox]:
    """
    Return lat/lon boxes that together contain every point within `radius_m`.

    A circle crossing the antimeridian yields two boxes. A circle reaching a
    pole covers the full longitude range.
    """
    angular = radius_m / EARTH_RADIUS_M
    if angular >= math.pi:
        return [BoundingBox(-90.0, -180.0, 90.0, 180.0)]

    dlat = degrees(angular) + _BOX_MARGIN_DEG
    south = max(-90.0, center.lat - dlat)
    north = min(90.0, center.lat + dlat)

    # Longitude half-width of the tight box around a spherical cap.
    cos_lat = cos(radians(center.lat))
    if north >= 90.0 or south <= -90.0 or sin(angular) >= cos_lat:
        return [BoundingBox(south, -180.0, north, 180.0)]
    dlon = degrees(asin(sin(angular) / cos_lat)) + _BOX_MARGIN_DEG

    west = center.lon - dlon
    east = center.lon + dlon
    if west < -180.0:
        return [
            BoundingBox(south, west + 360.0, north, 180.0),
            BoundingBox(south, -180.0, north, east),
        ]
    if east > 180.0:
        return [
            BoundingBox(south, west, north, 180.0),
            BoundingBox(south, -180.0, north, east - 360.0),
        ]
    return [BoundingBox(south, west, north, east)]


def cell_size_deg(cell_size_m: float) -> float:
    if cell_size_m <= 0:
        raise ValueError("cell_size_m must be > 0")
    return cell_size_m / METERS_PER_DEGREE


def _cell_index(value: float, size_deg: float) -> int:
    return int(math.floor(value / size_deg))


def cell_key(point: GeoPoint, cell_size_m: float) -> str:
    """Grid bucket key of `point` for a grid of `cell_size_m` square-ish cells."""
    size = cell_size_deg(cell_size_m)
    return f"{_cell_index(point.lat, size)}:{_cell_index(point.lon, size)}"


def cells_covering(center: GeoPoint, radius_m: float, cell_size_m: float, *, max_cells: int = 256) -> list[str] | None:
    """
    Return the grid keys of every cell that intersects the circle's boxes.

    Returns None when more than `max_cells` would be needed; the caller should
    then fall back to an unbucketed scan.
    """
    size = cell_size_deg(cell_size_m)
    keys: list[str] = []
    for box in bounding_boxes(center, radius_m):
        lat_lo, lat_hi = _cell_index(box.south, size), _cell_index(box.north, size)
        lon_lo, lon_hi = _cell_index(box.west, size), _cell_index(box.east, size)
        if len(keys) + (lat_hi - lat_lo + 1) * (lon_hi - lon_lo + 1) > max_cells:
            return None
        for i in range(lat_lo, lat_hi + 1):
            for j in range(lon_lo, lon_hi + 1):
                keys.append(f"{i}:{j}")
    return sorted(set(keys))
