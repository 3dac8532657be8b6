"""Coordinate and viewport helpers"""

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from pricemap.utils.exceptions import InvalidCoordinate, InvalidViewport

BBox = Tuple[float, float, float, float]  # (south, west, north, east)

def _as_degrees(value: Any, name: str, error=InvalidCoordinate) -> float:
    """Coerce a JSON/query value into a finite float"""
    if isinstance(value, bool) or value is None:
        raise error(f"{name} must be a number")
    try:
        degrees = float(value)
    except (TypeError, ValueError):
        raise error(f"{name} must be a number, got {value!r}")
    if not math.isfinite(degrees):
        raise error(f"{name} must be finite")
    return degrees

def normalize_longitude(lon: float) -> float:
    """Wrap a longitude into [-180, 180]"""
    if -180.0 <= lon <= 180.0:
        return lon
    return ((lon + 180.0) % 360.0) - 180.0

@dataclass(frozen=True)
class Coordinate:
    """WGS84 latitude/longitude in degrees"""
    lat: float
    lon: float

    @classmethod
    def parse(cls, lat: Any, lon: Any) -> "Coordinate":
        """Build a coordinate from untrusted input"""
        lat_deg = _as_degrees(lat, "lat")
        lon_deg = _as_degrees(lon, "lon")

        if not -90.0 <= lat_deg <= 90.0:
            raise InvalidCoordinate(f"lat out of range: {lat_deg}")
        if not -180.0 <= lon_deg <= 180.0:
            raise InvalidCoordinate(f"lon out of range: {lon_deg}")

        return cls(lat_deg, lon_deg)

@dataclass(frozen=True)
class Viewport:
    """
    Bounding box given by its southwest and northeast corners.

    ``west > east`` means the box crosses the antimeridian; it is then
    queried as two boxes split at 180 degrees.
    """
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def parse(cls, south: Any, west: Any, north: Any, east: Any,
              max_span: Optional[float] = None) -> "Viewport":
        """Validate and normalize an untrusted bounding box"""
        s = _as_degrees(south, "south", InvalidViewport)
        w = normalize_longitude(_as_degrees(west, "west", InvalidViewport))
        n = _as_degrees(north, "north", InvalidViewport)
        e = normalize_longitude(_as_degrees(east, "east", InvalidViewport))

        if not (-90.0 <= s <= 90.0 and -90.0 <= n <= 90.0):
            raise InvalidViewport("Latitudes must be within [-90, 90]")
        if s > n:
            raise InvalidViewport(f"south ({s}) must not exceed north ({n})")

        viewport = cls(s, w, n, e)

        if max_span is not None:
            if viewport.height > max_span or viewport.width > max_span:
                raise InvalidViewport(
                    f"Viewport {viewport.width:.2f}x{viewport.height:.2f} degrees "
                    f"exceeds the {max_span:g} degree limit; zoom in"
                )

        return viewport

    @classmethod
    def from_bbox_string(cls, bbox: str, max_span: Optional[float] = None) -> "Viewport":
        """Parse ``"south,west,north,east"``"""
        parts = [p.strip() for p in (bbox or "").split(",")]
        if len(parts) != 4:
            raise InvalidViewport("bbox must be 'south,west,north,east'")
        return cls.parse(*parts, max_span=max_span)

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    @property
    def height(self) -> float:
        return self.north - self.south

    @property
    def width(self) -> float:
        if self.crosses_antimeridian:
            return (180.0 - self.west) + (self.east + 180.0)
        return self.east - self.west

    def boxes(self) -> List[BBox]:
        """Non-wrapping (south, west, north, east) boxes covering the viewport"""
        if self.crosses_antimeridian:
            return [
                (self.south, self.west, self.north, 180.0),
                (self.south, -180.0, self.north, self.east),
            ]
        return [(self.south, self.west, self.north, self.east)]

    def contains(self, coordinate: Coordinate) -> bool:
        if not self.south <= coordinate.lat <= self.north:
            return False
        if self.crosses_antimeridian:
            return coordinate.lon >= self.west or coordinate.lon <= self.east
        return self.west <= coordinate.lon <= self.east

    def to_bbox_string(self) -> str:
        return f"{self.south},{self.west},{self.north},{self.east}"
