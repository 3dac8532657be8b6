"""Domain records shared by the gateway, store, reconciler and write path"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterator, Optional, Tuple, Union

from pricemap.utils.exceptions import InvalidIdentity
from pricemap.utils.geometry import Coordinate, Viewport

# 1e-5 degrees is roughly one metre
COORDINATE_PRECISION = 5
_SCALE = 10 ** COORDINATE_PRECISION

_COORDINATE_KEY = re.compile(
    r"^@(-?)(\d{1,3})\.(\d{%d}),(-?)(\d{1,3})\.(\d{%d})$"
    % (COORDINATE_PRECISION, COORDINATE_PRECISION)
)
_MAX_FEED_REF = 128

def _format_fixed(value: int) -> str:
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), _SCALE)
    return f"{sign}{whole}.{frac:0{COORDINATE_PRECISION}d}"

@dataclass(frozen=True)
class FeedIdentity:
    """Identity assigned by the POI feed (an OSM node id)"""
    ref: str

    @property
    def key(self) -> str:
        return self.ref

@dataclass(frozen=True)
class CoordinateIdentity:
    """Identity derived from a coordinate quantized to 1e-5 degrees"""
    lat_e5: int
    lon_e5: int

    @classmethod
    def from_coordinate(cls, coordinate: Coordinate) -> "CoordinateIdentity":
        return cls(int(round(coordinate.lat * _SCALE)), int(round(coordinate.lon * _SCALE)))

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat_e5 / _SCALE, self.lon_e5 / _SCALE)

    @property
    def key(self) -> str:
        return f"@{_format_fixed(self.lat_e5)},{_format_fixed(self.lon_e5)}"

PointIdentity = Union[FeedIdentity, CoordinateIdentity]

def feed_identity(ref: Any) -> FeedIdentity:
    """Wrap a raw feed id (int or str) as a FeedIdentity"""
    text = str(ref).strip()
    if not text or text.startswith("@") or len(text) > _MAX_FEED_REF or any(c.isspace() for c in text):
        raise InvalidIdentity(f"Invalid feed identity: {ref!r}")
    return FeedIdentity(text)

def parse_identity(key: str) -> PointIdentity:
    """Map a rendered identity key back to its variant"""
    key = (key or "").strip()
    if not key.startswith("@"):
        return feed_identity(key)

    match = _COORDINATE_KEY.match(key)
    if not match:
        raise InvalidIdentity(f"Invalid coordinate identity: {key!r}")

    lat_sign, lat_whole, lat_frac, lon_sign, lon_whole, lon_frac = match.groups()
    lat_e5 = int(lat_whole) * _SCALE + int(lat_frac)
    lon_e5 = int(lon_whole) * _SCALE + int(lon_frac)
    if lat_e5 > 90 * _SCALE or lon_e5 > 180 * _SCALE:
        raise InvalidIdentity(f"Coordinate identity out of range: {key!r}")

    return CoordinateIdentity(-lat_e5 if lat_sign else lat_e5,
                              -lon_e5 if lon_sign else lon_e5)

@dataclass(frozen=True)
class PointOfInterest:
    """A station as reported by the feed; never persisted"""
    identity: PointIdentity
    coordinate: Coordinate
    name: Optional[str] = None

    @property
    def lookup_identities(self) -> Tuple[PointIdentity, ...]:
        """Identities an annotation for this point may be stored under"""
        if isinstance(self.identity, FeedIdentity):
            return (self.identity, CoordinateIdentity.from_coordinate(self.coordinate))
        return (self.identity,)

@dataclass(frozen=True)
class Annotation:
    """A user-submitted price for a point"""
    identity: PointIdentity
    price: Decimal
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.identity.key,
            "price": float(self.price),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Annotation":
        return cls(
            identity=parse_identity(str(data["id"])),
            price=Decimal(str(data["price"])),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

@dataclass(frozen=True)
class MergedEntry:
    poi: PointOfInterest
    annotation: Optional[Annotation] = None

    @property
    def price(self) -> Optional[Decimal]:
        return self.annotation.price if self.annotation else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.poi.identity.key,
            "lat": self.poi.coordinate.lat,
            "lon": self.poi.coordinate.lon,
            "name": self.poi.name,
            "price": float(self.annotation.price) if self.annotation else None,
            "updated_at": self.annotation.updated_at.isoformat() if self.annotation else None,
        }

@dataclass(frozen=True)
class MergedView:
    """
    POIs of one viewport with their annotations, in feed order.

    ``unresolved`` lists identities whose annotation lookup failed; those
    entries are present but unset.
    """
    entries: Tuple[MergedEntry, ...] = ()
    unresolved: FrozenSet[PointIdentity] = field(default_factory=frozenset)
    viewport: Optional[Viewport] = None

    def __iter__(self) -> Iterator[MergedEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def degraded(self) -> bool:
        return bool(self.unresolved)

    def get(self, identity: PointIdentity) -> Optional[MergedEntry]:
        for entry in self.entries:
            if entry.poi.identity == identity:
                return entry
        return None

    def fold(self, annotation: Annotation) -> "MergedView":
        """
        Apply a fresh write result without a new reconcile.

        Matches by identity, or by quantized coordinate for feed-identified
        entries. An unmatched coordinate identity is appended as a new point.
        """
        entries = list(self.entries)
        matched = False
        for i, entry in enumerate(entries):
            if annotation.identity in entry.poi.lookup_identities:
                entries[i] = replace(entry, annotation=annotation)
                matched = True

        if not matched and isinstance(annotation.identity, CoordinateIdentity):
            poi = PointOfInterest(annotation.identity, annotation.identity.coordinate)
            entries.append(MergedEntry(poi, annotation))

        return replace(self, entries=tuple(entries))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stations": [entry.to_dict() for entry in self.entries],
            "count": len(self.entries),
            "degraded": self.degraded,
            "unresolved": sorted(identity.key for identity in self.unresolved),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], viewport: Optional[Viewport] = None) -> "MergedView":
        entries = []
        for station in data.get("stations", []):
            identity = parse_identity(str(station["id"]))
            poi = PointOfInterest(identity, Coordinate(station["lat"], station["lon"]), station.get("name"))
            annotation = None
            if station.get("price") is not None:
                annotation = Annotation(
                    identity,
                    Decimal(str(station["price"])),
                    datetime.fromisoformat(station["updated_at"]),
                )
            entries.append(MergedEntry(poi, annotation))

        unresolved = frozenset(parse_identity(key) for key in data.get("unresolved", []))
        return cls(tuple(entries), unresolved, viewport)
