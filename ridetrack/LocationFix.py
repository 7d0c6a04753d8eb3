from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

LatLon = Tuple[float, float]  # (lat, lon)


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_timestamp(timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    dt = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def check_lat_lon(latitude: float, longitude: float) -> None:
    if not -90.0 <= latitude <= 90.0:
        raise ValueError(f"latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError(f"longitude out of range: {longitude}")


def haversine_m(a: LatLon, b: LatLon) -> float:
    R = 6371000.0
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    x = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * R * math.asin(math.sqrt(x))


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def __post_init__(self):
        check_lat_lon(self.latitude, self.longitude)

    @property
    def latlon(self) -> LatLon:
        return self.latitude, self.longitude

    @classmethod
    def from_latlon(cls, p: LatLon) -> "Coordinate":
        return cls(latitude=p[0], longitude=p[1])

    def distance_to(self, other: "Coordinate") -> float:
        return haversine_m(self.latlon, other.latlon)

    def as_query(self) -> str:
        return f"{self.latitude},{self.longitude}"


@dataclass(frozen=True)
class LocationFix:
    """
    A single location reading. Never mutated; each new reading is a new fix.
    accuracy: horizontal accuracy in metres
    speed: metres per second
    heading: degrees clockwise from north
    """
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    timestamp_ms: int = 0

    def __post_init__(self):
        check_lat_lon(self.latitude, self.longitude)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    @property
    def latlon(self) -> LatLon:
        return self.latitude, self.longitude

    @property
    def iso_timestamp(self) -> str:
        return iso_timestamp(self.timestamp_ms or None)

    def age_ms(self, at_ms: Optional[int] = None) -> int:
        if at_ms is None:
            at_ms = now_ms()
        return at_ms - self.timestamp_ms
