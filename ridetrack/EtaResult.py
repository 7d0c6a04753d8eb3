from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ridetrack.LocationFix import LatLon


@dataclass(frozen=True)
class EtaResult:
    success: bool
    distance_meters: Optional[float] = None
    distance_text: Optional[str] = None
    duration_seconds: Optional[float] = None
    duration_text: Optional[str] = None
    duration_in_traffic_seconds: Optional[float] = None
    duration_in_traffic_text: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "EtaResult":
        return cls(success=False, error=error)

    @property
    def best_duration_seconds(self) -> Optional[float]:
        if self.duration_in_traffic_seconds is not None:
            return self.duration_in_traffic_seconds
        return self.duration_seconds


@dataclass(frozen=True)
class RouteResult:
    success: bool
    polyline: str = ""
    coordinates: List[LatLon] = field(default_factory=list)
    distance_meters: Optional[float] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "RouteResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class JobEta:
    to_pickup: EtaResult
    to_destination: EtaResult

    @property
    def success(self) -> bool:
        return self.to_pickup.success and self.to_destination.success

    @property
    def total_duration_seconds(self) -> Optional[float]:
        a = self.to_pickup.best_duration_seconds
        b = self.to_destination.best_duration_seconds
        if a is None or b is None:
            return None
        return a + b
