from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ridetrack.LocationFix import Coordinate


@dataclass(frozen=True)
class RouteQuery:
    origin: Coordinate
    destination: Coordinate

    def moved_origin(self, origin: Coordinate) -> "RouteQuery":
        return RouteQuery(origin=origin, destination=self.destination)


@dataclass(frozen=True)
class Waypoint:
    coordinate: Coordinate
    address: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Waypoint":
        if not isinstance(payload, dict):
            raise ValueError(f"waypoint must be an object, got {type(payload).__name__}")
        try:
            lat = float(payload["latitude"])
            lon = float(payload["longitude"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"waypoint missing coordinates: {payload}") from e
        return cls(coordinate=Coordinate(lat, lon), address=payload.get("address"))


@dataclass(frozen=True)
class JobAssignment:
    pickup: Waypoint
    destination: Waypoint

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "JobAssignment":
        if not isinstance(payload, dict):
            raise ValueError("job assignment must be an object")
        if "pickup" not in payload or "destination" not in payload:
            raise ValueError("job assignment needs pickup and destination")
        return cls(
            pickup=Waypoint.from_payload(payload["pickup"]),
            destination=Waypoint.from_payload(payload["destination"]),
        )

    def queries(self, current: Coordinate) -> Tuple[RouteQuery, RouteQuery]:
        to_pickup = RouteQuery(origin=current, destination=self.pickup.coordinate)
        to_destination = RouteQuery(origin=self.pickup.coordinate, destination=self.destination.coordinate)
        return to_pickup, to_destination
