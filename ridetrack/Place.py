from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ridetrack.LocationFix import Coordinate


@dataclass(frozen=True)
class PlacePrediction:
    place_id: str
    description: str
    main_text: str = ""
    secondary_text: str = ""


@dataclass(frozen=True)
class PlaceSearchResult:
    success: bool
    predictions: List[PlacePrediction] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class PlaceDetails:
    coordinate: Coordinate
    formatted_address: str
    name: str


@dataclass(frozen=True)
class Address:
    formatted_address: str
    short_address: str
