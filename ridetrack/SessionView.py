from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ridetrack.ActorIdentity import Role
from ridetrack.EtaResult import EtaResult, JobEta
from ridetrack.geolocation import PermissionStatus
from ridetrack.LocationFix import Coordinate, LatLon, LocationFix
from ridetrack.Place import Address, PlacePrediction
from ridetrack.realtime_channel import ConnectionStatus, InboundMessage
from ridetrack.RouteQuery import JobAssignment, RouteQuery


@dataclass
class SessionView:
    """Everything the presentation layer needs, owned by TrackingSession."""
    role: Role
    permission: PermissionStatus = PermissionStatus.UNDETERMINED
    location: Optional[LocationFix] = None
    connection: ConnectionStatus = field(default_factory=ConnectionStatus)
    last_message: Optional[InboundMessage] = None
    sent_locations: int = 0

    destination: Optional[Coordinate] = None
    destination_name: Optional[str] = None
    route_query: Optional[RouteQuery] = None
    eta: Optional[EtaResult] = None
    route: List[LatLon] = field(default_factory=list)
    loading_eta: bool = False

    search_text: str = ""
    predictions: List[PlacePrediction] = field(default_factory=list)
    address: Optional[Address] = None

    job: Optional[JobAssignment] = None
    job_eta: Optional[JobEta] = None

    # non-fatal problems for the UI to show
    location_error: Optional[str] = None
    route_unavailable: bool = False
    search_error: Optional[str] = None
    config_error: Optional[str] = None

    @property
    def tracking(self) -> bool:
        return self.permission is PermissionStatus.GRANTED and self.location is not None
