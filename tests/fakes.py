import asyncio
from typing import Any, Dict, List, Optional

from ridetrack.config import AccuracyProfile
from ridetrack.errors import ConfigError, NotFound
from ridetrack.EtaResult import EtaResult, RouteResult
from ridetrack.geolocation import PermissionStatus
from ridetrack.LocationFix import Coordinate, LocationFix
from ridetrack.Place import Address, PlaceDetails, PlacePrediction, PlaceSearchResult
from ridetrack.realtime_channel import (EVENT_JOB_ASSIGNMENT, ConnectionState, ConnectionStatus,
                                        InboundMessage)


async def wait_until(cond, timeout=2.0, step=0.01):
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while not cond():
        if loop.time() > end:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)


class FakeProvider:
    def __init__(self, fixes=None, permission=PermissionStatus.GRANTED, delay=0.0, error=None):
        self.fixes = list(fixes or [])
        self.permission = permission
        self.delay = delay
        self.error = error
        self.reads = 0

    async def request_permission(self):
        return self.permission

    async def read_fix(self, accuracy: AccuracyProfile) -> LocationFix:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.reads += 1
        if len(self.fixes) > 1:
            return self.fixes.pop(0)
        return self.fixes[0]


class FakeGeolocation:
    """Stands in for GeolocationSource; tests push fixes by hand."""

    def __init__(self, first_fix=None, permission=PermissionStatus.GRANTED, fix_error=None):
        self.first_fix = first_fix
        self.permission = permission
        self.fix_error = fix_error
        self.on_fix = None
        self.unsubscribed = False
        self.accuracies = []

    async def request_permission(self):
        return self.permission

    async def get_current_fix(self, accuracy=None):
        self.accuracies.append(accuracy)
        if self.fix_error is not None:
            raise self.fix_error
        return self.first_fix

    def subscribe(self, on_fix, time_interval_ms, min_distance_m):
        self.on_fix = on_fix
        return object()

    def unsubscribe(self, handle):
        self.unsubscribed = True
        self.on_fix = None

    def push(self, fix):
        if self.on_fix is not None:
            self.on_fix(fix)


class FakeMaps:
    def __init__(self):
        self.eta_calls = []
        self.search_calls = []
        self.delays: Dict[Coordinate, float] = {}
        self.fail_eta = False
        self.config_error = False
        self.config_error_for = set()
        self.address: Optional[Address] = None

    async def calculate_eta(self, origin, destination):
        if self.config_error:
            raise ConfigError("Google Maps API key not configured")
        self.eta_calls.append((origin, destination))
        await asyncio.sleep(self.delays.get(destination, 0.0))
        if destination in self.config_error_for:
            raise ConfigError("Google Maps API key not configured")
        if self.fail_eta:
            return EtaResult.failure("ZERO_RESULTS")
        return EtaResult(
            success=True,
            distance_meters=origin.distance_to(destination),
            duration_seconds=60.0,
            duration_text=f"eta {destination.latitude}",
        )

    async def get_directions(self, origin, destination):
        if self.config_error:
            raise ConfigError("Google Maps API key not configured")
        await asyncio.sleep(self.delays.get(destination, 0.0))
        return RouteResult(success=True, coordinates=[origin.latlon, destination.latlon])

    async def search_places(self, query):
        self.search_calls.append(query)
        return PlaceSearchResult(success=True, predictions=[PlacePrediction("p1", query)])

    async def get_place_details(self, place_id):
        if place_id == "missing":
            raise NotFound("no place")
        return PlaceDetails(coordinate=Coordinate(6.6, 3.35), formatted_address="Ikeja, Lagos", name="Ikeja")

    async def reverse_geocode(self, latitude, longitude):
        if self.address is None:
            raise NotFound("No address found for this location")
        return self.address


class FakeChannel:
    def __init__(self, auto_connect=True):
        self.auto_connect = auto_connect
        self.connected = False
        self.sent: List[LocationFix] = []
        self.identity = None
        self.connect_calls = 0
        self.disconnected = False
        self._status = []
        self._any = []
        self._events: Dict[str, list] = {}

    @property
    def status(self):
        state = ConnectionState.CONNECTED if self.connected else ConnectionState.DISCONNECTED
        return ConnectionStatus(state=state)

    @property
    def is_connected(self):
        return self.connected

    def on_status(self, handler):
        self._status.append(handler)

    def on_any(self, handler):
        self._any.append(handler)

    def on_event(self, event, handler):
        self._events.setdefault(event, []).append(handler)

    def on_job_assignment(self, handler):
        self.on_event(EVENT_JOB_ASSIGNMENT, handler)

    def set_connected(self, flag):
        self.connected = flag
        for h in self._status:
            h(self.status)

    async def connect(self, server_url, identity):
        self.connect_calls += 1
        self.identity = identity
        if self.auto_connect:
            self.set_connected(True)

    async def send_location(self, fix):
        if not self.connected:
            return False
        self.sent.append(fix)
        return True

    async def disconnect(self):
        self.disconnected = True
        self.connected = False

    def emit(self, event: str, data: Any):
        msg = InboundMessage(event=event, data=data, received_at="2026-01-01T00:00:00.000Z")
        for h in self._any:
            h(msg)
        for h in self._events.get(event, []):
            h(data)
