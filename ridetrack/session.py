from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, List, Optional, Set

from ridetrack.ActorIdentity import ActorIdentity, Role
from ridetrack.config import Config
from ridetrack.debounce import Debouncer
from ridetrack.errors import (ChannelError, ConfigError, LocationTimeout, LocationUnavailable,
                              NetworkError, NotFound, PermissionDenied)
from ridetrack.EtaResult import JobEta
from ridetrack.geolocation import GeolocationSource, PermissionStatus, Subscription
from ridetrack.LocationFix import Coordinate, LocationFix
from ridetrack.maps_client import MapsClient
from ridetrack.Place import Address, PlaceDetails
from ridetrack.realtime_channel import ConnectionStatus, InboundMessage, RealtimeChannel
from ridetrack.RouteQuery import JobAssignment, RouteQuery
from ridetrack.SessionView import SessionView

logger = logging.getLogger(__name__)

ChangeListener = Callable[[SessionView], None]


class TrackingSession:
    """
    Composition root of the client.

    Feeds location fixes to the realtime channel, keeps the route/ETA for the
    current destination fresh and folds everything into one SessionView.
    ETA, job and search results carry a recency token; a result whose token
    is no longer the latest is dropped when it arrives.
    """

    def __init__(self,
                 config: Config,
                 identity: ActorIdentity,
                 geolocation: GeolocationSource,
                 maps: MapsClient,
                 channel: RealtimeChannel,
                 on_change: Optional[ChangeListener] = None):
        self.config = config
        self.identity = identity
        self.geolocation = geolocation
        self.maps = maps
        self.channel = channel

        self.view = SessionView(role=identity.role, connection=channel.status)
        self.last_sent_fix: Optional[LocationFix] = None
        self._listeners: List[ChangeListener] = [on_change] if on_change else []

        self._eta_seq = 0
        self._job_seq = 0
        self._search_seq = 0
        self._job_waiting = False

        self._search = Debouncer(config.search_debounce_s, self._run_search)
        self._subscription: Optional[Subscription] = None
        self._timer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._started = False
        self._tracking = False
        self._stopped = False

    # -------------------------
    # plumbing
    # -------------------------
    def on_change(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.view)
            except Exception:
                logger.exception("View listener failed")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session task failed", exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait for in-flight ETA, search and send tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------
    # lifecycle
    # -------------------------
    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        if await self._acquire_permission():
            await self._begin_tracking()

    async def _acquire_permission(self) -> bool:
        status = await self.geolocation.request_permission()
        self.view.permission = status
        if status is not PermissionStatus.GRANTED:
            self.view.location_error = "Location permission was denied"
            self._notify()
            return False
        return True

    async def _begin_tracking(self) -> None:
        self._tracking = True
        self.channel.on_status(self._on_status)
        self.channel.on_any(self._on_message)
        if self.identity.role is Role.DRIVER:
            self.channel.on_job_assignment(self._on_job_assignment)
        self._spawn(self._connect())

        await self._read_location()
        try:
            self._subscription = self.geolocation.subscribe(
                self._on_fix,
                time_interval_ms=self.config.location_interval_ms,
                min_distance_m=self.config.location_distance_m,
            )
        except PermissionDenied as e:
            self.view.location_error = str(e)
            self._notify()

        self._timer = asyncio.get_running_loop().create_task(self._refresh_loop())

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True

        self._search.cancel()
        self.geolocation.unsubscribe(self._subscription)
        self._subscription = None

        pending = list(self._tasks)
        if self._timer is not None:
            pending.append(self._timer)
            self._timer = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        await self.channel.disconnect()
        logger.info("Tracking session stopped")

    async def _connect(self) -> None:
        if not self.config.server_url:
            self.view.config_error = "Tracking server URL not configured"
            self._notify()
            return
        try:
            await self.channel.connect(self.config.server_url, self.identity)
        except ChannelError as e:
            # tracking goes on without the server
            logger.error("Realtime channel unavailable: %s", e)
            self.view.connection = self.channel.status
            self._notify()

    async def _refresh_loop(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.config.eta_refresh_interval_s)
            self.refresh()

    def refresh(self) -> None:
        """Recompute route/ETA for the current query and the job pair."""
        if self._stopped:
            return
        if self.view.route_query is not None:
            self._spawn(self._recompute(self.view.route_query, self._next_eta_token()))
        if self.view.job is not None and self.view.location is not None:
            self._spawn(self._recompute_job(self.view.job))

    # -------------------------
    # location
    # -------------------------
    async def retry_location(self) -> Optional[LocationFix]:
        """
        Fetch a fresh fix. After a denial this asks for permission again and,
        once granted, starts tracking and connects the channel.
        """
        if self._stopped:
            return None
        if not self._tracking:
            self._started = True
            if not await self._acquire_permission():
                return None
            await self._begin_tracking()
            return self.view.location
        return await self._read_location()

    async def _read_location(self) -> Optional[LocationFix]:
        try:
            fix = await self.geolocation.get_current_fix(self.config.accuracy)
        except (PermissionDenied, LocationTimeout, LocationUnavailable) as e:
            logger.warning("Location fetch error: %s", e)
            self.view.location_error = str(e)
            self._notify()
            return None
        self._on_fix(fix)
        return fix

    def _on_fix(self, fix: LocationFix) -> None:
        if self._stopped:
            return
        self.view.location = fix
        self.view.location_error = None

        if self.channel.is_connected:
            self._spawn(self._send_fix(fix))

        self._update_route_query(fix.coordinate)

        if self._job_waiting and self.view.job is not None:
            self._job_waiting = False
            self._spawn(self._recompute_job(self.view.job))

        self._notify()

    async def _send_fix(self, fix: LocationFix) -> None:
        if await self.channel.send_location(fix):
            self.last_sent_fix = fix
            self.view.sent_locations += 1
        else:
            logger.warning("Failed to send location update")

    # -------------------------
    # channel
    # -------------------------
    def _on_status(self, status: ConnectionStatus) -> None:
        if self._stopped:
            return
        was_connected = self.view.connection.is_connected
        self.view.connection = status
        # nothing is buffered while offline, push the latest fix right away
        if status.is_connected and not was_connected and self.view.location is not None:
            self._spawn(self._send_fix(self.view.location))
        self._notify()

    def _on_message(self, msg: InboundMessage) -> None:
        self.view.last_message = msg
        self._notify()

    def _on_job_assignment(self, data: Any) -> None:
        try:
            job = JobAssignment.from_payload(data)
        except ValueError as e:
            logger.warning("Ignoring malformed job assignment: %s", e)
            return
        logger.info("New job assignment: pickup %s", job.pickup.address or job.pickup.coordinate)
        self.view.job = job
        self.view.job_eta = None
        if self.view.location is None:
            self._job_waiting = True
        else:
            self._spawn(self._recompute_job(job))
        self._notify()

    # -------------------------
    # route / ETA
    # -------------------------
    def set_destination(self, destination: Coordinate, name: Optional[str] = None) -> None:
        # the current ETA and route stay up until a newer result replaces them
        if destination != self.view.destination:
            self._eta_seq += 1
            self.view.route_query = None
            self.view.eta = None
            self.view.route = []
            self.view.loading_eta = False
            self.view.route_unavailable = False
        self.view.destination = destination
        self.view.destination_name = name
        if self.view.location is not None:
            query = RouteQuery(self.view.location.coordinate, destination)
            if query == self.view.route_query:
                self._spawn(self._recompute(query, self._next_eta_token()))
            else:
                self._set_route_query(query)
        self._notify()

    def clear_destination(self) -> None:
        # bump the token so in-flight results land nowhere
        self._eta_seq += 1
        self.view.destination = None
        self.view.destination_name = None
        self.view.route_query = None
        self.view.eta = None
        self.view.route = []
        self.view.loading_eta = False
        self.view.route_unavailable = False
        self._notify()

    def _update_route_query(self, origin: Coordinate) -> None:
        dest = self.view.destination
        if dest is None:
            return
        current = self.view.route_query
        if current is not None and current.origin.distance_to(origin) <= self.config.min_distance_for_route_update_m:
            return
        self._set_route_query(current.moved_origin(origin) if current is not None else RouteQuery(origin, dest))

    def _set_route_query(self, query: RouteQuery) -> None:
        if query == self.view.route_query:
            return
        self.view.route_query = query
        self._spawn(self._recompute(query, self._next_eta_token()))

    def _next_eta_token(self) -> int:
        self._eta_seq += 1
        return self._eta_seq

    async def _recompute(self, query: RouteQuery, token: int) -> None:
        self.view.loading_eta = True
        self._notify()

        try:
            eta, route = await asyncio.gather(
                self.maps.calculate_eta(query.origin, query.destination),
                self.maps.get_directions(query.origin, query.destination),
            )
        except ConfigError as e:
            if token == self._eta_seq:
                self.view.config_error = str(e)
                self.view.route_unavailable = True
                self.view.loading_eta = False
                self._notify()
            return

        if token != self._eta_seq:
            logger.debug("Dropping stale ETA result %d (latest %d)", token, self._eta_seq)
            return

        self.view.eta = eta
        self.view.route = route.coordinates if route.success else []
        self.view.route_unavailable = not eta.success
        self.view.loading_eta = False
        if not eta.success:
            logger.warning("Route unavailable: %s", eta.error)
        self._notify()

    async def _recompute_job(self, job: JobAssignment) -> None:
        if self.view.location is None:
            self._job_waiting = True
            return
        self._job_seq += 1
        token = self._job_seq
        to_pickup, to_destination = job.queries(self.view.location.coordinate)

        try:
            a, b = await asyncio.gather(
                self.maps.calculate_eta(to_pickup.origin, to_pickup.destination),
                self.maps.calculate_eta(to_destination.origin, to_destination.destination),
            )
        except ConfigError as e:
            if token == self._job_seq:
                self.view.config_error = str(e)
                self._notify()
            return

        if token != self._job_seq or self.view.job is not job:
            return
        self.view.job_eta = JobEta(to_pickup=a, to_destination=b)
        self._notify()

    # -------------------------
    # places
    # -------------------------
    def search(self, text: str) -> None:
        """Debounced place search; only the last text in the quiet window is sent."""
        self.view.search_text = text
        self._search(text)

    async def _run_search(self, text: str) -> None:
        self._search_seq += 1
        token = self._search_seq
        try:
            result = await self.maps.search_places(text)
        except ConfigError as e:
            self.view.config_error = str(e)
            self._notify()
            return
        if token != self._search_seq:
            return
        self.view.predictions = list(result.predictions)
        self.view.search_error = None if result.success else result.error
        self._notify()

    async def select_place(self, place_id: str) -> Optional[PlaceDetails]:
        try:
            details = await self.maps.get_place_details(place_id)
        except NotFound:
            self.view.search_error = "Place not found"
            self._notify()
            return None
        except NetworkError as e:
            logger.warning("Place details error: %s", e)
            self.view.search_error = str(e)
            self._notify()
            return None
        except ConfigError as e:
            self.view.config_error = str(e)
            self._notify()
            return None

        self.view.predictions = []
        self.view.search_error = None
        self.set_destination(details.coordinate, name=details.name or details.formatted_address)
        return details

    async def refresh_address(self) -> Optional[Address]:
        fix = self.view.location
        if fix is None:
            return None
        try:
            address = await self.maps.reverse_geocode(fix.latitude, fix.longitude)
        except NotFound:
            address = None
        except NetworkError as e:
            logger.warning("Reverse geocoding error: %s", e)
            return None
        except ConfigError as e:
            self.view.config_error = str(e)
            self._notify()
            return None
        self.view.address = address
        self._notify()
        return address
