from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ridetrack.config import AccuracyProfile
from ridetrack.errors import LocationUnavailable
from ridetrack.geolocation import PermissionStatus
from ridetrack.LocationFix import LatLon, LocationFix, now_ms
from ridetrack.ReplayRoute import ReplayRoute


@dataclass
class SimulatedDevice:
    """LocationProvider that moves along a ReplayRoute in (scaled) wall time."""
    route: ReplayRoute
    time_scale: float = 1.0
    permission: PermissionStatus = PermissionStatus.GRANTED
    accuracy_m: float = 5.0
    altitude: Optional[float] = None
    clock: Callable[[], float] = time.monotonic
    started_at: Optional[float] = None
    idx: int = 0
    pos: Optional[LatLon] = None
    done: bool = False
    available: bool = True
    reads: int = field(default=0, repr=False)

    async def request_permission(self) -> PermissionStatus:
        return self.permission

    def elapsed_s(self) -> float:
        now = self.clock()
        if self.started_at is None:
            self.started_at = now
        return (now - self.started_at) * self.time_scale

    def update_position(self, t_s: float) -> None:
        if self.done:
            return
        if t_s >= self.route.duration:
            self.pos = self.route.geometry_latlon[-1]
            self.done = True
            return
        self.pos, self.idx = self.route.get_pos_at_time(t_s)

    async def read_fix(self, accuracy: AccuracyProfile) -> LocationFix:
        if not self.available:
            raise LocationUnavailable("simulated device has no signal")
        self.reads += 1
        self.update_position(self.elapsed_s())
        lat, lon = self.pos
        moving = not self.done and len(self.route.geometry_latlon) > 1
        speed = 0.0
        if moving and self.route.duration_list[self.idx] > 0.0:
            speed = self.route.seg_dist_m[self.idx] / self.route.duration_list[self.idx] * self.time_scale
        return LocationFix(
            latitude=lat,
            longitude=lon,
            accuracy=self.accuracy_m if accuracy.enable_high_accuracy else self.accuracy_m * 4,
            speed=speed,
            heading=self.route.heading_at(self.idx),
            altitude=self.altitude,
            timestamp_ms=now_ms(),
        )
