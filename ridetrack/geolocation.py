from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

from ridetrack.config import AccuracyProfile
from ridetrack.errors import LocationTimeout, LocationUnavailable, PermissionDenied
from ridetrack.LocationFix import LocationFix, haversine_m

logger = logging.getLogger(__name__)

FixCallback = Callable[[LocationFix], None]


class PermissionStatus(Enum):
    UNDETERMINED = "undetermined"
    GRANTED = "granted"
    DENIED = "denied"


class LocationProvider(Protocol):
    """Platform binding that knows how to ask for permission and read the GPS."""

    async def request_permission(self) -> PermissionStatus: ...

    async def read_fix(self, accuracy: AccuracyProfile) -> LocationFix: ...


@dataclass(eq=False)
class Subscription:
    on_fix: FixCallback
    time_interval_ms: int
    min_distance_m: float
    sample_interval_s: float
    active: bool = True
    last_fix: Optional[LocationFix] = None
    last_emit_at: Optional[float] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def should_emit(self, fix: LocationFix, now: float) -> bool:
        if self.last_fix is None or self.last_emit_at is None:
            return True
        if (now - self.last_emit_at) * 1000.0 >= self.time_interval_ms:
            return True
        return haversine_m(self.last_fix.latlon, fix.latlon) > self.min_distance_m


class GeolocationSource:
    """
    Wraps a LocationProvider with permission handling, one-shot fixes and a
    single threshold driven subscription.
    """

    def __init__(self,
                 provider: LocationProvider,
                 accuracy: AccuracyProfile = AccuracyProfile(),
                 sample_interval_s: float = 1.0):
        self.provider = provider
        self.accuracy = accuracy
        self.sample_interval_s = sample_interval_s
        self.permission = PermissionStatus.UNDETERMINED
        self.last_fix: Optional[LocationFix] = None
        self._subscription: Optional[Subscription] = None

    async def request_permission(self) -> PermissionStatus:
        """
        Ask the provider for permission. A denial blocks fixes and subscriptions
        until a later request finds it re-granted.
        """
        try:
            status = await self.provider.request_permission()
        except Exception:
            logger.exception("Location permission request failed")
            status = PermissionStatus.DENIED
        self.permission = status
        if status is not PermissionStatus.GRANTED:
            logger.warning("Location permission was denied")
        return status

    def _check_permission(self) -> None:
        if self.permission is PermissionStatus.DENIED:
            raise PermissionDenied("Location permission was denied")

    async def _read(self, accuracy: AccuracyProfile) -> LocationFix:
        try:
            fix = await asyncio.wait_for(self.provider.read_fix(accuracy),
                                         timeout=accuracy.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise LocationTimeout(f"no location fix within {accuracy.timeout_ms} ms")
        except (LocationTimeout, LocationUnavailable):
            raise
        except Exception as e:
            raise LocationUnavailable(f"Failed to get current location: {e}") from e
        self.last_fix = fix
        return fix

    async def get_current_fix(self, accuracy: Optional[AccuracyProfile] = None) -> LocationFix:
        self._check_permission()
        accuracy = accuracy or self.accuracy
        cached = self.last_fix
        if cached is not None and cached.age_ms() <= accuracy.max_age_ms:
            return cached
        return await self._read(accuracy)

    @property
    def subscription(self) -> Optional[Subscription]:
        return self._subscription

    def subscribe(self,
                  on_fix: FixCallback,
                  time_interval_ms: int,
                  min_distance_m: float) -> Subscription:
        """Start watching. Replaces any running subscription."""
        self._check_permission()
        if self._subscription is not None:
            self.unsubscribe(self._subscription)

        sample_s = min(self.sample_interval_s, time_interval_ms / 1000.0)
        sub = Subscription(
            on_fix=on_fix,
            time_interval_ms=time_interval_ms,
            min_distance_m=min_distance_m,
            sample_interval_s=max(sample_s, 0.001),
        )
        sub.task = asyncio.get_running_loop().create_task(self._watch(sub))
        self._subscription = sub
        return sub

    def unsubscribe(self, handle: Optional[Subscription]) -> None:
        if handle is None:
            return
        handle.active = False
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        if self._subscription is handle:
            self._subscription = None

    async def _watch(self, sub: Subscription) -> None:
        loop = asyncio.get_running_loop()
        while sub.active:
            try:
                fix = await self._read(self.accuracy)
            except (LocationTimeout, LocationUnavailable) as e:
                logger.warning("Location tracking sample failed: %s", e)
            else:
                now = loop.time()
                # re-check after the await so nothing fires once unsubscribed
                if sub.active and sub.should_emit(fix, now):
                    sub.last_fix = fix
                    sub.last_emit_at = now
                    try:
                        sub.on_fix(fix)
                    except Exception:
                        logger.exception("Location callback failed")
            await asyncio.sleep(sub.sample_interval_s)
