import asyncio

import polyline
import pytest

from ridetrack.config import AccuracyProfile
from ridetrack.errors import LocationUnavailable
from ridetrack.geolocation import GeolocationSource
from ridetrack.ReplayRoute import ReplayRoute, bearing_deg, cum_array
from ridetrack.SimulatedDevice import SimulatedDevice

POINTS = [(6.4550, 3.3941), (6.4650, 3.3941), (6.4650, 3.4041)]


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_cum_array():
    assert cum_array([1.0, 2.0, 3.0]) == [0.0, 1.0, 3.0, 6.0]
    assert cum_array([]) == [0.0]


def test_bearing():
    assert abs(bearing_deg((0.0, 0.0), (1.0, 0.0))) < 1e-6
    assert abs(bearing_deg((0.0, 0.0), (0.0, 1.0)) - 90.0) < 1e-6


def test_route_timing():
    route = ReplayRoute.from_points(POINTS, speed_mps=10.0)
    assert len(route.seg_dist_m) == 2
    assert route.dist == pytest.approx(sum(route.seg_dist_m))
    assert route.duration == pytest.approx(route.dist / 10.0)

    start, idx = route.get_pos_at_time(-5)
    assert start == POINTS[0] and idx == 0
    end, _ = route.get_pos_at_time(route.duration + 1)
    assert end == POINTS[-1]

    half = route.cum_time_s[1] / 2
    (lat, lon), idx = route.get_pos_at_time(half)
    assert idx == 0
    assert lat == pytest.approx(6.4600)
    assert lon == pytest.approx(3.3941)


def test_route_from_polyline():
    route = ReplayRoute.from_polyline(polyline.encode(POINTS, 5), speed_mps=5.0)
    assert len(route.geometry_latlon) == 3


def test_route_rejects_bad_input():
    with pytest.raises(ValueError):
        ReplayRoute.from_points([], speed_mps=1.0)
    with pytest.raises(ValueError):
        ReplayRoute.from_points(POINTS, speed_mps=0.0)


def test_simulated_device_moves_with_clock():
    async def _test():
        clock = FakeClock()
        route = ReplayRoute.from_points(POINTS, speed_mps=10.0)
        device = SimulatedDevice(route, clock=clock)
        profile = AccuracyProfile()

        first = await device.read_fix(profile)
        assert first.latlon == POINTS[0]
        assert first.heading == pytest.approx(0.0, abs=1e-6)
        assert first.speed == pytest.approx(10.0)

        clock.now += route.cum_time_s[1] + 1.0
        second = await device.read_fix(profile)
        assert device.idx == 1
        assert second.heading == pytest.approx(90.0, abs=0.5)

        clock.now += route.duration
        last = await device.read_fix(profile)
        assert last.latlon == POINTS[-1]
        assert device.done
        assert last.speed == 0.0
        assert device.reads == 3

    asyncio.run(_test())


def test_simulated_device_time_scale():
    async def _test():
        clock = FakeClock()
        route = ReplayRoute.from_points(POINTS, speed_mps=10.0)
        device = SimulatedDevice(route, time_scale=10.0, clock=clock)
        await device.read_fix(AccuracyProfile())
        clock.now += route.duration / 10.0 + 0.01
        fix = await device.read_fix(AccuracyProfile())
        assert fix.latlon == POINTS[-1]

    asyncio.run(_test())


def test_simulated_device_signal_loss():
    async def _test():
        device = SimulatedDevice(ReplayRoute.from_points(POINTS, speed_mps=10.0))
        device.available = False
        with pytest.raises(LocationUnavailable):
            await device.read_fix(AccuracyProfile())

        source = GeolocationSource(device)
        with pytest.raises(LocationUnavailable):
            await source.get_current_fix()
        device.available = True
        fix = await source.get_current_fix()
        assert fix.latlon == POINTS[0]

    asyncio.run(_test())


def test_first_fix_starts_at_route_origin():
    async def _test():
        ticks = iter(range(100, 200))
        device = SimulatedDevice(ReplayRoute.from_points(POINTS, speed_mps=10.0),
                                 clock=lambda: float(next(ticks)))
        fix = await device.read_fix(AccuracyProfile())
        assert fix.latlon == POINTS[0]
        assert device.started_at == 100.0

    asyncio.run(_test())
