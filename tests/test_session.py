import asyncio
from types import SimpleNamespace

from ridetrack.ActorIdentity import ActorIdentity, Role
from ridetrack.config import AccuracyProfile, Config
from ridetrack.errors import LocationTimeout
from ridetrack.geolocation import PermissionStatus
from ridetrack.LocationFix import Coordinate, LocationFix
from ridetrack.maps_client import MapsClient
from ridetrack.Place import Address
from ridetrack.realtime_channel import EVENT_JOB_ASSIGNMENT
from ridetrack.session import TrackingSession

from fakes import FakeChannel, FakeGeolocation, FakeMaps, wait_until

DRIVER = ActorIdentity(id="driver_001", role=Role.DRIVER)
RIDER = ActorIdentity(id="rider_042", role=Role.RIDER)

F0 = LocationFix(latitude=6.4550, longitude=3.3941)
F1 = LocationFix(latitude=6.4560, longitude=3.3941)
F2 = LocationFix(latitude=6.4570, longitude=3.3942)
F3 = LocationFix(latitude=6.4580, longitude=3.3943)

D1 = Coordinate(6.5244, 3.3792)
D2 = Coordinate(6.6018, 3.3515)

JOB = {
    "pickup": {"latitude": 6.4433, "longitude": 3.4158, "address": "Victoria Island"},
    "destination": {"latitude": 6.6018, "longitude": 3.3515, "address": "Ikeja"},
}


def make_session(identity=DRIVER, geo=None, channel=None, maps=None, **overrides):
    cfg = dict(server_url="ws://tracker.test/ws", api_key="test-key",
               search_debounce_s=0.3, eta_refresh_interval_s=60.0,
               min_distance_for_route_update_m=100.0)
    cfg.update(overrides)
    geo = geo or FakeGeolocation(first_fix=F0)
    channel = channel or FakeChannel()
    maps = maps or FakeMaps()
    views = []
    session = TrackingSession(Config(**cfg), identity, geo, maps, channel, on_change=views.append)
    return session, geo, channel, maps, views


def test_latest_fix_is_sent_while_connected():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        await session.wait_idle()
        assert channel.sent == [F0]

        for fix in (F1, F2, F3):
            geo.push(fix)
        await session.wait_idle()
        assert channel.sent[-1] == F3
        assert session.last_sent_fix == F3
        assert session.view.location == F3
        assert session.view.sent_locations == 4
        await session.stop()

    asyncio.run(_test())


def test_fixes_are_not_queued_while_offline():
    async def _test():
        channel = FakeChannel(auto_connect=False)
        session, geo, channel, maps, views = make_session(channel=channel)
        await session.start()
        geo.push(F1)
        geo.push(F2)
        await session.wait_idle()
        assert channel.sent == []
        assert session.view.location == F2

        # latest fix goes out as soon as the channel is back
        channel.set_connected(True)
        await session.wait_idle()
        assert channel.sent == [F2]
        assert session.view.connection.is_connected
        await session.stop()

    asyncio.run(_test())


def test_newest_route_query_wins():
    async def _test():
        session, geo, channel, maps, views = make_session()
        maps.delays[D1] = 0.2
        await session.start()
        session.set_destination(D1)
        await asyncio.sleep(0.01)
        session.set_destination(D2)
        await session.wait_idle()

        assert [dest for _, dest in maps.eta_calls] == [D1, D2]
        assert session.view.route_query.destination == D2
        assert session.view.eta.duration_text == f"eta {D2.latitude}"
        assert session.view.route[-1] == D2.latlon
        assert not session.view.loading_eta
        await session.stop()

    asyncio.run(_test())


def test_small_moves_keep_route_query():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        session.set_destination(D1)
        await session.wait_idle()
        assert len(maps.eta_calls) == 1

        geo.push(LocationFix(latitude=6.4551, longitude=3.3941))  # ~11 m
        await session.wait_idle()
        assert len(maps.eta_calls) == 1

        geo.push(F2)  # ~220 m
        await session.wait_idle()
        assert len(maps.eta_calls) == 2
        assert session.view.route_query.origin == F2.coordinate
        await session.stop()

    asyncio.run(_test())


def test_clear_destination_discards_inflight_eta():
    async def _test():
        session, geo, channel, maps, views = make_session()
        maps.delays[D1] = 0.1
        await session.start()
        session.set_destination(D1)
        await asyncio.sleep(0.01)
        session.clear_destination()
        await session.wait_idle()
        assert session.view.eta is None
        assert session.view.route == []
        await session.stop()

    asyncio.run(_test())


def test_search_is_debounced():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        for text in ("L", "La", "Lag"):
            session.search(text)
            await asyncio.sleep(0.03)
        await asyncio.sleep(0.45)
        await session.wait_idle()
        assert maps.search_calls == ["Lag"]
        assert [p.description for p in session.view.predictions] == ["Lag"]
        await session.stop()

    asyncio.run(_test())


def test_select_place_sets_destination():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        details = await session.select_place("abc")
        await session.wait_idle()
        assert session.view.destination == details.coordinate
        assert session.view.destination_name == "Ikeja"
        assert session.view.eta.success

        assert await session.select_place("missing") is None
        assert session.view.search_error == "Place not found"
        await session.stop()

    asyncio.run(_test())


def test_refresh_address():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        assert await session.refresh_address() is None
        assert session.view.address is None

        maps.address = Address(formatted_address="12 Marina Rd, Lagos", short_address="12 Marina Rd")
        assert (await session.refresh_address()).short_address == "12 Marina Rd"
        assert session.view.address == maps.address
        await session.stop()

    asyncio.run(_test())


def test_job_assignment_computes_both_legs():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        await session.wait_idle()
        channel.emit(EVENT_JOB_ASSIGNMENT, JOB)
        await session.wait_idle()

        job = session.view.job
        assert job.pickup.address == "Victoria Island"
        assert (F0.coordinate, job.pickup.coordinate) in maps.eta_calls
        assert (job.pickup.coordinate, job.destination.coordinate) in maps.eta_calls
        assert session.view.job_eta.success
        assert session.view.job_eta.total_duration_seconds == 120.0
        assert session.view.last_message.event == EVENT_JOB_ASSIGNMENT
        await session.stop()

    asyncio.run(_test())


def test_job_waits_for_first_fix():
    async def _test():
        geo = FakeGeolocation(first_fix=None, fix_error=LocationTimeout("no fix"))
        session, geo, channel, maps, views = make_session(geo=geo)
        await session.start()
        assert session.view.location_error == "no fix"

        channel.emit(EVENT_JOB_ASSIGNMENT, JOB)
        await session.wait_idle()
        assert session.view.job_eta is None

        geo.push(F1)
        await session.wait_idle()
        assert session.view.job_eta.success
        assert session.view.location_error is None
        await session.stop()

    asyncio.run(_test())


def test_rider_ignores_job_assignments():
    async def _test():
        session, geo, channel, maps, views = make_session(identity=RIDER)
        await session.start()
        channel.emit(EVENT_JOB_ASSIGNMENT, JOB)
        await session.wait_idle()
        assert session.view.job is None
        assert session.view.last_message.event == EVENT_JOB_ASSIGNMENT
        await session.stop()

    asyncio.run(_test())


def test_malformed_job_is_dropped():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        channel.emit(EVENT_JOB_ASSIGNMENT, {"pickup": {"latitude": 6.4}})
        await session.wait_idle()
        assert session.view.job is None
        await session.stop()

    asyncio.run(_test())


def test_eta_failure_does_not_stop_tracking():
    async def _test():
        session, geo, channel, maps, views = make_session()
        maps.fail_eta = True
        await session.start()
        session.set_destination(D1)
        await session.wait_idle()
        assert session.view.route_unavailable
        assert not session.view.eta.success

        geo.push(F1)
        await session.wait_idle()
        assert channel.sent[-1] == F1
        await session.stop()

    asyncio.run(_test())


def test_config_error_is_flagged():
    async def _test():
        session, geo, channel, maps, views = make_session()
        maps.config_error = True
        await session.start()
        session.set_destination(D1)
        await session.wait_idle()
        assert session.view.config_error == "Google Maps API key not configured"
        assert session.view.route_unavailable
        await session.stop()

    asyncio.run(_test())


def test_periodic_refresh():
    async def _test():
        session, geo, channel, maps, views = make_session(eta_refresh_interval_s=0.05)
        await session.start()
        session.set_destination(D1)
        await asyncio.sleep(0.22)
        await session.stop()
        calls = len(maps.eta_calls)
        assert calls >= 3
        await asyncio.sleep(0.1)
        assert len(maps.eta_calls) == calls

    asyncio.run(_test())


def test_permission_denied_skips_tracking():
    async def _test():
        geo = FakeGeolocation(first_fix=F0, permission=PermissionStatus.DENIED)
        session, geo, channel, maps, views = make_session(geo=geo)
        await session.start()
        assert session.view.permission is PermissionStatus.DENIED
        assert session.view.location_error == "Location permission was denied"
        assert channel.connect_calls == 0
        assert geo.on_fix is None
        await session.stop()

    asyncio.run(_test())


def test_stop_tears_everything_down():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        await session.wait_idle()
        session.search("Lekki")
        await session.stop()
        await session.stop()

        assert geo.unsubscribed
        assert channel.disconnected
        await asyncio.sleep(0.4)
        assert maps.search_calls == []
        session._on_fix(F1)
        assert session.view.location == F0

    asyncio.run(_test())


def test_listeners_see_updates():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        await session.wait_idle()
        assert views
        assert views[-1] is session.view
        assert views[-1].connection.is_connected
        await wait_until(lambda: session.view.sent_locations == 1)
        await session.stop()

    asyncio.run(_test())


def test_reselecting_destination_keeps_eta():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        session.set_destination(D1)
        await session.wait_idle()
        assert session.view.eta.success

        maps.delays[D1] = 0.1
        session.set_destination(D1, name="Lagos Island")
        await asyncio.sleep(0.01)
        # previous result is held while the refresh is in flight
        assert session.view.eta.success
        assert session.view.route
        await session.wait_idle()

        assert len(maps.eta_calls) == 2
        assert session.view.eta.success
        assert session.view.route[-1] == D1.latlon
        assert session.view.destination_name == "Lagos Island"
        await session.stop()

    asyncio.run(_test())


def test_new_destination_before_first_fix_replaces_query():
    async def _test():
        geo = FakeGeolocation(first_fix=None, fix_error=LocationTimeout("no fix"))
        session, geo, channel, maps, views = make_session(geo=geo)
        await session.start()
        session.set_destination(D1)
        session.set_destination(D2)
        geo.push(F1)
        await session.wait_idle()
        assert session.view.route_query.destination == D2
        assert [dest for _, dest in maps.eta_calls] == [D2]
        await session.stop()

    asyncio.run(_test())


def test_retry_after_permission_regranted_starts_tracking():
    async def _test():
        geo = FakeGeolocation(first_fix=F0, permission=PermissionStatus.DENIED)
        session, geo, channel, maps, views = make_session(geo=geo)
        await session.start()
        assert await session.retry_location() is None
        assert channel.connect_calls == 0
        assert not session.view.tracking

        geo.permission = PermissionStatus.GRANTED
        fix = await session.retry_location()
        await session.wait_idle()
        assert fix == F0
        assert session.view.permission is PermissionStatus.GRANTED
        assert session.view.location_error is None
        assert session.view.tracking
        assert geo.on_fix is not None
        assert channel.connect_calls == 1
        assert channel.sent == [F0]

        # once tracking, a retry only refreshes the fix
        assert await session.retry_location() == F0
        assert channel.connect_calls == 1
        await session.stop()

    asyncio.run(_test())


def test_retry_location_uses_configured_accuracy():
    async def _test():
        accuracy = AccuracyProfile(enable_high_accuracy=False, timeout_ms=5000, max_age_ms=0)
        session, geo, channel, maps, views = make_session(accuracy=accuracy)
        await session.start()
        await session.retry_location()
        assert geo.accuracies == [accuracy, accuracy]
        await session.stop()
        assert await session.retry_location() is None

    asyncio.run(_test())


def test_newer_job_assignment_wins():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        await session.wait_idle()

        first = dict(JOB, pickup={"latitude": 6.4300, "longitude": 3.4200, "address": "Lekki"})
        maps.delays[Coordinate(6.4300, 3.4200)] = 0.1
        channel.emit(EVENT_JOB_ASSIGNMENT, first)
        await asyncio.sleep(0.01)
        channel.emit(EVENT_JOB_ASSIGNMENT, JOB)
        await session.wait_idle()

        assert session.view.job.pickup.address == "Victoria Island"
        assert session.view.job_eta.to_pickup.duration_text == "eta 6.4433"
        await session.stop()

    asyncio.run(_test())


def test_stale_job_config_error_is_dropped():
    async def _test():
        session, geo, channel, maps, views = make_session()
        await session.start()
        await session.wait_idle()

        stale_pickup = Coordinate(6.4300, 3.4200)
        maps.delays[stale_pickup] = 0.1
        maps.config_error_for.add(stale_pickup)
        channel.emit(EVENT_JOB_ASSIGNMENT, dict(JOB, pickup={"latitude": 6.4300, "longitude": 3.4200}))
        await asyncio.sleep(0.01)
        channel.emit(EVENT_JOB_ASSIGNMENT, JOB)
        await session.wait_idle()

        assert session.view.config_error is None
        assert session.view.job_eta.success
        await session.stop()

    asyncio.run(_test())


class MalformedDetailsSession:
    def get(self, url, params=None, timeout=None):
        return SimpleNamespace(raise_for_status=lambda: None,
                               json=lambda: {"status": "OK", "result": {"name": "X"}})

    def close(self):
        pass


def test_malformed_place_details_is_flagged():
    async def _test():
        maps = MapsClient("test-key", session=MalformedDetailsSession())
        session, geo, channel, maps, views = make_session(maps=maps)
        await session.start()
        assert await session.select_place("abc") is None
        assert "malformed place details" in session.view.search_error
        assert session.view.destination is None
        assert session.view.location == F0
        await session.stop()

    asyncio.run(_test())
