from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from ridetrack.ActorIdentity import ActorIdentity, Role
from ridetrack.config import DUMMY_DESTINATION, Config, load_config, valid_api_key
from ridetrack.errors import ConfigError
from ridetrack.geolocation import GeolocationSource
from ridetrack.LocationFix import Coordinate, LatLon
from ridetrack.map_view import save_map
from ridetrack.maps_client import MapsClient
from ridetrack.realtime_channel import RealtimeChannel
from ridetrack.ReplayRoute import ReplayRoute
from ridetrack.session import TrackingSession
from ridetrack.SimulatedDevice import SimulatedDevice

logger = logging.getLogger("ridetrack")

LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}
DEFAULT_START: LatLon = (6.4550, 3.3941)  # Lagos, Marina


def configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def parse_latlon(value: str) -> LatLon:
    try:
        lat, lon = (float(v) for v in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected 'lat,lon', got {value!r}")
    Coordinate(lat, lon)
    return lat, lon


async def build_route(maps: MapsClient, start: LatLon, dest: LatLon, speed_mps: float) -> ReplayRoute:
    # follow the real road geometry when the directions API is usable
    if valid_api_key(maps.api_key):
        r = await maps.get_directions(Coordinate.from_latlon(start), Coordinate.from_latlon(dest))
        if r.success and len(r.coordinates) > 1:
            return ReplayRoute.from_points(r.coordinates, speed_mps)
        logger.warning("Directions unavailable (%s), replaying a straight line", r.error)
    return ReplayRoute.from_points([start, dest], speed_mps)


async def run(args: argparse.Namespace, config: Config) -> int:
    identity = ActorIdentity(id=args.actor_id, role=Role(args.role)) if args.actor_id \
        else ActorIdentity.generate(Role(args.role))
    maps = MapsClient.from_config(config)
    route = await build_route(maps, args.start, args.dest, args.speed)
    device = SimulatedDevice(route=route, time_scale=args.time_scale)

    session = TrackingSession(
        config=config,
        identity=identity,
        geolocation=GeolocationSource(device, accuracy=config.accuracy),
        maps=maps,
        channel=RealtimeChannel.from_config(config),
    )
    await session.start()
    if session.view.tracking:
        session.set_destination(Coordinate.from_latlon(args.dest), name="Destination")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + args.duration
    try:
        while loop.time() < deadline and not device.done:
            await asyncio.sleep(args.map_interval)
            v = session.view
            eta = v.eta.duration_text if v.eta is not None and v.eta.success else "-"
            logger.info("state=%s attempts=%d sent=%d eta=%s",
                        v.connection.state.value, v.connection.reconnect_attempts, v.sent_locations, eta)
            if args.map:
                save_map(v, args.map)
    finally:
        await session.stop()
        maps.close()
    return 0


def resolve_log_level(args: argparse.Namespace) -> str:
    return "debug" if args.verbose else args.log_level


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay a trip through the live tracking client.")
    parser.add_argument("--role", choices=[r.value for r in Role], default=Role.DRIVER.value)
    parser.add_argument("--actor-id", help="Actor id sent to the server (generated when omitted).")
    parser.add_argument("--server-url", help="Tracking server URL (overrides RIDETRACK_SERVER_URL).")
    parser.add_argument("--start", type=parse_latlon, default=DEFAULT_START, help="Start as 'lat,lon'.")
    parser.add_argument("--dest", type=parse_latlon,
                        default=DUMMY_DESTINATION,
                        help="Destination as 'lat,lon'.")
    parser.add_argument("--speed", type=float, default=10.0, help="Replay speed in m/s.")
    parser.add_argument("--time-scale", type=float, default=1.0, help="Simulated seconds per real second.")
    parser.add_argument("--duration", type=float, default=60.0, help="Seconds to run.")
    parser.add_argument("--map", default="map.html", help="HTML map to keep updated ('' to disable).")
    parser.add_argument("--map-interval", type=float, default=5.0, help="Seconds between map writes.")
    parser.add_argument("--log-level", default="info", help="Log level (debug, info, warning, error, critical).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Shorthand for --log-level debug.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.log_level not in LOG_LEVELS:
        parser.error(f"Invalid log level '{args.log_level}'. Expected one of {sorted(LOG_LEVELS)}.")
    if args.speed <= 0 or args.time_scale <= 0:
        parser.error("--speed and --time-scale must be positive.")
    configure_logging(resolve_log_level(args))

    try:
        config = load_config()
    except ConfigError as e:
        parser.error(str(e))
    if args.server_url:
        config = replace(config, server_url=args.server_url)

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
