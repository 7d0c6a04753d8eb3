from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from ridetrack.errors import ConfigError

DEFAULT_SERVER_URL = "https://mini-trace.onrender.com"
PLACEHOLDER_SERVER_URL = "ws://your-server-ip:3000"
PLACEHOLDER_API_KEY = "your_google_maps_api_key_here"

# Lagos Island Delivery Point
DUMMY_DESTINATION = (6.5244, 3.3792)

# location
LOCATION_UPDATE_INTERVAL_MS = 7000
LOCATION_DISTANCE_INTERVAL_M = 10.0
MIN_DISTANCE_FOR_ROUTE_UPDATE_M = 100.0

# realtime channel
MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_S = 1.0
RECONNECT_DELAY_MAX_S = 10.0
CONNECT_TIMEOUT_S = 30.0
PLATFORM = "mobile-app"

# mapping service
ETA_UPDATE_INTERVAL_S = 120.0
SEARCH_DEBOUNCE_S = 0.3
HTTP_TIMEOUT_S = 15.0


@dataclass(frozen=True)
class AccuracyProfile:
    enable_high_accuracy: bool = True
    timeout_ms: int = 15000
    max_age_ms: int = 1000


@dataclass(frozen=True)
class Config:
    server_url: str = DEFAULT_SERVER_URL
    api_key: Optional[str] = None

    accuracy: AccuracyProfile = field(default_factory=AccuracyProfile)
    location_interval_ms: int = LOCATION_UPDATE_INTERVAL_MS
    location_distance_m: float = LOCATION_DISTANCE_INTERVAL_M
    min_distance_for_route_update_m: float = MIN_DISTANCE_FOR_ROUTE_UPDATE_M

    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    reconnect_delay_s: float = RECONNECT_DELAY_S
    reconnect_delay_max_s: float = RECONNECT_DELAY_MAX_S
    connect_timeout_s: float = CONNECT_TIMEOUT_S
    platform: str = PLATFORM

    eta_refresh_interval_s: float = ETA_UPDATE_INTERVAL_S
    search_debounce_s: float = SEARCH_DEBOUNCE_S
    http_timeout_s: float = HTTP_TIMEOUT_S


def valid_api_key(key: Optional[str]) -> bool:
    if not key or not key.strip():
        return False
    return PLACEHOLDER_API_KEY not in key


def resolve_server_url(url: Optional[str]) -> str:
    if not url or not url.strip() or url.strip() == PLACEHOLDER_SERVER_URL:
        return DEFAULT_SERVER_URL
    return url.strip()


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_config(env: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from environment variables, falling back to defaults."""
    env = os.environ if env is None else env

    accuracy = AccuracyProfile(
        enable_high_accuracy=env.get("RIDETRACK_HIGH_ACCURACY", "1") not in ("0", "false", "no"),
        timeout_ms=int(_env_float(env, "RIDETRACK_LOCATION_TIMEOUT_MS", 15000)),
        max_age_ms=int(_env_float(env, "RIDETRACK_LOCATION_MAX_AGE_MS", 1000)),
    )

    return Config(
        server_url=resolve_server_url(env.get("RIDETRACK_SERVER_URL")),
        api_key=env.get("GOOGLE_MAPS_API_KEY"),
        accuracy=accuracy,
        location_interval_ms=int(_env_float(env, "RIDETRACK_LOCATION_INTERVAL_MS", LOCATION_UPDATE_INTERVAL_MS)),
        location_distance_m=_env_float(env, "RIDETRACK_LOCATION_DISTANCE_M", LOCATION_DISTANCE_INTERVAL_M),
        min_distance_for_route_update_m=_env_float(
            env, "RIDETRACK_ROUTE_UPDATE_DISTANCE_M", MIN_DISTANCE_FOR_ROUTE_UPDATE_M),
        max_reconnect_attempts=int(_env_float(env, "RIDETRACK_MAX_RECONNECT_ATTEMPTS", MAX_RECONNECT_ATTEMPTS)),
        reconnect_delay_s=_env_float(env, "RIDETRACK_RECONNECT_DELAY_S", RECONNECT_DELAY_S),
        reconnect_delay_max_s=_env_float(env, "RIDETRACK_RECONNECT_DELAY_MAX_S", RECONNECT_DELAY_MAX_S),
        connect_timeout_s=_env_float(env, "RIDETRACK_CONNECT_TIMEOUT_S", CONNECT_TIMEOUT_S),
        eta_refresh_interval_s=_env_float(env, "RIDETRACK_ETA_INTERVAL_S", ETA_UPDATE_INTERVAL_S),
        search_debounce_s=_env_float(env, "RIDETRACK_SEARCH_DEBOUNCE_S", SEARCH_DEBOUNCE_S),
        http_timeout_s=_env_float(env, "RIDETRACK_HTTP_TIMEOUT_S", HTTP_TIMEOUT_S),
    )
