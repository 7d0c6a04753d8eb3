from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import polyline
import requests

from ridetrack.config import HTTP_TIMEOUT_S, Config, valid_api_key
from ridetrack.errors import ConfigError, NetworkError, NotFound
from ridetrack.EtaResult import EtaResult, RouteResult
from ridetrack.LocationFix import Coordinate, LatLon, haversine_m
from ridetrack.Place import Address, PlaceDetails, PlacePrediction, PlaceSearchResult

logger = logging.getLogger(__name__)

GOOGLE_MAPS_BASE = "https://maps.googleapis.com/maps/api"

# provider statuses that mean "nothing there" rather than a failure
EMPTY_STATUSES = ("ZERO_RESULTS", "NOT_FOUND")

# raised while picking fields out of a payload that has the wrong shape
MALFORMED = (KeyError, IndexError, TypeError, ValueError, AttributeError)


# -------------------------
# pure helpers
# -------------------------
def decode_polyline(encoded: str) -> List[LatLon]:
    """Decode a precision 5 encoded polyline into (lat, lon) points."""
    if not encoded:
        return []
    return [(lat, lon) for lat, lon in polyline.decode(encoded, 5)]


def calculate_distance(a: Coordinate, b: Coordinate) -> float:
    """Great circle distance in metres."""
    return haversine_m(a.latlon, b.latlon)


def _prediction(p: Dict[str, Any]) -> PlacePrediction:
    fmt = p.get("structured_formatting") or {}
    return PlacePrediction(
        place_id=p.get("place_id", ""),
        description=p.get("description", ""),
        main_text=fmt.get("main_text", ""),
        secondary_text=fmt.get("secondary_text", ""),
    )


def _value(part: Optional[Dict[str, Any]]) -> Optional[float]:
    if not part or "value" not in part:
        return None
    return float(part["value"])


def _text(part: Optional[Dict[str, Any]]) -> Optional[str]:
    if not part:
        return None
    return part.get("text")


def _provider_error(data: Dict[str, Any], fallback: str) -> str:
    status = data.get("status", "UNKNOWN")
    return data.get("error_message") or f"{fallback} ({status})"


# -------------------------
# client
# -------------------------
class MapsClient:
    """
    Thin wrapper around the Google Maps web services.

    Requests go through a requests.Session and run in a worker thread so the
    event loop never blocks. Provider error text is only kept as a diagnostic.
    """

    def __init__(self,
                 api_key: Optional[str],
                 session: Optional[requests.Session] = None,
                 timeout_s: float = HTTP_TIMEOUT_S,
                 base_url: str = GOOGLE_MAPS_BASE):
        self.api_key = api_key
        self.session = session if session is not None else requests.Session()
        self.timeout_s = timeout_s
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_config(cls, config: Config, session: Optional[requests.Session] = None) -> "MapsClient":
        return cls(config.api_key, session=session, timeout_s=config.http_timeout_s)

    def close(self) -> None:
        self.session.close()

    def _require_key(self) -> None:
        if not valid_api_key(self.api_key):
            raise ConfigError("Google Maps API key not configured")

    def _get_json(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint}/json"
        query = dict(params)
        query["key"] = self.api_key
        try:
            r = self.session.get(url, params=query, timeout=self.timeout_s)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise NetworkError(f"{endpoint} request failed: {e}") from e
        except ValueError as e:
            raise NetworkError(f"{endpoint} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise NetworkError(f"{endpoint} returned unexpected payload")
        return data

    async def _fetch(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._get_json, endpoint, params)

    async def search_places(self, query: str) -> PlaceSearchResult:
        self._require_key()
        if not query or len(query.strip()) < 2:
            return PlaceSearchResult(success=True, predictions=[])

        logger.debug("Searching places: %s", query)
        try:
            data = await self._fetch("place/autocomplete", {"input": query})
        except NetworkError as e:
            logger.warning("Places search error: %s", e)
            return PlaceSearchResult(success=False, error=str(e))

        if data.get("status") in ("OK", "ZERO_RESULTS"):
            try:
                predictions = [_prediction(p) for p in data.get("predictions") or []]
            except MALFORMED as e:
                logger.warning("Places search returned malformed predictions: %s", e)
                return PlaceSearchResult(success=False, error="Failed to search places (malformed response)")
            return PlaceSearchResult(success=True, predictions=predictions)
        error = _provider_error(data, "Failed to search places")
        logger.warning("Places search error: %s", error)
        return PlaceSearchResult(success=False, error=error)

    async def get_place_details(self, place_id: str) -> PlaceDetails:
        self._require_key()
        logger.debug("Getting place details for: %s", place_id)
        data = await self._fetch("place/details", {
            "place_id": place_id,
            "fields": "geometry,formatted_address,name",
        })

        status = data.get("status")
        result = data.get("result")
        if status == "OK" and result:
            try:
                loc = result["geometry"]["location"]
                return PlaceDetails(
                    coordinate=Coordinate(float(loc["lat"]), float(loc["lng"])),
                    formatted_address=result.get("formatted_address", ""),
                    name=result.get("name", ""),
                )
            except MALFORMED as e:
                raise NetworkError(f"malformed place details for {place_id}: {e!r}") from e
        if status in EMPTY_STATUSES or status == "INVALID_REQUEST" or status == "OK":
            raise NotFound(f"no place found for {place_id}")
        raise NetworkError(_provider_error(data, "Failed to get place details"))

    async def reverse_geocode(self, latitude: float, longitude: float) -> Address:
        self._require_key()
        logger.debug("Reverse geocoding: %s, %s", latitude, longitude)
        data = await self._fetch("geocode", {"latlng": f"{latitude},{longitude}"})

        status = data.get("status")
        results = data.get("results") or []
        if status == "OK" and results:
            try:
                first = results[0]
                formatted = first.get("formatted_address", "")
                components = first.get("address_components") or []
                short = components[0].get("long_name") if components else None
            except MALFORMED as e:
                raise NetworkError(f"malformed geocode result: {e!r}") from e
            return Address(formatted_address=formatted, short_address=short or formatted)
        if status in EMPTY_STATUSES or status == "OK":
            raise NotFound("No address found for this location")
        raise NetworkError(_provider_error(data, "Reverse geocoding failed"))

    async def calculate_eta(self, origin: Coordinate, destination: Coordinate) -> EtaResult:
        self._require_key()
        logger.debug("Fetching ETA %s -> %s", origin.as_query(), destination.as_query())
        try:
            data = await self._fetch("distancematrix", {
                "origins": origin.as_query(),
                "destinations": destination.as_query(),
                "mode": "driving",
                "traffic_model": "best_guess",
                "departure_time": "now",
            })
        except NetworkError as e:
            logger.warning("ETA calculation error: %s", e)
            return EtaResult.failure(str(e))

        if data.get("status") != "OK":
            return EtaResult.failure(_provider_error(data, "Failed to calculate ETA"))

        try:
            element = data["rows"][0]["elements"][0]
            if element.get("status") != "OK":
                return EtaResult.failure(f"Failed to calculate ETA ({element.get('status', 'UNKNOWN')})")
            distance = element.get("distance")
            duration = element.get("duration")
            traffic = element.get("duration_in_traffic")
            return EtaResult(
                success=True,
                distance_meters=_value(distance),
                distance_text=_text(distance),
                duration_seconds=_value(duration),
                duration_text=_text(duration),
                duration_in_traffic_seconds=_value(traffic),
                duration_in_traffic_text=_text(traffic),
            )
        except MALFORMED as e:
            logger.warning("Distance matrix returned a malformed element: %r", e)
            return EtaResult.failure("Failed to calculate ETA (malformed response)")

    async def get_directions(self, origin: Coordinate, destination: Coordinate) -> RouteResult:
        self._require_key()
        try:
            data = await self._fetch("directions", {
                "origin": origin.as_query(),
                "destination": destination.as_query(),
                "mode": "driving",
                "departure_time": "now",
            })
        except NetworkError as e:
            logger.warning("Directions error: %s", e)
            return RouteResult.failure(str(e))

        routes = data.get("routes") or []
        if data.get("status") != "OK" or not routes:
            return RouteResult.failure(_provider_error(data, "Failed to get directions"))

        try:
            route = routes[0]
            encoded = (route.get("overview_polyline") or {}).get("points", "")
            legs = route.get("legs") or []
            dist = sum(_value(leg.get("distance")) or 0.0 for leg in legs)
            dur = sum(_value(leg.get("duration")) or 0.0 for leg in legs)
            coordinates = decode_polyline(encoded)
        except MALFORMED as e:
            logger.warning("Directions returned a malformed route: %r", e)
            return RouteResult.failure("Failed to get directions (malformed response)")
        return RouteResult(
            success=True,
            polyline=encoded,
            coordinates=coordinates,
            distance_meters=dist,
            duration_seconds=dur,
        )
