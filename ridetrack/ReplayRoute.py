from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import polyline

from ridetrack.LocationFix import LatLon, haversine_m


def cum_array(values: Sequence[float]) -> List[float]:
    cum = [0.0]
    s = 0.0
    for v in values:
        s += v
        cum.append(s)
    return cum


def bearing_deg(a: LatLon, b: LatLon) -> float:
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlon = lon2 - lon1
    x = math.sin(dlon) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


@dataclass(frozen=True)
class ReplayRoute:
    """
    A route geometry with per segment timing, used to replay a trip.
    geometry_latlon: polyline points
    seg_dist_m / duration_list: distance and time between point i -> i+1
    cum_dist_m / cum_time_s: cumulative values from start to point i
    """
    geometry_latlon: List[LatLon]
    seg_dist_m: List[float]
    cum_dist_m: List[float]
    duration_list: List[float]
    cum_time_s: List[float]

    @classmethod
    def from_points(cls, points: Sequence[LatLon], speed_mps: float) -> "ReplayRoute":
        if not points:
            raise ValueError("route needs at least one point")
        if speed_mps <= 0.0:
            raise ValueError("speed_mps must be positive")
        pts = [(float(lat), float(lon)) for lat, lon in points]
        seg_dist = [haversine_m(pts[i], pts[i + 1]) for i in range(len(pts) - 1)]
        seg_time = [d / speed_mps for d in seg_dist]
        return cls(
            geometry_latlon=pts,
            seg_dist_m=seg_dist,
            cum_dist_m=cum_array(seg_dist),
            duration_list=seg_time,
            cum_time_s=cum_array(seg_time),
        )

    @classmethod
    def from_polyline(cls, encoded: str, speed_mps: float) -> "ReplayRoute":
        return cls.from_points(polyline.decode(encoded), speed_mps)

    @property
    def duration(self) -> float:
        return self.cum_time_s[-1]

    @property
    def dist(self) -> float:
        return self.cum_dist_m[-1]

    def get_pos_at_time(self, t_s: float) -> Tuple[LatLon, int]:
        """Interpolated position at t_s seconds and the index of its segment."""
        if t_s <= 0.0 or len(self.geometry_latlon) == 1:
            return self.geometry_latlon[0], 0

        if t_s >= self.duration:
            return self.geometry_latlon[-1], max(len(self.geometry_latlon) - 2, 0)

        i = bisect_right(self.cum_time_s, t_s) - 1
        seg_t = self.duration_list[i]
        if seg_t <= 0.0:
            return self.geometry_latlon[i + 1], i

        alpha = (t_s - self.cum_time_s[i]) / seg_t
        lat1, lon1 = self.geometry_latlon[i]
        lat2, lon2 = self.geometry_latlon[i + 1]
        return (lat1 + alpha * (lat2 - lat1), lon1 + alpha * (lon2 - lon1)), i

    def heading_at(self, idx: int) -> float:
        if len(self.geometry_latlon) < 2:
            return 0.0
        idx = min(max(idx, 0), len(self.geometry_latlon) - 2)
        return bearing_deg(self.geometry_latlon[idx], self.geometry_latlon[idx + 1])
