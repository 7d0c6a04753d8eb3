from __future__ import annotations

import folium

from ridetrack.config import DUMMY_DESTINATION
from ridetrack.LocationFix import LatLon
from ridetrack.SessionView import SessionView

DEFAULT_CENTER: LatLon = DUMMY_DESTINATION


def build_map(view: SessionView, zoom_start: int = 13) -> folium.Map:
    """Draw the current session state: device, destination, route and job."""
    center = view.location.latlon if view.location is not None else DEFAULT_CENTER
    m = folium.Map(location=center, zoom_start=zoom_start)

    if view.location is not None:
        tooltip = "You"
        if view.address is not None:
            tooltip = f"You ({view.address.short_address})"
        folium.Marker(view.location.latlon, tooltip=tooltip, icon=folium.Icon(color="blue")).add_to(m)

    if view.destination is not None:
        label = view.destination_name or "Destination"
        if view.eta is not None and view.eta.success and view.eta.duration_text:
            label = f"{label} ({view.eta.duration_text}, {view.eta.distance_text})"
        folium.Marker(view.destination.latlon, tooltip=label, icon=folium.Icon(color="red")).add_to(m)

    if len(view.route) > 1:
        folium.PolyLine(view.route, color="blue", weight=5, opacity=0.8, tooltip="Route").add_to(m)

    if view.job is not None:
        pickup = view.job.pickup
        dropoff = view.job.destination
        folium.Marker(pickup.coordinate.latlon, tooltip=pickup.address or "Pickup",
                      icon=folium.Icon(color="purple")).add_to(m)
        folium.Marker(dropoff.coordinate.latlon, tooltip=dropoff.address or "Dropoff",
                      icon=folium.Icon(color="black")).add_to(m)
        folium.PolyLine([pickup.coordinate.latlon, dropoff.coordinate.latlon],
                        color="purple", weight=3, opacity=0.7, dash_array="6").add_to(m)

    return m


def save_map(view: SessionView, path: str = "map.html", zoom_start: int = 13) -> str:
    m = build_map(view, zoom_start=zoom_start)
    m.save(path)
    return path
