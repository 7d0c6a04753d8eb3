"""Exceptions raised by the tracking client."""


class TrackingError(Exception):
    """Base class for all tracking client errors."""
    pass


class PermissionDenied(TrackingError):
    """Raised when location permission was not granted."""
    pass


class LocationTimeout(TrackingError):
    """Raised when no location fix arrived within the configured timeout."""
    pass


class LocationUnavailable(TrackingError):
    """Raised when the platform could not produce a location fix."""
    pass


class ConfigError(TrackingError):
    """Raised when a required credential or URL is missing."""
    pass


class NetworkError(TrackingError):
    """Raised on transport or HTTP failures talking to the mapping service."""
    pass


class NotFound(TrackingError):
    """Raised when a place or address lookup has no result."""
    pass


class ChannelDisconnected(TrackingError):
    """Raised when a send is attempted while the channel is not connected."""
    pass


class ChannelError(TrackingError):
    """Raised when the channel could not connect within its attempt budget."""
    pass
