"""Live tracking client: location, realtime channel and mapping queries."""

__version__ = "0.1.0"
