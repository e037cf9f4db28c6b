"""Directions: Google, Mapbox and OSRM as ordered fallbacks."""

from .providers import (
    DirectionsProvider,
    GoogleDirectionsProvider,
    MapboxDirectionsProvider,
    OSRMDirectionsProvider,
    UnsupportedModeError,
)
from .service import DirectionsService

__all__ = [
    "DirectionsProvider",
    "DirectionsService",
    "GoogleDirectionsProvider",
    "MapboxDirectionsProvider",
    "OSRMDirectionsProvider",
    "UnsupportedModeError",
]
