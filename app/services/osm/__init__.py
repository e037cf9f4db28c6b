"""Outdoor POIs from OpenStreetMap Overpass."""

from .service import (
    POI_TYPE_FILTERS,
    OutdoorPOIService,
    OverpassProvider,
    build_overpass_query,
    detect_poi_type,
    osm_to_geojson,
    validate_bounds,
)

__all__ = [
    "POI_TYPE_FILTERS",
    "OutdoorPOIService",
    "OverpassProvider",
    "build_overpass_query",
    "detect_poi_type",
    "osm_to_geojson",
    "validate_bounds",
]
