"""Route statistics scraped from Komoot and AllTrails."""

from .parser import (
    ROUTE_FIELDS,
    format_time,
    normalize_difficulty,
    parse_route_page,
    parse_time_to_minutes,
)
from .service import RouteMetadataService, classify_route_page, detect_source, is_route_complete

__all__ = [
    "ROUTE_FIELDS",
    "RouteMetadataService",
    "classify_route_page",
    "detect_source",
    "format_time",
    "is_route_complete",
    "normalize_difficulty",
    "parse_route_page",
    "parse_time_to_minutes",
]
