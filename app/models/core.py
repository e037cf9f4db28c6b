"""Core data models for Waypoint Functions.

Pydantic models shared by the services and the API layer: coordinates,
travel modes and bounding boxes.
"""

from enum import Enum

from pydantic import BaseModel, Field

# Rough km per degree, used for the bounding-box area guard.
KM_PER_DEGREE = 111.0


class TravelMode(str, Enum):
    """Travel modes accepted by the routing operations."""

    DRIVING = "driving"
    WALKING = "walking"
    BICYCLING = "bicycling"
    TRANSIT = "transit"


class Coordinates(BaseModel):
    """Geographic coordinates with validation.

    Latitude must be between -90 and 90 degrees.
    Longitude must be between -180 and 180 degrees.
    """

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")

    def as_lng_lat(self) -> list[float]:
        return [self.lng, self.lat]


class BoundingBox(BaseModel):
    """A south/west/north/east box in degrees."""

    south: float = Field(..., ge=-90, le=90)
    west: float = Field(..., ge=-180, le=180)
    north: float = Field(..., ge=-90, le=90)
    east: float = Field(..., ge=-180, le=180)

    @property
    def approx_area_km2(self) -> float:
        """Rough area, treating a degree as 111 km on both axes."""
        lat_diff = abs(self.north - self.south)
        lng_diff = abs(self.east - self.west)
        return lat_diff * lng_diff * KM_PER_DEGREE * KM_PER_DEGREE

    def to_overpass(self) -> str:
        return f"{self.south},{self.west},{self.north},{self.east}"
