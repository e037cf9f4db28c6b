"""API routes for Waypoint Functions.

One POST endpoint per operation. Handlers only translate the request body
into a service call; validation, caching, rate limiting and upstream
fallbacks all live in the services. Errors propagate as ``ServiceError`` and
are rendered by the exception handlers in ``app.main``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.api.dependencies import (
    get_adventure_context_service,
    get_caller_id,
    get_directions_service,
    get_elevation_service,
    get_link_preview_service,
    get_osm_service,
    get_places_service,
    get_route_metadata_service,
)
from app.models import BoundingBox, Coordinates, TravelMode
from app.services.adventure_context import AdventureContextService
from app.services.directions import DirectionsService
from app.services.elevation import ElevationService
from app.services.link_preview import LinkPreviewService
from app.services.osm import OutdoorPOIService
from app.services.places import PlacesService
from app.services.route_metadata import RouteMetadataService

logger = logging.getLogger(__name__)

router = APIRouter()


class ApiRequest(BaseModel):
    """Request bodies accept camelCase or snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Routing ───


class DirectionsRequest(ApiRequest):
    waypoints: list[Coordinates] = Field(default_factory=list)
    travel_mode: TravelMode = TravelMode.WALKING
    optimize_waypoints: bool = False


class DistanceMatrixRequest(ApiRequest):
    origins: list[Coordinates] = Field(default_factory=list)
    destinations: list[Coordinates] = Field(default_factory=list)
    travel_mode: TravelMode = TravelMode.WALKING


class MatchRouteRequest(ApiRequest):
    points: list[Coordinates] = Field(default_factory=list)
    snap_to_trail: bool = True
    profile: str = "walking"


class ElevationProfileRequest(ApiRequest):
    coordinates: list[list[float]] = Field(
        default_factory=list, description="Path as [lng, lat] pairs"
    )
    zoom: int = 15
    sample_every_meters: float = 50


@router.post("/directions")
async def get_directions(
    request: DirectionsRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: DirectionsService = Depends(get_directions_service),
):
    """Route through the waypoints in order (or optimized)."""
    return await service.directions(
        caller_id, request.waypoints, request.travel_mode, request.optimize_waypoints
    )


@router.post("/distance-matrix")
async def get_distance_matrix(
    request: DistanceMatrixRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: DirectionsService = Depends(get_directions_service),
):
    return await service.distance_matrix(
        caller_id, request.origins, request.destinations, request.travel_mode
    )


@router.post("/match-route")
async def match_route(
    request: MatchRouteRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: DirectionsService = Depends(get_directions_service),
):
    """Snap a GPS trace to trails and roads."""
    return await service.match_route(
        caller_id, request.points, request.snap_to_trail, request.profile
    )


@router.post("/elevation-profile")
async def get_elevation_profile(
    request: ElevationProfileRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: ElevationService = Depends(get_elevation_service),
):
    return await service.profile(
        caller_id, request.coordinates, request.zoom, request.sample_every_meters
    )


# ─── Places ───


class PlacesSearchRequest(ApiRequest):
    query: str = ""
    proximity: Optional[Coordinates] = None
    types: Optional[list[str]] = None


class PlaceDetailsRequest(ApiRequest):
    place_id: str = ""


class GeocodeRequest(ApiRequest):
    address: str = ""


class PlacePhotoRequest(ApiRequest):
    photo_reference: str = ""
    max_width: Optional[int] = None
    waypoint_id: Optional[str] = None


@router.post("/places/search")
async def search_places(
    request: PlacesSearchRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PlacesService = Depends(get_places_service),
):
    """Autocomplete predictions, optionally biased to a location."""
    return await service.search(caller_id, request.query, request.proximity, request.types)


@router.post("/places/details")
async def get_place_details(
    request: PlaceDetailsRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PlacesService = Depends(get_places_service),
):
    return await service.details(caller_id, request.place_id)


@router.post("/places/geocode")
async def geocode_address(
    request: GeocodeRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PlacesService = Depends(get_places_service),
):
    return await service.geocode(caller_id, request.address)


@router.post("/places/photo")
async def get_place_photo(
    request: PlacePhotoRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: PlacesService = Depends(get_places_service),
):
    """Public URL of a stored copy of the place photo."""
    return await service.photo(
        caller_id, request.photo_reference, request.max_width, request.waypoint_id
    )


# ─── Outdoor POIs ───


class OutdoorPOIRequest(ApiRequest):
    bounds: Optional[BoundingBox] = None
    poi_types: list[str] = Field(default_factory=list)
    max_results: int = 500


@router.post("/osm/pois")
async def get_outdoor_pois(
    request: OutdoorPOIRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: OutdoorPOIService = Depends(get_osm_service),
):
    """GeoJSON FeatureCollection of outdoor POIs inside the bounds."""
    return await service.get_pois(
        caller_id, request.bounds, request.poi_types, request.max_results
    )


# ─── Scraping ───


class FetchMetaRequest(ApiRequest):
    url: str = ""


class RouteMetadataRequest(ApiRequest):
    url: str = ""
    source: Optional[str] = None


@router.post("/meta")
async def fetch_meta(
    request: FetchMetaRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: LinkPreviewService = Depends(get_link_preview_service),
):
    """Link preview: title, description, image, site name, location."""
    return await service.fetch_meta(caller_id, request.url)


@router.post("/route-metadata")
async def fetch_route_metadata(
    request: RouteMetadataRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: RouteMetadataService = Depends(get_route_metadata_service),
):
    return await service.fetch_route_metadata(caller_id, request.url, request.source)


# ─── Adventure context ───


class AdventureContextRequest(ApiRequest):
    location: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    activity_type: Optional[str] = None
    accommodation_type: Optional[str] = None


@router.post("/adventure-context")
async def generate_adventure_context(
    request: AdventureContextRequest,
    caller_id: Optional[str] = Depends(get_caller_id),
    service: AdventureContextService = Depends(get_adventure_context_service),
):
    """Travel preparation and local tips for an adventure plan."""
    return await service.generate(
        caller_id,
        request.location,
        request.title,
        request.description,
        request.activity_type,
        request.accommodation_type,
    )
