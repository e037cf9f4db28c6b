"""OpenStreetMap Overpass API service for outdoor POIs.

Architecture:
1. Validate the bounding box (ordered, non-degenerate, at most 10 000 km²)
2. Build one Overpass QL query for the requested outdoor POI types
3. Try each Overpass mirror in order until one answers
4. Return a GeoJSON FeatureCollection of Point features
"""

import logging
from typing import Any, Mapping, Optional, Sequence

import httpx

from app.models import BoundingBox, InvalidInputError
from app.services.cache import CacheService
from app.services.fallback import Accumulator, AttemptProfile, FallbackPipeline
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

MAX_AREA_KM2 = 10000.0
DEFAULT_MAX_RESULTS = 500
MAX_RESULTS_LIMIT = 1000

# POI type -> Overpass node filters (any filter matches)
POI_TYPE_FILTERS: dict[str, list[str]] = {
    "campsite": ['["tourism"="camp_site"]'],
    "hut": ['["tourism"~"wilderness_hut|alpine_hut"]'],
    "viewpoint": ['["tourism"="viewpoint"]'],
    "water": ['["amenity"="drinking_water"]', '["natural"="spring"]'],
    "shelter": ['["amenity"="shelter"]'],
    "parking": ['["amenity"="parking"]["access"!="private"]'],
    "trailhead": ['["highway"="trailhead"]'],
    "picnicSite": ['["tourism"="picnic_site"]'],
    "toilets": ['["amenity"="toilets"]'],
    "informationBoard": ['["tourism"="information"]["information"="board"]'],
    "peakSummit": ['["natural"="peak"]'],
    "waterfall": ['["natural"="waterfall"]'],
    "cave": ['["natural"="cave_entrance"]'],
    "bench": ['["amenity"="bench"]'],
    "rangerStation": ['["amenity"="ranger_station"]'],
    "emergencyPhone": ['["emergency"="phone"]'],
    "guidepost": ['["information"="guidepost"]'],
}


def detect_poi_type(tags: dict) -> str:
    """Determine the outdoor POI type from OSM tags."""
    tourism = tags.get("tourism")
    amenity = tags.get("amenity")
    natural = tags.get("natural")

    if tourism == "camp_site":
        return "campsite"
    if tourism in ("wilderness_hut", "alpine_hut"):
        return "hut"
    if tourism == "viewpoint":
        return "viewpoint"
    if amenity == "drinking_water" or natural == "spring":
        return "water"
    if amenity == "shelter":
        return "shelter"
    if amenity == "parking":
        return "parking"
    if tags.get("highway") == "trailhead":
        return "trailhead"
    if tourism == "picnic_site":
        return "picnicSite"
    if amenity == "toilets":
        return "toilets"
    if tourism == "information" and tags.get("information") == "board":
        return "informationBoard"
    if natural == "peak":
        return "peakSummit"
    if natural == "waterfall":
        return "waterfall"
    if natural == "cave_entrance":
        return "cave"
    if amenity == "bench":
        return "bench"
    if amenity == "ranger_station":
        return "rangerStation"
    if tags.get("emergency") == "phone":
        return "emergencyPhone"
    if tags.get("information") == "guidepost":
        return "guidepost"
    return "other"


def build_overpass_query(bounds: BoundingBox, poi_types: Sequence[str], limit: int) -> str:
    """Build an Overpass QL query for POIs within the bounding box."""
    bbox = bounds.to_overpass()
    node_queries = [
        f"node{node_filter}({bbox});"
        for poi_type in poi_types
        for node_filter in POI_TYPE_FILTERS.get(poi_type, [])
    ]
    body = "\n  ".join(node_queries)
    return f"[out:json][timeout:25];\n(\n  {body}\n);\nout body qt {limit};"


def osm_to_geojson(data: dict) -> dict[str, Any]:
    """Transform an Overpass response into a GeoJSON FeatureCollection."""
    features = []
    for element in data.get("elements", []):
        lat = element.get("lat")
        lon = element.get("lon")
        if lat is None or lon is None:
            continue
        tags = element.get("tags") or {}
        features.append({
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [lon, lat]},
            "properties": {
                "id": str(element.get("id")),
                "type": detect_poi_type(tags),
                "name": tags.get("name") or tags.get("name:en") or tags.get("name:sv") or "Unnamed",
                "description": tags.get("description") or tags.get("note") or "",
                "tags": tags,
            },
        })
    return {"type": "FeatureCollection", "features": features}


def validate_bounds(bounds: Optional[BoundingBox]) -> BoundingBox:
    if bounds is None:
        raise InvalidInputError("Bounding box is required")
    if bounds.south >= bounds.north or bounds.west >= bounds.east:
        raise InvalidInputError("Bounding box must have south < north and west < east")
    area = bounds.approx_area_km2
    if area > MAX_AREA_KM2:
        logger.warning(f"[OSM] Bounds too large: {area:.0f} km²")
        raise InvalidInputError(
            f"Bounding box too large ({area:.0f} km², max {MAX_AREA_KM2:.0f} km²)",
            "Zoom in to search a smaller area.",
        )
    return bounds


class OverpassProvider:
    """Overpass API client. One instance serves every mirror."""

    def __init__(self, user_agent: str, timeout: float = 25.0) -> None:
        self._headers = {"User-Agent": user_agent}
        self._timeout = timeout

    async def query(self, endpoint: str, ql: str) -> dict:
        async with httpx.AsyncClient(timeout=self._timeout, headers=self._headers) as client:
            response = await client.post(
                endpoint,
                data={"data": ql},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            return response.json()


class OutdoorPOIService:
    """Outdoor POIs in a bounding box, with Overpass mirrors as fallbacks."""

    def __init__(
        self,
        provider: OverpassProvider,
        endpoints: Sequence[str],
        limiter: RateLimiter,
        caches: Mapping[str, CacheService],
        timeout: float = 25.0,
    ) -> None:
        self._provider = provider
        self._profiles = [
            AttemptProfile(name=f"overpass-{i + 1}", endpoint=url, timeout=timeout)
            for i, url in enumerate(endpoints)
        ]
        self._orchestrator = RequestOrchestrator("osm_pois", caches.get("osm_pois"), limiter)

    async def get_pois(
        self,
        caller_id: Optional[str],
        bounds: Optional[BoundingBox],
        poi_types: Sequence[str],
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> dict[str, Any]:
        bounds = validate_bounds(bounds)
        known = sorted({t for t in poi_types if t in POI_TYPE_FILTERS})
        if not known:
            raise InvalidInputError("At least one known POI type is required")
        if not 1 <= max_results <= MAX_RESULTS_LIMIT:
            raise InvalidInputError(f"max_results must be between 1 and {MAX_RESULTS_LIMIT}")

        ql = build_overpass_query(bounds, known, max_results)

        async def fetch(profile: AttemptProfile) -> dict:
            logger.info(f"[OSM] Trying Overpass endpoint: {profile.endpoint}")
            return await self._provider.query(profile.endpoint, ql)

        async def produce() -> dict[str, Any]:
            pipeline = FallbackPipeline(
                "OSM",
                fetch=fetch,
                parse=lambda data, profile: {"feature_collection": osm_to_geojson(data)},
            )
            result = await pipeline.run(self._profiles, Accumulator(["feature_collection"]))
            geojson = result.accumulator.get("feature_collection") or {
                "type": "FeatureCollection",
                "features": [],
            }
            logger.info(f"[OSM] {len(geojson['features'])} POIs for {', '.join(known)}")
            return geojson

        key = {
            "bounds": [bounds.south, bounds.west, bounds.north, bounds.east],
            "poi_types": known,
            "max_results": max_results,
        }
        return await self._orchestrator.run(caller_id, key, produce)
