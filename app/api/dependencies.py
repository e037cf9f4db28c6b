"""Service singletons for the API layer.

Everything is built lazily from ``Settings`` on first use. With ``REDIS_URL``
set, the response caches and the rate limiter share one Redis connection so
that limits and cached results hold across server instances; without it both
live in process memory.
"""

import logging
from dataclasses import replace
from typing import Optional

import redis.asyncio as redis
from fastapi import Header

from app.config import (
    CACHE_POLICIES,
    LINK_PREVIEW_PROFILES,
    OVERPASS_ENDPOINTS,
    RATE_LIMITS,
    ROUTE_METADATA_PROFILES,
    USER_AGENT,
    get_settings,
)
from app.services.adventure_context import AdventureContextService
from app.services.blob_store import LocalBlobStore
from app.services.cache import CacheService, MemoryCacheService, RedisCacheService
from app.services.directions import (
    DirectionsProvider,
    DirectionsService,
    GoogleDirectionsProvider,
    MapboxDirectionsProvider,
    OSRMDirectionsProvider,
)
from app.services.elevation import ElevationService, MapboxTerrainProvider
from app.services.link_preview import LinkPreviewService
from app.services.llm import create_llm_providers
from app.services.osm import OutdoorPOIService, OverpassProvider
from app.services.places import (
    GooglePlacesProvider,
    NominatimGeocoder,
    PhotonGeocoder,
    PlacesService,
)
from app.services.rate_limiter import InMemoryRateLimitStore, RateLimiter, RedisRateLimitStore
from app.services.route_metadata import RouteMetadataService

logger = logging.getLogger(__name__)

CALLER_HEADER = "X-Caller-Id"
OVERPASS_TIMEOUT_SECONDS = 25.0

_redis_client: redis.Redis | None = None
_caches: dict[str, CacheService] | None = None
_limiter: RateLimiter | None = None
_directions_service: DirectionsService | None = None
_places_service: PlacesService | None = None
_elevation_service: ElevationService | None = None
_osm_service: OutdoorPOIService | None = None
_link_preview_service: LinkPreviewService | None = None
_route_metadata_service: RouteMetadataService | None = None
_adventure_context_service: AdventureContextService | None = None


async def get_caller_id(
    x_caller_id: Optional[str] = Header(None, alias=CALLER_HEADER),
) -> Optional[str]:
    """Caller identity, established by the gateway in front of this service.

    Missing identities are rejected by the orchestrators, not here, so the
    error body matches every other failure.
    """
    return x_caller_id.strip() if x_caller_id else None


def get_redis_client() -> redis.Redis | None:
    global _redis_client
    settings = get_settings()
    if _redis_client is None and settings.redis_url:
        _redis_client = redis.from_url(
            settings.redis_url, encoding="utf-8", decode_responses=True
        )
        logger.info("[STATE] Using Redis for caches and rate limits")
    return _redis_client


def get_caches() -> dict[str, CacheService]:
    global _caches
    if _caches is None:
        client = get_redis_client()
        caches: dict[str, CacheService] = {}
        for name, policy in CACHE_POLICIES.items():
            if client is not None:
                caches[name] = RedisCacheService(
                    name, policy.ttl_seconds, policy.max_size, client=client
                )
            else:
                caches[name] = MemoryCacheService(name, policy.ttl_seconds, policy.max_size)
        _caches = caches
    return _caches


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        client = get_redis_client()
        store = RedisRateLimitStore(client) if client is not None else InMemoryRateLimitStore()
        _limiter = RateLimiter(store, RATE_LIMITS)
    return _limiter


def _directions_providers() -> list[DirectionsProvider]:
    settings = get_settings()
    timeout = settings.upstream_timeout_seconds
    providers: list[DirectionsProvider] = []
    for name in settings.directions_providers:
        if name == "google" and settings.google_places_key:
            providers.append(GoogleDirectionsProvider(settings.google_places_key, timeout))
        elif name == "mapbox" and settings.mapbox_token:
            providers.append(MapboxDirectionsProvider(settings.mapbox_token, timeout))
        elif name == "osrm":
            providers.append(OSRMDirectionsProvider(timeout=timeout))
        elif name not in ("google", "mapbox"):
            logger.warning(f"[DIRECTIONS] Unknown provider '{name}' ignored")
    return providers


def get_directions_service() -> DirectionsService:
    global _directions_service
    if _directions_service is None:
        settings = get_settings()
        timeout = settings.upstream_timeout_seconds
        _directions_service = DirectionsService(
            _directions_providers(),
            get_rate_limiter(),
            get_caches(),
            google=(
                GoogleDirectionsProvider(settings.google_places_key, timeout)
                if settings.google_places_key
                else None
            ),
            mapbox=(
                MapboxDirectionsProvider(settings.mapbox_token, timeout)
                if settings.mapbox_token
                else None
            ),
            timeout=timeout,
        )
    return _directions_service


def get_places_service() -> PlacesService:
    global _places_service
    if _places_service is None:
        settings = get_settings()
        timeout = settings.upstream_timeout_seconds
        google = (
            GooglePlacesProvider(settings.google_places_key, timeout)
            if settings.google_places_key
            else None
        )
        geocoders = [
            geocoder
            for geocoder in (
                google,
                NominatimGeocoder(USER_AGENT, timeout),
                PhotonGeocoder(USER_AGENT, timeout),
            )
            if geocoder is not None
        ]
        _places_service = PlacesService(
            google,
            geocoders,
            LocalBlobStore(settings.blob_store_dir, settings.blob_public_base_url),
            get_rate_limiter(),
            get_caches(),
            timeout=timeout,
        )
    return _places_service


def get_elevation_service() -> ElevationService:
    global _elevation_service
    if _elevation_service is None:
        settings = get_settings()
        timeout = settings.upstream_timeout_seconds
        provider = (
            MapboxTerrainProvider(settings.mapbox_token, timeout) if settings.mapbox_token else None
        )
        _elevation_service = ElevationService(
            provider, get_rate_limiter(), get_caches(), timeout=timeout
        )
    return _elevation_service


def get_osm_service() -> OutdoorPOIService:
    global _osm_service
    if _osm_service is None:
        _osm_service = OutdoorPOIService(
            OverpassProvider(USER_AGENT, OVERPASS_TIMEOUT_SECONDS),
            OVERPASS_ENDPOINTS,
            get_rate_limiter(),
            get_caches(),
            timeout=OVERPASS_TIMEOUT_SECONDS,
        )
    return _osm_service


def get_link_preview_service() -> LinkPreviewService:
    global _link_preview_service
    if _link_preview_service is None:
        timeout = get_settings().upstream_timeout_seconds
        profiles = [replace(profile, timeout=timeout) for profile in LINK_PREVIEW_PROFILES]
        _link_preview_service = LinkPreviewService(profiles, get_rate_limiter(), get_caches())
    return _link_preview_service


def get_route_metadata_service() -> RouteMetadataService:
    global _route_metadata_service
    if _route_metadata_service is None:
        timeout = get_settings().upstream_timeout_seconds
        profiles = [replace(profile, timeout=timeout) for profile in ROUTE_METADATA_PROFILES]
        _route_metadata_service = RouteMetadataService(profiles, get_rate_limiter(), get_caches())
    return _route_metadata_service


def get_adventure_context_service() -> AdventureContextService:
    global _adventure_context_service
    if _adventure_context_service is None:
        settings = get_settings()
        providers = create_llm_providers(
            settings.llm_providers,
            openrouter_api_key=settings.openrouter_api_key,
            openrouter_model=settings.openrouter_model,
            groq_api_key=settings.groq_api_key,
            groq_model=settings.groq_model,
            gemini_api_key=settings.gemini_api_key,
            gemini_model=settings.gemini_model,
            timeout=settings.llm_timeout_seconds,
        )
        _adventure_context_service = AdventureContextService(
            providers, get_rate_limiter(), get_caches(), timeout=settings.llm_timeout_seconds
        )
    return _adventure_context_service


async def close_services() -> None:
    """Drop every singleton and close the shared Redis connection."""
    global _redis_client, _caches, _limiter, _directions_service, _places_service
    global _elevation_service, _osm_service, _link_preview_service
    global _route_metadata_service, _adventure_context_service

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except Exception as e:
            logger.warning(f"[STATE] Redis close failed: {e}")

    _redis_client = None
    _caches = None
    _limiter = None
    _directions_service = None
    _places_service = None
    _elevation_service = None
    _osm_service = None
    _link_preview_service = None
    _route_metadata_service = None
    _adventure_context_service = None
