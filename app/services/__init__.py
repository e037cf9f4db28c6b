"""Waypoint Functions services.

Service layer components:
- Rate limiter: burst + sustained windows, in-memory or Redis (Lua script)
- Cache: per-operation response cache, in-memory or Redis
- Fallback: ordered attempt profiles merged into one result
- Orchestrator: auth, cache, rate limit, produce, in that order
- Directions: Google / Mapbox / OSRM routing, distance matrix, map matching
- Places: Google Places autocomplete, details, photos; geocoding with fallbacks
- Elevation: Mapbox terrain-RGB elevation profiles
- OSM: outdoor POIs from Overpass mirrors
- Link preview / route metadata: page scraping with client profiles
- Adventure context: LLM travel context (OpenRouter, Groq, Gemini)
"""

from .cache import CacheService, MemoryCacheService, RedisCacheService
from .rate_limiter import (
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimiter,
    RateLimitRule,
    RedisRateLimitStore,
)
from .fallback import Accumulator, AttemptOutcome, AttemptProfile, FallbackPipeline
from .orchestrator import RequestOrchestrator
from .blob_store import BlobStore, LocalBlobStore
from .directions import DirectionsService
from .places import PlacesService
from .elevation import ElevationService
from .osm import OutdoorPOIService
from .link_preview import LinkPreviewService
from .route_metadata import RouteMetadataService
from .llm import LlmProvider, create_llm_providers
from .adventure_context import AdventureContextService

__all__ = [
    # State
    "CacheService",
    "MemoryCacheService",
    "RedisCacheService",
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimiter",
    "RateLimitRule",
    "RedisRateLimitStore",
    # Pipeline
    "Accumulator",
    "AttemptOutcome",
    "AttemptProfile",
    "FallbackPipeline",
    "RequestOrchestrator",
    "BlobStore",
    "LocalBlobStore",
    # Operations
    "DirectionsService",
    "PlacesService",
    "ElevationService",
    "OutdoorPOIService",
    "LinkPreviewService",
    "RouteMetadataService",
    "LlmProvider",
    "create_llm_providers",
    "AdventureContextService",
]
