"""Places search, details, geocoding and photos."""

import logging
import re
from typing import Any, Mapping, Optional, Sequence

from app.models import Coordinates, InvalidInputError, UpstreamExhaustedError
from app.services.blob_store import BlobStore
from app.services.cache import CacheService
from app.services.fallback import Accumulator, AttemptOutcome, AttemptProfile, FallbackPipeline
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import RateLimiter

from .providers import Geocoder, GooglePlacesProvider

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
DEFAULT_PHOTO_WIDTH = 800
MAX_PHOTO_WIDTH = 4800
PHOTO_PREFIX = "waypoint-photos"
PHOTO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


def photo_id_from_reference(reference: str) -> str:
    """Last path segment of a ``places/<id>/photos/<photo id>`` reference."""
    return reference.rstrip("/").split("/")[-1]


class PlacesService:
    """Places operations.

    Args:
        google: Google Places provider, or None when no key is configured.
        geocoders: Geocoders in attempt order (Google first when configured).
        blob_store: Store for downloaded photos.
        limiter: Shared rate limiter.
        caches: Cache per operation name.
        timeout: Per-attempt timeout in seconds.
    """

    def __init__(
        self,
        google: Optional[GooglePlacesProvider],
        geocoders: Sequence[Geocoder],
        blob_store: BlobStore,
        limiter: RateLimiter,
        caches: Mapping[str, CacheService],
        timeout: float = 10.0,
    ) -> None:
        self._google = google
        self._geocoders = {g.name: g for g in geocoders}
        self._geocode_profiles = [AttemptProfile(name=g.name, timeout=timeout) for g in geocoders]
        self._blob_store = blob_store
        self._search = RequestOrchestrator("places_search", caches.get("places_search"), limiter)
        self._details = RequestOrchestrator("place_details", caches.get("place_details"), limiter)
        self._geocode = RequestOrchestrator("geocode", caches.get("geocode"), limiter)
        self._photo = RequestOrchestrator("place_photo", caches.get("place_photo"), limiter)

    def _require_google(self) -> GooglePlacesProvider:
        if self._google is None:
            raise UpstreamExhaustedError("Google Places is not configured")
        return self._google

    async def search(
        self,
        caller_id: Optional[str],
        query: str,
        proximity: Optional[Coordinates] = None,
        types: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        query = (query or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            raise InvalidInputError(f"Query must be at least {MIN_QUERY_LENGTH} characters")
        clean_types = sorted({t for t in (types or []) if t})

        async def produce() -> dict[str, Any]:
            predictions = await self._require_google().autocomplete(query, proximity, clean_types)
            logger.info(f"[PLACES] Autocomplete '{query}': {len(predictions)} predictions")
            return {"predictions": predictions}

        key = {
            "query": query.lower(),
            "proximity": [proximity.lat, proximity.lng] if proximity else None,
            "types": clean_types,
        }
        return await self._search.run(caller_id, key, produce)

    async def details(self, caller_id: Optional[str], place_id: str) -> dict[str, Any]:
        place_id = (place_id or "").strip()
        if not place_id:
            raise InvalidInputError("Place ID required")

        async def produce() -> dict[str, Any]:
            return await self._require_google().details(place_id)

        return await self._details.run(caller_id, {"place_id": place_id}, produce)

    async def geocode(self, caller_id: Optional[str], address: str) -> dict[str, Any]:
        address = (address or "").strip()
        if not address:
            raise InvalidInputError("Address required")

        async def fetch(profile: AttemptProfile) -> Optional[dict]:
            return await self._geocoders[profile.name].geocode(address)

        async def produce() -> dict[str, Any]:
            pipeline = FallbackPipeline(
                "GEOCODE",
                fetch=fetch,
                parse=lambda answer, profile: answer,
                classify=lambda answer, profile: (
                    AttemptOutcome.SOFT_BLOCK if answer is None else AttemptOutcome.USABLE
                ),
                is_complete=lambda acc: acc.is_filled("latitude"),
            )
            accumulator = Accumulator(
                ["latitude", "longitude", "formatted_address"],
                atomic_groups=[("latitude", "longitude")],
            )
            await pipeline.run(self._geocode_profiles, accumulator)
            payload = accumulator.to_dict()
            payload["provider"] = accumulator.filled_by.get("latitude")
            if payload["provider"] is None:
                logger.info(f"[PLACES] No geocoder found '{address}'")
            return payload

        return await self._geocode.run(
            caller_id,
            {"address": address.lower()},
            produce,
            cacheable=lambda payload: payload.get("latitude") is not None,
        )

    async def photo(
        self,
        caller_id: Optional[str],
        photo_reference: str,
        max_width: Optional[int] = None,
        waypoint_id: Optional[str] = None,
    ) -> dict[str, Any]:
        photo_reference = (photo_reference or "").strip()
        if not photo_reference:
            raise InvalidInputError("Photo reference required")
        photo_id = photo_id_from_reference(photo_reference)
        if not PHOTO_ID_PATTERN.match(photo_id):
            raise InvalidInputError("Invalid photo reference")
        width = DEFAULT_PHOTO_WIDTH if max_width is None else int(max_width)
        width = min(max(width, 1), MAX_PHOTO_WIDTH)
        path = f"{PHOTO_PREFIX}/{photo_id}.jpg"

        async def produce() -> dict[str, Any]:
            if await self._blob_store.exists(path):
                logger.info(f"[PLACES] Photo {photo_id} already stored")
                return {"url": self._blob_store.public_url(path)}
            data = await self._require_google().photo_bytes(photo_reference, width)
            await self._blob_store.put(path, data, content_type="image/jpeg")
            logger.info(f"[PLACES] Stored photo {photo_id} for waypoint {waypoint_id or '-'}")
            return {"url": self._blob_store.public_url(path)}

        return await self._photo.run(caller_id, {"photo_id": photo_id}, produce)
