"""Route statistics (distance, ascent, time, difficulty) from Komoot and AllTrails."""

import logging
from dataclasses import replace
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import urlparse

import httpx

from app.models import InvalidInputError, UpstreamExhaustedError
from app.services.cache import CacheService
from app.services.fallback import Accumulator, AttemptOutcome, AttemptProfile, FallbackPipeline
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import RateLimiter

from .parser import ROUTE_FIELDS, STAT_FIELDS, is_bot_page, parse_route_page

logger = logging.getLogger(__name__)

SOURCES = {
    "komoot": ("komoot.com", "https://www.komoot.com/"),
    "alltrails": ("alltrails.com", "https://www.alltrails.com/"),
}
MIN_PAGE_LENGTH = 100
MANUAL_ENTRY_MESSAGE = (
    "Could not extract route details from this page. "
    "You can enter the route details manually."
)


def detect_source(url: str, source: Optional[str] = None) -> str:
    """Validate that the URL belongs to a supported route site."""
    parsed = urlparse((url or "").strip())
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in ("http", "https") or not host:
        raise InvalidInputError("A valid route URL is required")

    for name, (domain, _) in SOURCES.items():
        if host == domain or host.endswith("." + domain):
            if source and source != name:
                raise InvalidInputError(f"URL does not belong to {source}")
            return name
    raise InvalidInputError("Only Komoot and AllTrails routes are supported")


def classify_route_page(response: httpx.Response, profile: AttemptProfile) -> AttemptOutcome:
    if response.status_code >= 500:
        return AttemptOutcome.TRANSPORT_FAILURE
    page = response.text
    logger.info(f"[ROUTE-META] {profile.name}: status={response.status_code} length={len(page)}")
    if response.status_code in (401, 403) or is_bot_page(page):
        return AttemptOutcome.SOFT_BLOCK
    if len(page) <= MIN_PAGE_LENGTH:
        return AttemptOutcome.SOFT_BLOCK
    return AttemptOutcome.USABLE


def is_route_complete(accumulator: Accumulator) -> bool:
    return accumulator.is_filled("distance_km") and accumulator.is_filled("elevation_m")


class RouteMetadataService:
    def __init__(
        self,
        profiles: Sequence[AttemptProfile],
        limiter: RateLimiter,
        caches: Mapping[str, CacheService],
    ) -> None:
        self._profiles = list(profiles)
        self._orchestrator = RequestOrchestrator(
            "route_metadata", caches.get("route_metadata"), limiter
        )

    async def fetch_route_metadata(
        self, caller_id: Optional[str], url: Optional[str], source: Optional[str] = None
    ) -> dict[str, Any]:
        url = (url or "").strip()
        source = detect_source(url, source)

        async def produce() -> dict[str, Any]:
            return await self._extract(url, source)

        return await self._orchestrator.run(caller_id, {"url": url, "source": source}, produce)

    def _profiles_for(self, source: str) -> list[AttemptProfile]:
        referer = SOURCES[source][1]
        return [
            replace(profile, headers={**profile.headers, "Referer": referer})
            for profile in self._profiles
        ]

    async def _extract(self, url: str, source: str) -> dict[str, Any]:
        async def fetch(profile: AttemptProfile) -> httpx.Response:
            async with httpx.AsyncClient(
                timeout=profile.timeout, headers=dict(profile.headers), follow_redirects=True
            ) as client:
                return await client.get(url)

        pipeline = FallbackPipeline(
            "ROUTE-META",
            fetch=fetch,
            parse=lambda response, profile: parse_route_page(response.text, source),
            classify=classify_route_page,
            is_complete=is_route_complete,
        )
        accumulator = Accumulator(ROUTE_FIELDS)
        try:
            await pipeline.run(self._profiles_for(source), accumulator)
        except UpstreamExhaustedError as e:
            logger.warning(f"[ROUTE-META] No profile reached {url}: {e}")
            raise UpstreamExhaustedError(
                f"All fetch profiles failed for {url}", user_message=MANUAL_ENTRY_MESSAGE
            ) from e

        if not any(accumulator.is_filled(name) for name in STAT_FIELDS):
            raise UpstreamExhaustedError(
                f"No route data extracted from {url}", user_message=MANUAL_ENTRY_MESSAGE
            )

        result = accumulator.to_dict()
        logger.info(
            f"[ROUTE-META] {source} {url}: distance={result['distance_km']} "
            f"elevation={result['elevation_m']} via {result['extraction_method']}"
        )
        return {"source": source, "source_url": url, **result}
