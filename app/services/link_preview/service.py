"""Link preview metadata (``fetch_meta``).

Pages are fetched with a sequence of client profiles: a desktop browser, a
mobile browser, then the Facebook, Twitter and Google crawlers, which many
sites serve OpenGraph tags to even when they block browsers. Fields merge
across profiles, first value wins. Once both a title and an image are known
the remaining profiles are skipped.

URL-derived guesses (booking.com slugs, the last path segment) only fill a
title the pages did not provide. Results built from the URL alone are not
cached, so the next call tries the pages again.
"""

import ipaddress
import logging
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import urljoin, urlparse

import httpx

from app.models import InvalidInputError, UpstreamExhaustedError
from app.services.cache import CacheService
from app.services.fallback import Accumulator, AttemptOutcome, AttemptProfile, FallbackPipeline
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import RateLimiter

from .parser import PREVIEW_FIELDS, booking_fallback, generic_fallback, parse_preview, salvage_image

logger = logging.getLogger(__name__)

SALVAGE_MIN_LENGTH = 100
DEFAULT_MIN_LENGTH = 500
MAX_REDIRECTS = 5


def validate_url(url: Optional[str]) -> str:
    """Accept only absolute http(s) URLs to public hosts."""
    url = (url or "").strip()
    if not url:
        raise InvalidInputError("URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise InvalidInputError(f"Unsupported URL scheme: {parsed.scheme or 'none'}")
    host = parsed.hostname
    if not host:
        raise InvalidInputError("URL has no host")
    if host == "localhost" or host.endswith(".localhost"):
        raise InvalidInputError("Local URLs are not allowed")
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return url
    if address.is_private or address.is_loopback or address.is_link_local or address.is_reserved:
        raise InvalidInputError("Private addresses are not allowed")
    return url


async def fetch_following_redirects(client: httpx.AsyncClient, url: str) -> httpx.Response:
    """GET ``url``, following redirects only to hosts ``validate_url`` accepts.

    Raises:
        InvalidInputError: If a redirect points at a disallowed URL or the
            chain is longer than ``MAX_REDIRECTS``.
    """
    target = url
    for _ in range(MAX_REDIRECTS + 1):
        response = await client.get(target)
        location = response.headers.get("location")
        if not response.is_redirect or not location:
            return response
        target = validate_url(urljoin(str(response.url), location))
        logger.debug(f"[META] Redirected to {target}")
    raise InvalidInputError(f"Too many redirects for {url}")


def classify_page(response: httpx.Response, profile: AttemptProfile) -> AttemptOutcome:
    if response.status_code >= 500:
        return AttemptOutcome.TRANSPORT_FAILURE
    block_statuses = profile.options.get("block_statuses", ())
    min_length = profile.options.get("min_length", DEFAULT_MIN_LENGTH)
    length = len(response.text)
    logger.info(f"[META] {profile.name}: status={response.status_code} length={length}")
    if (
        not response.is_success
        or response.status_code in block_statuses
        or length < min_length
    ):
        return AttemptOutcome.SOFT_BLOCK
    return AttemptOutcome.USABLE


def is_preview_complete(accumulator: Accumulator) -> bool:
    return accumulator.is_filled("title") and accumulator.is_filled("image")


class LinkPreviewService:
    def __init__(
        self,
        profiles: Sequence[AttemptProfile],
        limiter: RateLimiter,
        caches: Mapping[str, CacheService],
    ) -> None:
        self._profiles = list(profiles)
        self._orchestrator = RequestOrchestrator("fetch_meta", caches.get("fetch_meta"), limiter)

    async def fetch_meta(self, caller_id: Optional[str], url: Optional[str]) -> dict[str, Any]:
        url = validate_url(url)

        fetched = {"any": False}

        async def produce() -> dict[str, Any]:
            payload, fetched["any"] = await self._build_preview(url)
            return payload

        return await self._orchestrator.run(
            caller_id, {"url": url}, produce, cacheable=lambda payload: fetched["any"]
        )

    async def _build_preview(self, url: str) -> tuple[dict[str, Any], bool]:
        """Returns the payload and whether any page contributed to it."""
        async def fetch(profile: AttemptProfile) -> httpx.Response:
            async with httpx.AsyncClient(
                timeout=profile.timeout, headers=dict(profile.headers), follow_redirects=False
            ) as client:
                return await fetch_following_redirects(client, url)

        def salvage(response: httpx.Response, profile: AttemptProfile) -> dict[str, Any]:
            if len(response.text) <= SALVAGE_MIN_LENGTH:
                return {}
            return salvage_image(response.text, url)

        pipeline = FallbackPipeline(
            "META",
            fetch=fetch,
            parse=lambda response, profile: parse_preview(response.text, url),
            classify=classify_page,
            salvage=salvage,
            is_complete=is_preview_complete,
        )
        accumulator = Accumulator(PREVIEW_FIELDS, atomic_groups=[("latitude", "longitude")])
        try:
            await pipeline.run(self._profiles, accumulator)
        except UpstreamExhaustedError as e:
            logger.warning(f"[META] No profile reached {url}: {e}")

        fetched_something = not accumulator.is_empty
        source = accumulator.filled_by.get("title", "url")

        if not accumulator.is_filled("title"):
            accumulator.merge(booking_fallback(url), "url")
        if not accumulator.is_filled("title"):
            accumulator.merge(generic_fallback(url), "url")
        if not accumulator.is_filled("site_name"):
            accumulator.merge(booking_fallback(url), "url")

        payload = accumulator.to_dict()
        payload["source"] = source
        logger.info(
            f"[META] Result for {url}: title={payload['title']!r} "
            f"image={'yes' if payload['image'] else 'no'} source={source}"
        )
        return payload, fetched_something
