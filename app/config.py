"""Application configuration.

Environment variables are loaded from ``.env`` (python-dotenv) and read once
into a frozen ``Settings``. Rate-limit thresholds, cache policies and fallback
profile lists are static data kept here rather than in the services.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from app.services.fallback import AttemptProfile
from app.services.rate_limiter import RateLimitRule

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS

DEFAULT_CORS_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8081",
    "http://localhost:19006",
)


def _split(value: Optional[str], default: tuple[str, ...]) -> tuple[str, ...]:
    if not value:
        return default
    items = tuple(part.strip().lower() for part in value.split(",") if part.strip())
    return items or default


@dataclass(frozen=True)
class Settings:
    google_places_key: Optional[str] = None
    mapbox_token: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = "anthropic/claude-sonnet-4"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.1-8b-instant"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    redis_url: Optional[str] = None
    upstream_timeout_seconds: float = 10.0
    llm_timeout_seconds: float = 60.0
    directions_providers: tuple[str, ...] = ("google", "mapbox", "osrm")
    llm_providers: tuple[str, ...] = ("openrouter", "groq", "gemini")
    blob_store_dir: str = "./blob-store"
    blob_public_base_url: str = "http://localhost:8000/blobs"
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = field(default=DEFAULT_CORS_ORIGINS)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        cors = os.getenv("CORS_ORIGINS")
        return cls(
            google_places_key=os.getenv("GOOGLE_PLACES_KEY") or None,
            mapbox_token=os.getenv("MAPBOX_SECRET_TOKEN") or os.getenv("MAPBOX_TOKEN") or None,
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
            openrouter_model=os.getenv("OPENROUTER_MODEL", cls.openrouter_model),
            groq_api_key=os.getenv("GROQ_API_KEY") or None,
            groq_model=os.getenv("GROQ_MODEL", cls.groq_model),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", cls.gemini_model),
            redis_url=os.getenv("REDIS_URL") or None,
            upstream_timeout_seconds=float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "10")),
            llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
            directions_providers=_split(os.getenv("DIRECTIONS_PROVIDERS"), cls.directions_providers),
            llm_providers=_split(os.getenv("LLM_PROVIDERS"), cls.llm_providers),
            blob_store_dir=os.getenv("BLOB_STORE_DIR", cls.blob_store_dir),
            blob_public_base_url=os.getenv("BLOB_PUBLIC_BASE_URL", cls.blob_public_base_url),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            cors_origins=(
                tuple(o.strip() for o in cors.split(",") if o.strip())
                if cors
                else DEFAULT_CORS_ORIGINS
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@dataclass(frozen=True)
class CachePolicy:
    ttl_seconds: int
    max_size: int


RATE_LIMITS: dict[str, RateLimitRule] = {
    "directions": RateLimitRule(10, 10 * SECOND_MS, 100, 5 * MINUTE_MS),
    "distance_matrix": RateLimitRule(10, 10 * SECOND_MS, 100, 5 * MINUTE_MS),
    "match_route": RateLimitRule(10, 10 * SECOND_MS, 60, 5 * MINUTE_MS),
    "elevation": RateLimitRule(5, 10 * SECOND_MS, 30, 5 * MINUTE_MS),
    "places_search": RateLimitRule(20, 10 * SECOND_MS, 100, HOUR_MS),
    "place_details": RateLimitRule(20, 10 * SECOND_MS, 100, HOUR_MS),
    "geocode": RateLimitRule(20, 10 * SECOND_MS, 100, HOUR_MS),
    "place_photo": RateLimitRule(20, 10 * SECOND_MS, 100, HOUR_MS),
    "osm_pois": RateLimitRule(5, 10 * SECOND_MS, 30, 5 * MINUTE_MS),
    "fetch_meta": RateLimitRule(5, 10 * SECOND_MS, 30, 5 * MINUTE_MS),
    "route_metadata": RateLimitRule(5, 10 * SECOND_MS, 30, 5 * MINUTE_MS),
    "adventure_context": RateLimitRule(2, MINUTE_MS, 10, HOUR_MS),
}

CACHE_POLICIES: dict[str, CachePolicy] = {
    "directions": CachePolicy(ttl_seconds=600, max_size=200),
    "distance_matrix": CachePolicy(ttl_seconds=300, max_size=200),
    "match_route": CachePolicy(ttl_seconds=600, max_size=200),
    "elevation": CachePolicy(ttl_seconds=3600, max_size=100),
    "places_search": CachePolicy(ttl_seconds=300, max_size=500),
    "place_details": CachePolicy(ttl_seconds=3600, max_size=500),
    "geocode": CachePolicy(ttl_seconds=86400, max_size=1000),
    "place_photo": CachePolicy(ttl_seconds=86400, max_size=1000),
    "osm_pois": CachePolicy(ttl_seconds=900, max_size=100),
    "fetch_meta": CachePolicy(ttl_seconds=3600, max_size=500),
    "route_metadata": CachePolicy(ttl_seconds=3600, max_size=200),
    "adventure_context": CachePolicy(ttl_seconds=86400, max_size=100),
}

OVERPASS_ENDPOINTS: tuple[str, ...] = (
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://overpass.openstreetmap.fr/api/interpreter",
)

USER_AGENT = "Waypoint/1.0 (support@waypoint.app)"

CHROME_DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
SAFARI_MOBILE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)
FACEBOOK_UA = "facebookexternalhit/1.1 (+http://www.facebook.com/externalhit_uatext.php)"
TWITTER_UA = "Twitterbot/1.0"
GOOGLEBOT_UA = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"

BROWSER_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"

# In attempt order. Browsers first; crawlers are often served OpenGraph tags
# by sites that block browsers. min_length is the shortest page treated as real.
LINK_PREVIEW_PROFILES: tuple[AttemptProfile, ...] = (
    AttemptProfile(
        name="desktop_chrome",
        headers={
            "User-Agent": CHROME_DESKTOP_UA,
            "Accept": BROWSER_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Upgrade-Insecure-Requests": "1",
        },
        options={"min_length": 5000, "block_statuses": (202, 403)},
    ),
    AttemptProfile(
        name="mobile_safari",
        headers={
            "User-Agent": SAFARI_MOBILE_UA,
            "Accept": BROWSER_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
        },
        options={"min_length": 3000},
    ),
    AttemptProfile(
        name="facebook",
        headers={"User-Agent": FACEBOOK_UA, "Accept": "text/html"},
        options={"min_length": 500},
    ),
    AttemptProfile(
        name="twitter",
        headers={"User-Agent": TWITTER_UA, "Accept": "text/html"},
        options={"min_length": 500},
    ),
    AttemptProfile(
        name="googlebot",
        headers={"User-Agent": GOOGLEBOT_UA, "Accept": "text/html"},
        options={"min_length": 500},
    ),
)

# The Referer of the route site is added per request.
ROUTE_METADATA_PROFILES: tuple[AttemptProfile, ...] = (
    AttemptProfile(
        name="desktop_chrome",
        headers={
            "User-Agent": CHROME_DESKTOP_UA,
            "Accept": BROWSER_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9,nl;q=0.8,de;q=0.7",
        },
    ),
    AttemptProfile(
        name="mobile_safari",
        headers={
            "User-Agent": SAFARI_MOBILE_UA,
            "Accept": BROWSER_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
        },
    ),
    AttemptProfile(
        name="googlebot",
        headers={"User-Agent": GOOGLEBOT_UA, "Accept": "text/html"},
    ),
)
