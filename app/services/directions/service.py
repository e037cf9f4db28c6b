"""Directions, distance matrix and trace matching.

Routing providers are fallback profiles: the first provider that returns a
route wins. A provider that explicitly reports "no route" is a soft block;
when every answering provider says so the call fails with ``NoRouteError``
rather than ``UpstreamExhaustedError``.
"""

import logging
from typing import Any, Mapping, Optional, Sequence

from app.models import (
    Coordinates,
    InvalidInputError,
    NoRouteError,
    TravelMode,
    UnauthenticatedError,
    UpstreamExhaustedError,
)
from app.services.cache import CacheService
from app.services.fallback import (
    Accumulator,
    AttemptOutcome,
    AttemptProfile,
    FallbackPipeline,
    PipelineResult,
)
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import RateLimiter

from .providers import DirectionsProvider, GoogleDirectionsProvider, MapboxDirectionsProvider

logger = logging.getLogger(__name__)

MAX_MATRIX_SIDE = 25
MATCH_PROFILES = {"walking", "cycling", "driving"}


def _classify_answer(answer: Optional[dict], profile: AttemptProfile) -> AttemptOutcome:
    return AttemptOutcome.SOFT_BLOCK if answer is None else AttemptOutcome.USABLE


def _pass_through(answer: Optional[dict], profile: AttemptProfile) -> Optional[dict]:
    return answer


def _raise_unresolved(operation: str, result: PipelineResult, no_route_message: str) -> None:
    if any(a.outcome == AttemptOutcome.SOFT_BLOCK for a in result.attempts):
        raise NoRouteError(no_route_message)
    raise UpstreamExhaustedError(f"{operation}: no provider produced a usable answer")


class DirectionsService:
    """Routing operations over an ordered list of providers.

    Args:
        providers: Routing providers in attempt order.
        limiter: Shared rate limiter.
        caches: Cache per operation name.
        google: Provider for the distance matrix, if configured.
        mapbox: Provider for trace matching, if configured.
        timeout: Per-attempt timeout in seconds.
    """

    def __init__(
        self,
        providers: Sequence[DirectionsProvider],
        limiter: RateLimiter,
        caches: Mapping[str, CacheService],
        google: Optional[GoogleDirectionsProvider] = None,
        mapbox: Optional[MapboxDirectionsProvider] = None,
        timeout: float = 10.0,
    ) -> None:
        self._providers = {p.name: p for p in providers}
        self._profiles = [AttemptProfile(name=p.name, timeout=timeout) for p in providers]
        self._google = google
        self._mapbox = mapbox
        self._timeout = timeout
        self._directions = RequestOrchestrator("directions", caches.get("directions"), limiter)
        self._matrix = RequestOrchestrator("distance_matrix", caches.get("distance_matrix"), limiter)
        self._matching = RequestOrchestrator("match_route", caches.get("match_route"), limiter)

    async def directions(
        self,
        caller_id: Optional[str],
        waypoints: list[Coordinates],
        mode: TravelMode = TravelMode.WALKING,
        optimize: bool = False,
    ) -> dict[str, Any]:
        if len(waypoints) < 2:
            raise InvalidInputError("At least 2 waypoints are required")

        async def produce() -> dict[str, Any]:
            return await self._route(waypoints, mode, optimize)

        key = {
            "waypoints": [[w.lat, w.lng] for w in waypoints],
            "mode": mode,
            "optimize": optimize,
        }
        return await self._directions.run(caller_id, key, produce)

    async def _route(
        self, waypoints: list[Coordinates], mode: TravelMode, optimize: bool
    ) -> dict[str, Any]:
        async def fetch(profile: AttemptProfile) -> Optional[dict]:
            return await self._providers[profile.name].route(waypoints, mode, optimize)

        pipeline = FallbackPipeline(
            "DIRECTIONS",
            fetch=fetch,
            parse=_pass_through,
            classify=_classify_answer,
            is_complete=lambda acc: acc.is_filled("geometry"),
        )
        accumulator = Accumulator(
            ["geometry", "distance", "duration", "polyline"],
            atomic_groups=[("geometry", "distance", "duration")],
        )
        result = await pipeline.run(self._profiles, accumulator)
        if not result.complete:
            _raise_unresolved("directions", result, "No route found between these waypoints")

        provider = accumulator.filled_by["geometry"]
        distance = accumulator.get("distance")
        logger.info(
            f"[DIRECTIONS] Route via {provider}: {distance / 1000:.2f}km, "
            f"{round(accumulator.get('duration') / 60)}min"
        )
        return {
            "geometry": accumulator.get("geometry"),
            "distance": distance,
            "duration": accumulator.get("duration"),
            "polyline": accumulator.get("polyline"),
            "provider": provider,
        }

    async def distance_matrix(
        self,
        caller_id: Optional[str],
        origins: list[Coordinates],
        destinations: list[Coordinates],
        mode: TravelMode = TravelMode.WALKING,
    ) -> dict[str, Any]:
        if not origins:
            raise InvalidInputError("At least one origin is required")
        if not destinations:
            raise InvalidInputError("At least one destination is required")
        if len(origins) > MAX_MATRIX_SIDE or len(destinations) > MAX_MATRIX_SIDE:
            raise InvalidInputError(
                f"At most {MAX_MATRIX_SIDE} origins and {MAX_MATRIX_SIDE} destinations are allowed"
            )

        async def produce() -> dict[str, Any]:
            google = self._google
            profiles = [AttemptProfile(name="google", timeout=self._timeout)] if google else []

            async def fetch(profile: AttemptProfile) -> list:
                return await google.distance_matrix(origins, destinations, mode)

            pipeline = FallbackPipeline(
                "MATRIX",
                fetch=fetch,
                parse=lambda rows, profile: {"rows": rows},
            )
            result = await pipeline.run(profiles, Accumulator(["rows"]))
            if not result.complete:
                raise UpstreamExhaustedError("distance_matrix: no rows returned")
            return {"rows": result.accumulator.get("rows")}

        key = {
            "origins": [[o.lat, o.lng] for o in origins],
            "destinations": [[d.lat, d.lng] for d in destinations],
            "mode": mode,
        }
        return await self._matrix.run(caller_id, key, produce)

    async def match_route(
        self,
        caller_id: Optional[str],
        points: list[Coordinates],
        snap_to_trail: bool = True,
        profile: str = "walking",
    ) -> dict[str, Any]:
        if len(points) < 2:
            raise InvalidInputError("At least 2 points are required")
        if profile not in MATCH_PROFILES:
            raise InvalidInputError(f"Unknown matching profile: {profile}")

        if not snap_to_trail:
            if not caller_id or not caller_id.strip():
                raise UnauthenticatedError()
            return {
                "geometry": {"type": "LineString", "coordinates": [p.as_lng_lat() for p in points]},
                "distance": None,
                "duration": None,
            }

        async def produce() -> dict[str, Any]:
            mapbox = self._mapbox
            profiles = [AttemptProfile(name="mapbox", timeout=self._timeout)] if mapbox else []

            async def fetch(attempt: AttemptProfile) -> Optional[dict]:
                return await mapbox.match(points, profile)

            pipeline = FallbackPipeline(
                "MATCH",
                fetch=fetch,
                parse=_pass_through,
                classify=_classify_answer,
            )
            accumulator = Accumulator(
                ["geometry", "distance", "duration"],
                atomic_groups=[("geometry", "distance", "duration")],
            )
            result = await pipeline.run(profiles, accumulator)
            if not result.complete:
                _raise_unresolved("match_route", result, "No trail matched these points")
            return accumulator.to_dict()

        key = {"points": [[p.lat, p.lng] for p in points], "profile": profile}
        return await self._matching.run(caller_id, key, produce)
