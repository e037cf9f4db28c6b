"""Elevation profiles from Mapbox terrain-RGB tiles.

The path is sampled roughly every ``sample_every_meters``; each sample is
looked up in the terrain tile that contains it. Tiles are decoded once into a
numpy elevation grid and reused for every sample in the same call.
"""

import io
import logging
from typing import Any, Mapping, Optional

import httpx
import numpy as np
from numpy.typing import NDArray
from PIL import Image

from app.models import InvalidInputError, UpstreamExhaustedError
from app.services.cache import CacheService
from app.services.fallback import Accumulator, AttemptProfile, FallbackPipeline
from app.services.orchestrator import RequestOrchestrator
from app.services.rate_limiter import RateLimiter
from app.utils.geo import haversine_meters, lat_lng_to_pixel, lat_lng_to_tile

logger = logging.getLogger(__name__)

TERRAIN_URL = "https://api.mapbox.com/v4/mapbox.terrain-rgb"
MAX_ZOOM = 15
DEFAULT_SAMPLE_METERS = 50.0


def decode_terrain_tile(data: bytes) -> NDArray[np.float64]:
    """Decode a terrain-RGB PNG into a grid of elevations in meters."""
    with Image.open(io.BytesIO(data)) as image:
        rgb = np.asarray(image.convert("RGB"), dtype=np.int64)
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    return -10000.0 + (r * 65536 + g * 256 + b) * 0.1


def sample_path(coords: list[list[float]], every_meters: float) -> list[list[float]]:
    """Keep the first point, every point ``every_meters`` further along, and the last."""
    sampled = [coords[0]]
    last_index = 0
    accumulated = 0.0
    for i in range(1, len(coords)):
        accumulated += haversine_meters(coords[i - 1], coords[i])
        if accumulated >= every_meters:
            sampled.append(coords[i])
            last_index = i
            accumulated = 0.0
    if last_index != len(coords) - 1:
        sampled.append(coords[-1])
    return sampled


def ascent_descent(elevations: list[float]) -> tuple[float, float]:
    if len(elevations) < 2:
        return 0.0, 0.0
    diffs = np.diff(np.asarray(elevations, dtype=np.float64))
    return float(diffs[diffs > 0].sum()), float(-diffs[diffs < 0].sum())


class MapboxTerrainProvider:
    name = "mapbox"

    def __init__(self, access_token: str, timeout: float = 10.0) -> None:
        self._token = access_token
        self._timeout = timeout

    async def tile(self, x: int, y: int, zoom: int) -> NDArray[np.float64]:
        url = f"{TERRAIN_URL}/{zoom}/{x}/{y}.pngraw"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params={"access_token": self._token})
            response.raise_for_status()
        return decode_terrain_tile(response.content)


class ElevationService:
    def __init__(
        self,
        provider: Optional[MapboxTerrainProvider],
        limiter: RateLimiter,
        caches: Mapping[str, CacheService],
        timeout: float = 10.0,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._orchestrator = RequestOrchestrator("elevation", caches.get("elevation"), limiter)

    async def profile(
        self,
        caller_id: Optional[str],
        coordinates: list[list[float]],
        zoom: int = MAX_ZOOM,
        sample_every_meters: float = DEFAULT_SAMPLE_METERS,
    ) -> dict[str, Any]:
        """Elevation along ``coordinates`` (``[lng, lat]`` pairs)."""
        if not coordinates or len(coordinates) < 2:
            raise InvalidInputError("At least 2 coordinates are required")
        for point in coordinates:
            if len(point) < 2 or not (-180 <= point[0] <= 180 and -90 <= point[1] <= 90):
                raise InvalidInputError(f"Invalid [lng, lat] coordinate: {point}")
        if not 0 <= zoom <= MAX_ZOOM:
            raise InvalidInputError(f"zoom must be between 0 and {MAX_ZOOM}")
        if sample_every_meters <= 0:
            raise InvalidInputError("sample_every_meters must be positive")

        path = [[float(p[0]), float(p[1])] for p in coordinates]

        async def produce() -> dict[str, Any]:
            return await self._build_profile(path, zoom, sample_every_meters)

        key = {"coordinates": path, "zoom": zoom, "sample_every_meters": float(sample_every_meters)}
        return await self._orchestrator.run(caller_id, key, produce)

    async def _build_profile(
        self, path: list[list[float]], zoom: int, every_meters: float
    ) -> dict[str, Any]:
        if self._provider is None:
            raise UpstreamExhaustedError("Mapbox terrain is not configured")

        sampled = sample_path(path, every_meters)
        tiles: dict[tuple[int, int], NDArray[np.float64]] = {}
        points: list[dict[str, float]] = []
        distance = 0.0

        for i, (lng, lat) in enumerate(sampled):
            x, y = lat_lng_to_tile(lat, lng, zoom)
            if (x, y) not in tiles:
                tiles[(x, y)] = await self._fetch_tile(x, y, zoom)
            grid = tiles[(x, y)]
            px, py = lat_lng_to_pixel(lat, lng, zoom, x, y, tile_size=grid.shape[1])
            if i > 0:
                distance += haversine_meters(sampled[i - 1], sampled[i])
            points.append({"distance": distance, "elevation": float(grid[py, px])})

        ascent, descent = ascent_descent([p["elevation"] for p in points])
        logger.info(
            f"[ELEVATION] {len(points)} samples from {len(tiles)} tiles: "
            f"+{ascent:.0f}m / -{descent:.0f}m"
        )
        return {"elevations": points, "ascent": ascent, "descent": descent}

    async def _fetch_tile(self, x: int, y: int, zoom: int) -> NDArray[np.float64]:
        provider = self._provider

        async def fetch(profile: AttemptProfile) -> NDArray[np.float64]:
            return await provider.tile(x, y, zoom)

        pipeline = FallbackPipeline(
            "ELEVATION",
            fetch=fetch,
            parse=lambda grid, profile: {"grid": grid},
            is_complete=lambda acc: acc.get("grid") is not None,
        )
        result = await pipeline.run(
            [AttemptProfile(name=provider.name, timeout=self._timeout)], Accumulator(["grid"])
        )
        if not result.complete:
            raise UpstreamExhaustedError(f"Terrain tile {zoom}/{x}/{y} could not be decoded")
        return result.accumulator.get("grid")
