"""Routing upstreams: Google Directions, Mapbox Directions, OSRM.

Every provider answers ``route()`` with a normalized dict or ``None`` when the
upstream explicitly reported that no route exists. Network errors, HTTP
errors and unexpected statuses raise.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from app.models import Coordinates, TravelMode
from app.utils.geo import decode_polyline

logger = logging.getLogger(__name__)

GOOGLE_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
GOOGLE_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
MAPBOX_DIRECTIONS_URL = "https://api.mapbox.com/directions/v5/mapbox"
MAPBOX_MATCHING_URL = "https://api.mapbox.com/matching/v5/mapbox"
OSRM_URL = "https://router.project-osrm.org"

MAPBOX_PROFILES = {
    TravelMode.WALKING: "walking",
    TravelMode.BICYCLING: "cycling",
    TravelMode.DRIVING: "driving",
}

OSRM_PROFILES = {
    TravelMode.WALKING: "foot",
    TravelMode.BICYCLING: "bike",
    TravelMode.DRIVING: "car",
}


class UnsupportedModeError(ValueError):
    """The provider has no profile for the requested travel mode."""


def _lng_lat_path(points: list[Coordinates]) -> str:
    return ";".join(f"{p.lng},{p.lat}" for p in points)


class DirectionsProvider(ABC):
    """A routing upstream."""

    name: str = "provider"

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    @abstractmethod
    async def route(
        self,
        waypoints: list[Coordinates],
        mode: TravelMode,
        optimize: bool = False,
    ) -> Optional[dict[str, Any]]:
        """Route through ``waypoints`` in order.

        Returns:
            ``{"geometry": [[lng, lat], ...], "distance": m, "duration": s,
            "polyline": str | None}`` or None if no route exists.
        """
        pass


class GoogleDirectionsProvider(DirectionsProvider):
    name = "google"

    NO_ROUTE_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}

    def __init__(self, api_key: str, timeout: float = 10.0) -> None:
        super().__init__(timeout)
        self._api_key = api_key

    async def route(
        self,
        waypoints: list[Coordinates],
        mode: TravelMode,
        optimize: bool = False,
    ) -> Optional[dict[str, Any]]:
        origin, destination = waypoints[0], waypoints[-1]
        params: dict[str, Any] = {
            "origin": f"{origin.lat},{origin.lng}",
            "destination": f"{destination.lat},{destination.lng}",
            "mode": mode.value,
            "key": self._api_key,
        }
        intermediate = waypoints[1:-1]
        if intermediate:
            joined = "|".join(f"{w.lat},{w.lng}" for w in intermediate)
            params["waypoints"] = f"optimize:true|{joined}" if optimize else joined

        logger.info(f"[DIRECTIONS] Google request: {len(waypoints)} waypoints, mode={mode.value}")
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(GOOGLE_DIRECTIONS_URL, params=params)
            response.raise_for_status()
            data = response.json()

        status = data.get("status")
        if status in self.NO_ROUTE_STATUSES or (status == "OK" and not data.get("routes")):
            logger.info(f"[DIRECTIONS] Google found no route ({status})")
            return None
        if status != "OK":
            raise RuntimeError(f"Google Directions API error: {status}")

        route = data["routes"][0]
        legs = route.get("legs", [])
        polyline = route.get("overview_polyline", {}).get("points", "")
        return {
            "geometry": decode_polyline(polyline),
            "distance": sum(leg["distance"]["value"] for leg in legs),
            "duration": sum(leg["duration"]["value"] for leg in legs),
            "polyline": polyline,
        }

    async def distance_matrix(
        self,
        origins: list[Coordinates],
        destinations: list[Coordinates],
        mode: TravelMode,
    ) -> list[list[Optional[dict[str, int]]]]:
        """``rows[i][j]`` is ``{"distance", "duration"}`` or None if unreachable."""
        params = {
            "origins": "|".join(f"{o.lat},{o.lng}" for o in origins),
            "destinations": "|".join(f"{d.lat},{d.lng}" for d in destinations),
            "mode": mode.value,
            "key": self._api_key,
        }
        logger.info(
            f"[DIRECTIONS] Google matrix request: {len(origins)}x{len(destinations)}, mode={mode.value}"
        )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(GOOGLE_DISTANCE_MATRIX_URL, params=params)
            response.raise_for_status()
            data = response.json()

        if data.get("status") != "OK":
            raise RuntimeError(f"Google Distance Matrix API error: {data.get('status')}")
        rows = data.get("rows") or []
        if not rows:
            raise RuntimeError("No distance matrix data returned")

        return [
            [
                {
                    "distance": element["distance"]["value"],
                    "duration": element["duration"]["value"],
                }
                if element.get("status") == "OK"
                else None
                for element in row.get("elements", [])
            ]
            for row in rows
        ]


class MapboxDirectionsProvider(DirectionsProvider):
    name = "mapbox"

    def __init__(self, access_token: str, timeout: float = 10.0) -> None:
        super().__init__(timeout)
        self._token = access_token

    async def route(
        self,
        waypoints: list[Coordinates],
        mode: TravelMode,
        optimize: bool = False,
    ) -> Optional[dict[str, Any]]:
        profile = MAPBOX_PROFILES.get(mode)
        if profile is None:
            raise UnsupportedModeError(f"Mapbox has no profile for {mode.value}")

        url = f"{MAPBOX_DIRECTIONS_URL}/{profile}/{_lng_lat_path(waypoints)}"
        params = {
            "access_token": self._token,
            "geometries": "geojson",
            "overview": "full",
            "annotations": "distance,duration",
        }
        logger.info(f"[DIRECTIONS] Mapbox request: {len(waypoints)} waypoints, profile={profile}")
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params=params)
            if response.status_code == 422:
                # Mapbox answers 422 for unroutable coordinates
                logger.info("[DIRECTIONS] Mapbox rejected the waypoints as unroutable")
                return None
            response.raise_for_status()
            data = response.json()

        routes = data.get("routes") or []
        if data.get("code") == "NoRoute" or not routes:
            logger.info(f"[DIRECTIONS] Mapbox found no route ({data.get('code')})")
            return None
        route = routes[0]
        return {
            "geometry": route.get("geometry", {}).get("coordinates", []),
            "distance": route.get("distance"),
            "duration": route.get("duration"),
            "polyline": None,
        }

    async def match(self, points: list[Coordinates], profile: str) -> Optional[dict[str, Any]]:
        """Snap a GPS trace to the trail network. None if nothing matched."""
        url = f"{MAPBOX_MATCHING_URL}/{profile}/{_lng_lat_path(points)}"
        params = {
            "access_token": self._token,
            "geometries": "geojson",
            "tidy": "true",
            "annotations": "distance,duration",
        }
        logger.info(f"[DIRECTIONS] Mapbox match request: {len(points)} points, profile={profile}")
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()

        matchings = data.get("matchings") or []
        if not matchings:
            logger.info(f"[DIRECTIONS] Mapbox found no match ({data.get('code')})")
            return None
        match = matchings[0]
        return {
            "geometry": match.get("geometry"),
            "distance": match.get("distance"),
            "duration": match.get("duration"),
        }


class OSRMDirectionsProvider(DirectionsProvider):
    name = "osrm"

    def __init__(self, base_url: str = OSRM_URL, timeout: float = 10.0) -> None:
        super().__init__(timeout)
        self._base_url = base_url.rstrip("/")

    async def route(
        self,
        waypoints: list[Coordinates],
        mode: TravelMode,
        optimize: bool = False,
    ) -> Optional[dict[str, Any]]:
        profile = OSRM_PROFILES.get(mode)
        if profile is None:
            raise UnsupportedModeError(f"OSRM has no profile for {mode.value}")

        url = f"{self._base_url}/route/v1/{profile}/{_lng_lat_path(waypoints)}"
        logger.info(f"[DIRECTIONS] OSRM request: {len(waypoints)} waypoints, profile={profile}")
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params={
                "overview": "full",
                "geometries": "geojson",
                "steps": "false",
            })
            if response.status_code == 400:
                data = response.json()
                if data.get("code") in {"NoRoute", "NoSegment"}:
                    logger.info(f"[DIRECTIONS] OSRM found no route ({data.get('code')})")
                    return None
            response.raise_for_status()
            data = response.json()

        if data.get("code") != "Ok" or not data.get("routes"):
            logger.info(f"[DIRECTIONS] OSRM returned no route: {data.get('code')}")
            return None
        route = data["routes"][0]
        return {
            "geometry": route.get("geometry", {}).get("coordinates", []),
            "distance": route.get("distance"),
            "duration": route.get("duration"),
            "polyline": None,
        }
