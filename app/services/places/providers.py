"""Places upstreams: Google Places (New) and Geocoding, Nominatim, Photon."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from app.models import Coordinates, InvalidInputError

logger = logging.getLogger(__name__)

PLACES_BASE_URL = "https://places.googleapis.com/v1"
GEOCODING_URL = "https://maps.googleapis.com/maps/api/geocode/json"
NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
PHOTON_URL = "https://photon.komoot.io/api/"

AUTOCOMPLETE_FIELD_MASK = "suggestions.placePrediction.placeId,suggestions.placePrediction.text"
DETAILS_FIELD_MASK = (
    "id,displayName,formattedAddress,location,rating,websiteUri,"
    "nationalPhoneNumber,types,photos"
)
BIAS_RADIUS_METERS = 50000.0
MAX_PREDICTIONS = 5


class Geocoder(ABC):
    """Address to coordinates."""

    name: str = "geocoder"

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout

    @abstractmethod
    async def geocode(self, address: str) -> Optional[dict[str, Any]]:
        """Returns ``{"latitude", "longitude", "formatted_address"}`` or None if not found."""
        pass


class GooglePlacesProvider(Geocoder):
    """Google Places API (New) plus the Geocoding API."""

    name = "google"

    def __init__(self, api_key: str, timeout: float = 10.0) -> None:
        super().__init__(timeout)
        self._api_key = api_key

    def _headers(self, field_mask: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self._api_key,
            "X-Goog-FieldMask": field_mask,
        }

    async def autocomplete(
        self,
        query: str,
        bias: Optional[Coordinates] = None,
        types: Optional[list[str]] = None,
    ) -> list[dict[str, str]]:
        body: dict[str, Any] = {"input": query}
        if bias is not None:
            body["locationBias"] = {
                "circle": {
                    "center": {"latitude": bias.lat, "longitude": bias.lng},
                    "radius": BIAS_RADIUS_METERS,
                }
            }
        valid_types = [t for t in (types or []) if t]
        if valid_types:
            body["includedPrimaryTypes"] = valid_types

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{PLACES_BASE_URL}/places:autocomplete",
                json=body,
                headers=self._headers(AUTOCOMPLETE_FIELD_MASK),
            )
            if response.status_code == 400:
                logger.warning(f"[PLACES] Autocomplete rejected: {response.text[:200]}")
                raise InvalidInputError(
                    "Places autocomplete rejected the request",
                    "Invalid search parameters. Some place types may not be supported.",
                )
            response.raise_for_status()
            data = response.json()

        predictions = []
        for suggestion in data.get("suggestions", []):
            prediction = suggestion.get("placePrediction")
            if not prediction:
                continue
            predictions.append({
                "place_id": prediction.get("placeId"),
                "text": (prediction.get("text") or {}).get("text", ""),
            })
        return predictions[:MAX_PREDICTIONS]

    async def details(self, place_id: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                f"{PLACES_BASE_URL}/places/{place_id}",
                headers=self._headers(DETAILS_FIELD_MASK),
            )
            response.raise_for_status()
            place = response.json()

        location = place.get("location") or {}
        photos = place.get("photos") or []
        return {
            "place_id": place.get("id", place_id),
            "name": (place.get("displayName") or {}).get("text", ""),
            "address": place.get("formattedAddress"),
            "latitude": location.get("latitude"),
            "longitude": location.get("longitude"),
            "rating": place.get("rating"),
            "website": place.get("websiteUri"),
            "phone_number": place.get("nationalPhoneNumber"),
            "types": place.get("types", []),
            "photo_reference": photos[0].get("name") if photos else None,
        }

    async def geocode(self, address: str) -> Optional[dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                GEOCODING_URL, params={"address": address, "key": self._api_key}
            )
            response.raise_for_status()
            data = response.json()

        status = data.get("status")
        results = data.get("results") or []
        if status == "ZERO_RESULTS" or (status == "OK" and not results):
            return None
        if status != "OK":
            raise RuntimeError(f"Google Geocoding API error: {status}")

        first = results[0]
        location = first["geometry"]["location"]
        return {
            "latitude": location["lat"],
            "longitude": location["lng"],
            "formatted_address": first.get("formatted_address"),
        }

    async def photo_bytes(self, photo_reference: str, max_width: int) -> bytes:
        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            response = await client.get(
                f"{PLACES_BASE_URL}/{photo_reference}/media",
                params={"maxWidthPx": max_width, "key": self._api_key},
            )
            response.raise_for_status()
            return response.content


class NominatimGeocoder(Geocoder):
    name = "nominatim"

    def __init__(self, user_agent: str, timeout: float = 10.0) -> None:
        super().__init__(timeout)
        self._user_agent = user_agent

    async def geocode(self, address: str) -> Optional[dict[str, Any]]:
        async with httpx.AsyncClient(
            timeout=self._timeout, headers={"User-Agent": self._user_agent}
        ) as client:
            response = await client.get(
                NOMINATIM_URL,
                params={"q": address, "format": "json", "limit": 1, "addressdetails": 1},
            )
            response.raise_for_status()
            results = response.json()

        if not results or float(results[0].get("lat", 0)) == 0:
            return None
        return {
            "latitude": float(results[0]["lat"]),
            "longitude": float(results[0]["lon"]),
            "formatted_address": results[0].get("display_name"),
        }


class PhotonGeocoder(Geocoder):
    """Photon (Komoot) geocoder - often better for European addresses."""

    name = "photon"

    def __init__(self, user_agent: str, timeout: float = 10.0) -> None:
        super().__init__(timeout)
        self._user_agent = user_agent

    async def geocode(self, address: str) -> Optional[dict[str, Any]]:
        async with httpx.AsyncClient(
            timeout=self._timeout, headers={"User-Agent": self._user_agent}
        ) as client:
            response = await client.get(PHOTON_URL, params={"q": address, "limit": 1})
            response.raise_for_status()
            data = response.json()

        features = data.get("features", [])
        if not features:
            return None
        lng, lat = features[0]["geometry"]["coordinates"][:2]
        props = features[0].get("properties", {})
        parts = [
            f"{props.get('street', '')} {props.get('housenumber', '')}".strip(),
            props.get("city") or props.get("name") or "",
            props.get("country") or "",
        ]
        return {
            "latitude": lat,
            "longitude": lng,
            "formatted_address": ", ".join(p for p in parts if p) or None,
        }
