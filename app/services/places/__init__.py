"""Places: Google Places (New), with Nominatim and Photon geocoding fallbacks."""

from .providers import Geocoder, GooglePlacesProvider, NominatimGeocoder, PhotonGeocoder
from .service import PlacesService, photo_id_from_reference

__all__ = [
    "Geocoder",
    "GooglePlacesProvider",
    "NominatimGeocoder",
    "PhotonGeocoder",
    "PlacesService",
    "photo_id_from_reference",
]
