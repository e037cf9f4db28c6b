"""Link preview extraction from HTML pages and URLs.

Pure functions, so every heuristic can be tested against fixed HTML.
"""

import logging
import re
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

from app.utils.html import HtmlDocument, clean_text, parse_html

logger = logging.getLogger(__name__)

PREVIEW_FIELDS = (
    "title",
    "description",
    "image",
    "site_name",
    "latitude",
    "longitude",
    "address",
)

LODGING_TYPES = {"Hotel", "LodgingBusiness"}
MIN_DESCRIPTION_LENGTH = 20
DESCRIPTION_NOTE_PREFIXES = ("let op:", "note:", "warning:", "attention:", "important:")
DESCRIPTION_DISCLAIMER_PREFIXES = ("by using", "please note")
DESCRIPTION_DISCLAIMER_PHRASES = ("terms and conditions", "privacy policy")

_LEADING_STARS = re.compile(r"^[★☆]+\s*")
_CITY_COUNTRY_SUFFIX = re.compile(r",\s*[^,]+,\s*[^,]+$")
_TRAILING_DASH_STARS = re.compile(r"[-–]\s*\d+(\.\d+)?\s*stars?\s*$", re.IGNORECASE)
_TRAILING_PAREN_STARS = re.compile(r"\(\s*\d+(\.\d+)?\s*stars?\s*\)\s*$", re.IGNORECASE)
_OG_IMAGE = re.compile(
    r"<meta[^>]+property=[\"']og:image[\"'][^>]*content=[\"']([^\"']+)[\"']"
    r"|<meta[^>]+content=[\"']([^\"']+)[\"'][^>]*property=[\"']og:image[\"']",
    re.IGNORECASE,
)
_BOOKING_LANG_SUFFIX = re.compile(r"\.[a-z]{2}(-[a-z]{2})?\.html$", re.IGNORECASE)
_PAGE_EXTENSION = re.compile(r"\.(html?|php|aspx?)$", re.IGNORECASE)


def clean_title(title: Optional[str], site_name: Optional[str]) -> Optional[str]:
    """Strip star ratings and site-name suffixes from a page title."""
    if not title:
        return None

    cleaned = _LEADING_STARS.sub("", title)
    site = (site_name or "").lower()
    if "booking.com" in site:
        # "Hotel Name, Sevilla, Spanje" -> "Hotel Name"
        cleaned = _CITY_COUNTRY_SUFFIX.sub("", cleaned)
    cleaned = _TRAILING_DASH_STARS.sub("", cleaned)
    cleaned = _TRAILING_PAREN_STARS.sub("", cleaned)
    if site_name and cleaned.lower().endswith(site_name.lower()):
        cleaned = re.sub(
            rf"\s*[-|–]\s*{re.escape(site_name)}\s*$", "", cleaned, flags=re.IGNORECASE
        )
    return cleaned.strip() or None


def filter_description(description: Optional[str]) -> Optional[str]:
    """Drop short, symbol-heavy, warning or disclaimer descriptions."""
    if not description:
        return None
    trimmed = description.strip()
    if len(trimmed) < MIN_DESCRIPTION_LENGTH:
        return None
    letters = sum(1 for ch in trimmed if ch.isascii() and ch.isalpha())
    if letters < len(trimmed) * 0.3:
        return None
    lowered = trimmed.lower()
    if lowered.startswith(DESCRIPTION_NOTE_PREFIXES + DESCRIPTION_DISCLAIMER_PREFIXES):
        return None
    if any(phrase in lowered for phrase in DESCRIPTION_DISCLAIMER_PHRASES):
        return None
    return trimmed


def _pick_json_ld(document: HtmlDocument) -> Optional[dict]:
    for item in document.json_ld:
        item_type = item.get("@type")
        types = set(item_type) if isinstance(item_type, list) else {item_type}
        if types & LODGING_TYPES or item.get("name"):
            return item
    return None


def _json_ld_image(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("url") if isinstance(value.get("url"), str) else None
    if isinstance(value, list):
        for item in value:
            image = _json_ld_image(item)
            if image:
                return image
    return None


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def _coordinate_pair(lat: Any, lng: Any) -> tuple[Optional[float], Optional[float]]:
    lat_f, lng_f = _to_float(lat), _to_float(lng)
    if lat_f is None or lng_f is None:
        return None, None
    if not (-90 <= lat_f <= 90 and -180 <= lng_f <= 180):
        return None, None
    return lat_f, lng_f


def _split_pair(value: Optional[str], separator: str) -> tuple[Optional[float], Optional[float]]:
    if not value:
        return None, None
    parts = value.split(separator)
    if len(parts) != 2:
        return None, None
    return _coordinate_pair(parts[0], parts[1])


def extract_address(raw: Any) -> Optional[dict[str, Optional[str]]]:
    """Normalize a schema.org PostalAddress (or plain string)."""
    if not raw:
        return None
    if isinstance(raw, str):
        return {
            "street": raw,
            "locality": None,
            "region": None,
            "postal_code": None,
            "country": None,
            "formatted": raw,
        }
    if not isinstance(raw, dict):
        return None

    country = raw.get("addressCountry")
    if isinstance(country, dict):
        country = country.get("name")
    address = {
        "street": clean_text(raw.get("streetAddress")),
        "locality": clean_text(raw.get("addressLocality")),
        "region": clean_text(raw.get("addressRegion") or raw.get("addressState")),
        "postal_code": clean_text(raw.get("postalCode")),
        "country": clean_text(country),
    }
    parts = [address[k] for k in ("street", "locality", "region", "postal_code", "country") if address[k]]
    if not parts:
        return None
    address["formatted"] = ", ".join(parts)
    return address


def extract_location(
    document: HtmlDocument, json_ld: Optional[dict]
) -> tuple[Optional[float], Optional[float]]:
    """Coordinates from schema.org geo, then place:location, geo.position, ICBM."""
    if json_ld and isinstance(json_ld.get("geo"), dict):
        lat, lng = _coordinate_pair(json_ld["geo"].get("latitude"), json_ld["geo"].get("longitude"))
        if lat is not None:
            return lat, lng

    lat, lng = _coordinate_pair(
        document.meta.get("place:location:latitude"),
        document.meta.get("place:location:longitude"),
    )
    if lat is not None:
        return lat, lng

    lat, lng = _split_pair(document.meta.get("geo.position"), ";")
    if lat is not None:
        return lat, lng

    return _split_pair(document.meta.get("icbm"), ",")


def parse_preview(page: str, source_url: str) -> dict[str, Any]:
    """Extract preview fields from a full page.

    JSON-LD takes precedence over OpenGraph, which takes precedence over
    Twitter cards and the ``<title>`` element.
    """
    document = parse_html(page)
    json_ld = _pick_json_ld(document)
    ld = json_ld or {}

    site_name = clean_text(document.first_meta("og:site_name", "application-name"))
    title = clean_text(ld.get("name")) or clean_text(
        document.first_meta("og:title", "twitter:title")
    ) or clean_text(document.title)
    description = clean_text(ld.get("description")) or clean_text(
        document.first_meta("og:description", "twitter:description", "description")
    )
    image = clean_text(_json_ld_image(ld.get("image"))) or clean_text(
        document.first_meta("og:image", "twitter:image")
    )
    if image:
        image = urljoin(source_url, image)

    latitude, longitude = extract_location(document, json_ld)
    return {
        "title": clean_title(title, site_name),
        "description": filter_description(description),
        "image": image,
        "site_name": site_name,
        "latitude": latitude,
        "longitude": longitude,
        "address": extract_address(ld.get("address")),
    }


def salvage_image(page: str, source_url: str) -> dict[str, Any]:
    """og:image from a page that was otherwise blocked."""
    match = _OG_IMAGE.search(page)
    if not match:
        return {}
    image = clean_text(match.group(1) or match.group(2))
    if not image:
        return {}
    logger.info(f"[META] Found og:image in blocked response: {image}")
    return {"image": urljoin(source_url, image)}


def _title_case_words(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in text.split())


def booking_fallback(url: str) -> dict[str, Any]:
    """Hotel name from a booking.com URL like ``/hotel/se/stf-abisko.nl.html``."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if "booking.com" not in host:
        return {}

    result: dict[str, Any] = {"site_name": "Booking.com"}
    segments = [p for p in parsed.path.split("/") if p]
    html_segment = next((p for p in segments if p.lower().endswith(".html")), None)
    if html_segment:
        slug = _BOOKING_LANG_SUFFIX.sub("", html_segment)
        slug = re.sub(r"\.html$", "", slug, flags=re.IGNORECASE)
        if len(slug) > 2:
            title = _title_case_words(slug.replace("-", " "))
            title = re.sub(r"\bStf\b", "STF", title)
            title = re.sub(r"\bHtl\b", "Hotel", title, flags=re.IGNORECASE)
            result["title"] = title
    return result


def generic_fallback(url: str) -> dict[str, Any]:
    """Title from the last meaningful path segment, else the host name."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]

    title = host
    segments = [p for p in parsed.path.split("/") if len(p) > 2]
    if segments:
        last = _PAGE_EXTENSION.sub("", re.sub(r"[-_]", " ", segments[-1]))
        last = re.sub(r"\b\w", lambda m: m.group(0).upper(), last)
        if len(last) > 3:
            title = last
    return {"title": title, "description": f"Link from {host}", "site_name": host}
