"""Route statistics extraction for Komoot and AllTrails pages.

Extraction runs in priority order, JSON-LD, then the meta description, then
source-specific patterns in the visible text. Every method contributes the
fields it finds; a field found by an earlier method is never replaced.
"""

import logging
import re
from typing import Any, Optional

from app.utils.html import HtmlDocument, parse_html

logger = logging.getLogger(__name__)

ROUTE_FIELDS = (
    "distance_km",
    "elevation_m",
    "estimated_time",
    "difficulty",
    "extraction_method",
)
STAT_FIELDS = ROUTE_FIELDS[:4]

BOT_PAGE_MARKERS = (
    "access denied",
    "blocked",
    "captcha",
    "cloudflare",
    "bot detection",
    "please verify you are human",
    "just a moment",
    "checking your browser",
)

# Checked in order; English first, then Dutch, then German.
_DIFFICULTY_TERMS = (
    ("easy", ("easy", "beginner")),
    ("moderate", ("moderate", "intermediate", "medium")),
    ("hard", ("hard", "difficult", "expert", "challenging")),
    ("easy", ("makkelijk", "eenvoudig")),
    ("moderate", ("gemiddeld", "normaal")),
    ("hard", ("zwaar", "moeilijk")),
    ("easy", ("leicht", "einfach")),
    ("moderate", ("mittelschwer", "mittel")),
    ("hard", ("schwer", "schwierig")),
)

_ISO_DURATION = re.compile(r"^P(?:T)?(?:(\d+(?:\.\d+)?)H)?(?:(\d+)M)?$", re.IGNORECASE)
_HH_MM = re.compile(r"^(\d{1,2}):(\d{2})$")
_HOURS = re.compile(r"(\d+(?:\.\d+)?)\s*h(?:ours?|r)?", re.IGNORECASE)
_MINUTES = re.compile(r"(\d+)\s*m(?:in(?:utes?)?)?\b", re.IGNORECASE)
_HOUR_RANGE = re.compile(r"(\d+(?:\.\d+)?)\s*[-–]\s*(\d+(?:\.\d+)?)\s*h(?:ours?|r)?", re.IGNORECASE)


def normalize_difficulty(text: Optional[str]) -> Optional[str]:
    """Map free text in English, Dutch or German to easy/moderate/hard."""
    if not text or not isinstance(text, str):
        return None
    lowered = text.lower().strip()
    for level, terms in _DIFFICULTY_TERMS:
        if any(term in lowered for term in terms):
            return level
    return None


def parse_time_to_minutes(value: Optional[str]) -> Optional[int]:
    """Minutes from "06:43", "6h 43m", "4-4.5 hr" or ISO 8601 "PT6H43M"."""
    if not value:
        return None
    value = value.strip()

    match = _HH_MM.match(value)
    if match:
        return int(match.group(1)) * 60 + int(match.group(2))

    match = _ISO_DURATION.match(value)
    if match and (match.group(1) or match.group(2)):
        hours = float(match.group(1) or 0)
        return round(hours * 60) + int(match.group(2) or 0) or None

    match = _HOUR_RANGE.search(value)
    if match:
        low, high = float(match.group(1)), float(match.group(2))
        return round((low + high) / 2 * 60) or None

    total = 0
    hours_match = _HOURS.search(value)
    if hours_match:
        total += round(float(hours_match.group(1)) * 60)
    minutes_match = _MINUTES.search(value)
    if minutes_match:
        total += int(minutes_match.group(1))
    return total or None


def format_time(minutes: Optional[int]) -> Optional[str]:
    if minutes is None or minutes <= 0:
        return None
    hours, mins = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {mins}m" if mins else f"{hours}h"
    return f"{mins}m"


def is_bot_page(page: str) -> bool:
    lowered = page.lower()
    return any(marker in lowered for marker in BOT_PAGE_MARKERS)


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("value")
    if value is None or isinstance(value, bool):
        return None
    return str(value)


def _has_stats(result: dict[str, Any]) -> bool:
    return any(result.get(name) is not None for name in STAT_FIELDS)


def extract_from_json_ld(document: HtmlDocument) -> dict[str, Any]:
    for item in document.json_ld:
        item_type = item.get("@type")
        type_name = " ".join(item_type) if isinstance(item_type, list) else str(item_type or "")
        if "Trail" not in type_name and "Route" not in type_name and type_name != "Thing":
            continue

        result: dict[str, Any] = {}
        distance = _as_text(item.get("distance"))
        if distance:
            match = re.search(r"(\d+(?:\.\d+)?)\s*(?:km|kilometer)", distance, re.IGNORECASE)
            if match:
                result["distance_km"] = float(match.group(1))
        length = _as_text(item.get("length"))
        if length and "distance_km" not in result:
            match = re.search(r"(\d+(?:\.\d+)?)\s*(km|kilometer|m|meter)", length, re.IGNORECASE)
            if match:
                amount = float(match.group(1))
                if match.group(2).lower().startswith("k"):
                    result["distance_km"] = amount
                elif amount > 100:
                    result["distance_km"] = amount / 1000

        elevation = _as_text(item.get("elevationGain") or item.get("elevation"))
        if elevation:
            match = re.search(r"(\d+(?:\.\d+)?)\s*(?:m|meter|meters)\b", elevation, re.IGNORECASE)
            if match:
                result["elevation_m"] = round(float(match.group(1)))

        duration = _as_text(item.get("duration") or item.get("timeRequired"))
        if duration:
            result["estimated_time"] = format_time(parse_time_to_minutes(duration)) or duration

        difficulty = normalize_difficulty(
            _as_text(item.get("difficulty") or item.get("difficultyLevel"))
        )
        if difficulty:
            result["difficulty"] = difficulty

        if _has_stats(result):
            return result
    return {}


def extract_from_meta(document: HtmlDocument) -> dict[str, Any]:
    """Summaries like "14.2 km · 450 m elevation · Moderate"."""
    summary = document.first_meta("og:description", "description")
    if not summary:
        return {}
    result: dict[str, Any] = {}
    match = re.search(r"(\d+(?:\.\d+)?)\s*km", summary, re.IGNORECASE)
    if match:
        result["distance_km"] = float(match.group(1))
    match = re.search(r"(\d+(?:\.\d+)?)\s*m\s*(?:elevation|ascent|gain)", summary, re.IGNORECASE)
    if match:
        result["elevation_m"] = round(float(match.group(1)))
    difficulty = normalize_difficulty(summary)
    if difficulty:
        result["difficulty"] = difficulty
    return result


def extract_from_alltrails_text(text: str) -> dict[str, Any]:
    result: dict[str, Any] = {}
    match = re.search(r"(\d+(?:\.\d+)?)\s*km\s*(?:length|distance)", text, re.IGNORECASE)
    if match:
        result["distance_km"] = float(match.group(1))
    match = re.search(r"(\d+(?:\.\d+)?)\s*m\s*(?:elevation\s*gain|ascent)", text, re.IGNORECASE)
    if match:
        result["elevation_m"] = round(float(match.group(1)))

    match = re.search(r"(\d+(?:\.\d+)?)\s*[-–]\s*(\d+(?:\.\d+)?)\s*h(?:r|ours?)?", text, re.IGNORECASE)
    if match:
        low, high = float(match.group(1)), float(match.group(2))
        result["estimated_time"] = format_time(round((low + high) / 2 * 60))
    else:
        match = re.search(r"(\d+(?:\.\d+)?)\s*h(?:r|ours?)?\b", text, re.IGNORECASE)
        if match:
            result["estimated_time"] = format_time(round(float(match.group(1)) * 60))

    match = re.search(
        r"\b(easy|moderate|hard|intermediate|expert|challenging|beginner)\b", text, re.IGNORECASE
    )
    if match:
        result["difficulty"] = normalize_difficulty(match.group(1))
    return {k: v for k, v in result.items() if v is not None}


def extract_from_komoot_text(text: str) -> dict[str, Any]:
    result: dict[str, Any] = {}
    # Decimal comma or dot depending on locale
    match = re.search(r"(\d+(?:[,.]\d+)?)\s*km", text, re.IGNORECASE)
    if match:
        result["distance_km"] = float(match.group(1).replace(",", "."))
    match = re.search(r"(\d+(?:\.\d+)?)\s*m\b", text, re.IGNORECASE)
    if match:
        result["elevation_m"] = round(float(match.group(1)))
    match = re.search(r"\b(\d{1,2}):(\d{2})\b", text)
    if match:
        result["estimated_time"] = format_time(int(match.group(1)) * 60 + int(match.group(2)))
    difficulty = normalize_difficulty(text)
    if difficulty:
        result["difficulty"] = difficulty
    return {k: v for k, v in result.items() if v is not None}


def parse_route_page(page: str, source: str) -> dict[str, Any]:
    """Run the extraction chain and merge its results, earlier methods first."""
    document = parse_html(page)
    text_extractor = extract_from_alltrails_text if source == "alltrails" else extract_from_komoot_text
    chain = (
        ("json_ld", lambda: extract_from_json_ld(document)),
        ("meta_tags", lambda: extract_from_meta(document)),
        ("html_parsing", lambda: text_extractor(document.text)),
    )

    merged: dict[str, Any] = {}
    for method, extract in chain:
        found = extract()
        if not _has_stats(found):
            continue
        logger.info(f"[ROUTE-META] {method} found {sorted(found)}")
        merged.setdefault("extraction_method", method)
        for name, value in found.items():
            merged.setdefault(name, value)
        if merged.get("distance_km") is not None and merged.get("elevation_m") is not None:
            break
    return merged
