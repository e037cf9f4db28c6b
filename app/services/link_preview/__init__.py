"""Link previews from OpenGraph, Twitter cards and JSON-LD."""

from .parser import (
    PREVIEW_FIELDS,
    booking_fallback,
    clean_title,
    extract_address,
    extract_location,
    filter_description,
    generic_fallback,
    parse_preview,
    salvage_image,
)
from .service import LinkPreviewService, classify_page, is_preview_complete, validate_url

__all__ = [
    "PREVIEW_FIELDS",
    "LinkPreviewService",
    "booking_fallback",
    "classify_page",
    "clean_title",
    "extract_address",
    "extract_location",
    "filter_description",
    "generic_fallback",
    "is_preview_complete",
    "parse_preview",
    "salvage_image",
    "validate_url",
]
