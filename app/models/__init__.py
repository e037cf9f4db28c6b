"""Data models for Waypoint Functions."""

from .core import BoundingBox, Coordinates, KM_PER_DEGREE, TravelMode
from .errors import (
    AppError,
    ErrorCode,
    InvalidInputError,
    NoRouteError,
    RateLimitedError,
    ServiceError,
    StorageError,
    UnauthenticatedError,
    UpstreamExhaustedError,
)

__all__ = [
    # Core
    "BoundingBox",
    "Coordinates",
    "KM_PER_DEGREE",
    "TravelMode",
    # Errors
    "AppError",
    "ErrorCode",
    "InvalidInputError",
    "NoRouteError",
    "RateLimitedError",
    "ServiceError",
    "StorageError",
    "UnauthenticatedError",
    "UpstreamExhaustedError",
]
