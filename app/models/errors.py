"""Error model for Waypoint Functions.

Every failure a handler can report is one of the ``ServiceError`` subclasses
below. The FastAPI exception handlers in ``app.main`` render them as
``{"error": <code>, "message": ..., "user_message": ...}`` with the status
code carried by the exception class.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Machine-readable error codes returned to the client."""

    INVALID_INPUT = "invalid_input"
    UNAUTHENTICATED = "unauthenticated"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_EXHAUSTED = "upstream_exhausted"
    NO_ROUTE = "no_route"
    STORAGE_FAILURE = "storage_failure"
    INTERNAL = "internal"


class AppError(BaseModel):
    """Error body sent to the client."""

    error: ErrorCode = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Technical description")
    user_message: str = Field(..., description="Text safe to show to the user")
    retry_after_seconds: Optional[int] = Field(
        None, description="Seconds to wait before retrying (rate limits only)"
    )


class ServiceError(Exception):
    """Base class for errors surfaced to the caller.

    Subclasses set ``code``, ``status_code`` and a default ``user_message``.
    """

    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = 500
    default_user_message: str = "Something went wrong. Please try again."

    def __init__(self, message: str, user_message: str | None = None) -> None:
        self.message = message
        self.user_message = user_message or self.default_user_message
        super().__init__(message)

    def to_app_error(self) -> AppError:
        return AppError(
            error=self.code,
            message=self.message,
            user_message=self.user_message,
        )


class InvalidInputError(ServiceError):
    """Malformed or missing required input. Never retried."""

    code = ErrorCode.INVALID_INPUT
    status_code = 400
    default_user_message = "Invalid request. Please check your input."


class UnauthenticatedError(ServiceError):
    """No caller identity was supplied."""

    code = ErrorCode.UNAUTHENTICATED
    status_code = 401
    default_user_message = "You must be signed in."

    def __init__(self, message: str = "User must be authenticated") -> None:
        super().__init__(message)


class RateLimitedError(ServiceError):
    """The rate limiter rejected the call."""

    code = ErrorCode.RATE_LIMITED
    status_code = 429
    default_user_message = "Too many requests. Please wait a few moments and try again."

    def __init__(self, endpoint: str, retry_after_seconds: int = 1) -> None:
        self.endpoint = endpoint
        self.retry_after_seconds = max(1, retry_after_seconds)
        super().__init__(f"Rate limit exceeded for {endpoint}")

    def to_app_error(self) -> AppError:
        body = super().to_app_error()
        body.retry_after_seconds = self.retry_after_seconds
        return body


class UpstreamExhaustedError(ServiceError):
    """Every attempt profile failed or produced no usable signal."""

    code = ErrorCode.UPSTREAM_EXHAUSTED
    status_code = 502
    default_user_message = "We couldn't fetch this right now. Try again or enter it manually."


class NoRouteError(ServiceError):
    """The routing providers answered, but no route connects the waypoints."""

    code = ErrorCode.NO_ROUTE
    status_code = 404
    default_user_message = "No route found between these points."


class StorageError(ServiceError):
    """Cache or rate-limit backing store failure.

    Never reaches the client: the limiter fails closed and the cache fails open.
    """

    code = ErrorCode.STORAGE_FAILURE
    status_code = 503
