"""Waypoint Functions FastAPI application.

Main entry point for the backend API server.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.api import router
from app.api.dependencies import close_services
from app.config import get_settings
from app.models import AppError, ErrorCode, RateLimitedError, ServiceError

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    yield
    # Shutdown: release the shared Redis connection, if any
    await close_services()


app = FastAPI(
    title="Waypoint Functions",
    description="Routing, places, elevation, POI, scraping and travel-context API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)


def _error_response(status_code: int, body: AppError, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render typed service errors with their status code."""
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    if exc.status_code >= 500:
        logger.warning(f"[API] {request.url.path} failed: {exc.message}")
    return _error_response(exc.status_code, exc.to_app_error(), headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request body validation errors."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    return _error_response(
        400,
        AppError(
            error=ErrorCode.INVALID_INPUT,
            message=problems or "Invalid request body",
            user_message="Invalid request. Please check your input.",
        ),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"[API] Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return _error_response(
        500,
        AppError(
            error=ErrorCode.INTERNAL,
            message="Internal server error",
            user_message="Something went wrong. Please try again.",
        ),
    )


app.include_router(router, prefix="/api")

# Stored place photos are served from the local blob store.
Path(settings.blob_store_dir).mkdir(parents=True, exist_ok=True)
app.mount("/blobs", StaticFiles(directory=settings.blob_store_dir), name="blobs")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
