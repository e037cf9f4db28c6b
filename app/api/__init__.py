"""HTTP API for Waypoint Functions."""

from .routes import router

__all__ = ["router"]
