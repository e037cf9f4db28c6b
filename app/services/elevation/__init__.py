"""Elevation profiles from terrain-RGB tiles."""

from .service import (
    ElevationService,
    MapboxTerrainProvider,
    ascent_descent,
    decode_terrain_tile,
    sample_path,
)

__all__ = [
    "ElevationService",
    "MapboxTerrainProvider",
    "ascent_descent",
    "decode_terrain_tile",
    "sample_path",
]
